"""Logging configuration for DevGate."""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("devgate")

# Reduce noisy transport logs by default (can be re-enabled with DEVGATE_VERBOSE_HTTP=1).
if os.getenv("DEVGATE_VERBOSE_HTTP", "").strip().lower() not in {"1", "true", "yes"}:
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)
    logging.getLogger("openai._base_client").setLevel(logging.WARNING)


_SESSION_RE = re.compile(r"^\[(?P<session>[^\]]+)\]\s*(?P<body>.*)$", re.DOTALL)
_TOOL_RE = re.compile(r"\btool (?P<tool>[a-z_]+)(?: \(iteration (?P<iteration>\d+)\))?")
_CORRELATION_RE = re.compile(r"\b(?P<correlation>confirm_\d+_[0-9a-f]+)(?: for (?P<tool>[a-z_]+))?")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "")
    if not raw:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _infer_operation(text: str) -> str:
    lower = (text or "").lower()
    if lower.startswith("user:"):
        return "user_message"
    if lower.startswith("bot:"):
        return "assistant_message"
    if lower.startswith("tool "):
        return "tool_call"
    if "confirmation" in lower:
        return "confirmation"
    if "compacted" in lower or "summariz" in lower:
        return "compaction"
    if lower.startswith("command:"):
        return "control_command"
    if "polling" in lower:
        return "transport"
    return "general"


def _event_fields(text: str) -> dict[str, Any]:
    """Tool name, loop iteration and confirmation id mentioned in a log line."""
    fields: dict[str, Any] = {}
    correlation = _CORRELATION_RE.search(text or "")
    if correlation:
        fields["correlation_id"] = correlation.group("correlation")
        if correlation.group("tool"):
            fields["tool"] = correlation.group("tool")
    tool = _TOOL_RE.search(text or "")
    if tool:
        fields["tool"] = tool.group("tool")
        if tool.group("iteration"):
            fields["iteration"] = int(tool.group("iteration"))
    return fields


class _JsonLogFormatter(logging.Formatter):
    """Structured one-line JSON formatter."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        session_id: str | None = None
        body = message

        matched = _SESSION_RE.match(message or "")
        if matched:
            session_id = matched.group("session")
            body = matched.group("body")

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": body,
            "conversation": session_id,
            "operation": _infer_operation(body),
        }
        payload.update(_event_fields(body))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def configure_optional_json_logging(runtime_root: str | Path | None = None) -> Path | None:
    """Enable optional JSONL file logging while keeping human logs on stdout.

    Controlled by env:
    - JSON_LOG_ENABLED=1|true|yes|on
    - JSON_LOG_PATH=<optional path, defaults to <runtime_root>/logs/devgate.jsonl>
    """
    if not _env_flag("JSON_LOG_ENABLED", default=False):
        return None

    runtime_base = Path(runtime_root).expanduser().resolve() if runtime_root else Path.cwd().resolve()
    home_raw = os.getenv("DEVGATE_HOME", "").strip()
    home_base = Path(home_raw).expanduser().resolve() if home_raw else Path.cwd().resolve()
    raw_path = os.getenv("JSON_LOG_PATH", "").strip()
    if raw_path:
        path = Path(raw_path).expanduser()
        if not path.is_absolute():
            path = (home_base / path).resolve()
    else:
        path = (runtime_base / "logs" / "devgate.jsonl").resolve()

    logger = logging.getLogger("devgate")
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename).resolve() == path:
            return path

    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(_JsonLogFormatter())
    logger.addHandler(file_handler)
    logger.info(f"Structured JSON logging enabled: {path.as_posix()}")
    return path
