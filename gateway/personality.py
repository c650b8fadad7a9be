"""Runtime path, agent personality loading, and prompt construction."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

from .constants import AGENT_IDENTITY, PROJECT_ROOT
from .types import ConversationContext

PERSONALITY_FILES = ("AGENT.md", "SOUL.md", "USER.md")


def runtime_root_from_workspace(workspace_path: str) -> Path:
    """Derive runtime root from workspace path."""
    workspace = Path(workspace_path).resolve()
    if workspace.name == "workspace":
        return workspace.parent
    return workspace


def resolve_runtime_path(path_value: str) -> Path:
    """Resolve configured paths relative to DEVGATE_HOME or project root."""
    runtime_home = os.getenv("DEVGATE_HOME", "").strip()
    base_dir = Path(runtime_home).expanduser().resolve() if runtime_home else PROJECT_ROOT
    path = Path(path_value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


def load_personality(workspace_path: str) -> str:
    """Load agent instructions from runtime files (AGENT.md, SOUL.md, USER.md).

    Files live in the runtime root (e.g. .devgate/); the built-in identity is used
    when none of them exist or all are empty.
    """
    root = runtime_root_from_workspace(workspace_path)
    parts = []
    for filename in PERSONALITY_FILES:
        filepath = root / filename
        if not filepath.is_file():
            continue
        try:
            content = filepath.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if content:
            parts.append(content)

    if not parts:
        return AGENT_IDENTITY

    return "\n\n---\n\n".join(parts)


def build_system_prompt(context: ConversationContext, personality: str = AGENT_IDENTITY) -> str:
    """Build the system instruction from personality and conversation context."""
    parts = [
        personality,
        f"## Current Time\n{datetime.now().strftime('%Y-%m-%d %H:%M (%A)')}",
    ]

    if context.workspace_path:
        parts.append(
            "## Workspace\n"
            f"All file paths must stay inside: {context.workspace_path}\n"
            "Run commands with this directory (or a sub-directory) as Cwd."
        )

    if context.tech_stack:
        parts.append("## Tech Stack\n" + "\n".join(f"- {item}" for item in context.tech_stack))

    if context.goals:
        parts.append("## Session Goals\n" + "\n".join(f"- {goal}" for goal in context.goals))

    if context.summary:
        parts.append(
            "## Summary of Previous Conversation\n"
            "(Historical context only. It describes past actions, not the current state of files.)\n\n"
            f"{context.summary}"
        )

    return "\n\n---\n\n".join(parts)


def build_contents(user_message: str, context: ConversationContext) -> list[dict]:
    """Build the model content history: recent turns followed by the new request."""
    contents: list[dict] = []
    for message in context.recent_messages:
        if not message.content:
            continue
        role = "model" if message.role == "assistant" else "user"
        # Consecutive turns from the same role are merged into one content entry.
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append({"text": message.content})
        else:
            contents.append({"role": role, "parts": [{"text": message.content}]})

    if contents and contents[-1]["role"] == "user":
        contents[-1]["parts"].append({"text": user_message})
    else:
        contents.append({"role": "user", "parts": [{"text": user_message}]})
    return contents
