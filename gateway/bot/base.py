"""Core bot state and shared utility methods."""

from __future__ import annotations

import time
from pathlib import Path

from config import Config
from memory import ConversationMemory, SessionDatabase
from providers import LLMClient

from ..agent import ReasoningLoop
from ..confirmation import ConfirmationGate
from ..logging_setup import log
from ..personality import load_personality
from ..sessions import SessionStore
from ..tools import ToolRegistry, build_default_registry
from ..transport import TelegramTransport
from .queueing import ConversationQueues


class BotBaseMixin:
    def __init__(
        self,
        config: Config,
        transport: TelegramTransport | None = None,
        llm: LLMClient | None = None,
        registry: ToolRegistry | None = None,
        session_db: SessionDatabase | None = None,
    ):
        self.config = config
        self.transport = transport or TelegramTransport(
            config.telegram_bot_token,
            poll_timeout=config.telegram_poll_timeout,
            retry_delay=config.poll_retry_delay_sec,
        )
        self.llm = llm or LLMClient(config)
        self.session_db = session_db or SessionDatabase(config.session_db_path)
        self.memory = ConversationMemory(
            self.llm,
            window_size=config.memory_window_size,
            summarize_threshold=config.summarize_threshold,
        )
        self.sessions = SessionStore(self.session_db, self.memory, workspace_path=config.workspace_path)
        self.registry = registry or build_default_registry(config.workspace_path, config.command_timeout_sec)
        self.confirmations = ConfirmationGate(
            self.transport,
            timeout_sec=config.confirmation_timeout_sec,
            extra_markers=config.destructive_commands,
        )
        self.personality = load_personality(config.workspace_path)
        self.agent = ReasoningLoop(
            self.llm,
            self.registry,
            self.confirmations,
            personality=self.personality,
            max_iterations=config.max_tool_iterations,
        )
        self.queues = ConversationQueues()
        self.start_time = time.time()

    def is_allowed(self, user_id: int | str) -> bool:
        """Check if this user is in the allowlist (empty = allow all)."""
        if not self.config.telegram_allowed_users:
            return True
        return str(user_id) in self.config.telegram_allowed_users

    @property
    def gateway_active(self) -> bool:
        return bool(self.transport.running)

    @staticmethod
    def _trim_for_log(text: str, max_chars: int = 8000) -> str:
        if len(text) <= max_chars:
            return text
        return text[:max_chars] + "\n...[truncated]"

    def _log_user_message(self, conversation_id: str, text: str):
        log.info(f"[{conversation_id}] User: {self._trim_for_log(text)}")

    def _log_bot_message(self, conversation_id: str, text: str):
        log.info(f"[{conversation_id}] Bot: {self._trim_for_log(text)}")

    def _workspace_display_path(self) -> str:
        """Human-friendly workspace path for status messages."""
        workspace = Path(self.config.workspace_path).resolve()
        home = Path.home().resolve()
        try:
            return "~/" + workspace.relative_to(home).as_posix()
        except ValueError:
            return workspace.as_posix()

    def _uptime_text(self) -> str:
        uptime = int(time.time() - self.start_time)
        hours, remainder = divmod(uptime, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours}h {minutes}m {seconds}s"

    def _has_credentials(self) -> bool:
        return bool(self.config.api_key_for())
