"""Control command handlers for /start, /help, /status, /workspace and /clear."""

from __future__ import annotations

from ..constants import HELP_TEXT, WELCOME_TEXT
from ..logging_setup import log
from ..markdown import format_status
from ..types import ControlCommand, InboundEvent

# Commands that mutate the session run on the conversation queue.
QUEUED_COMMANDS = frozenset({"clear", "reset", "newsession"})


class BotCommandsMixin:
    async def handle_command(self, event: InboundEvent, command: ControlCommand):
        conversation_id = event.conversation_id
        log.info(f"[{conversation_id}] command: /{command.command} {command.args}".rstrip())

        if command.command in QUEUED_COMMANDS:
            self.queues.enqueue(conversation_id, lambda: self.cmd_clear(conversation_id))
            return

        handler = {
            "start": self.cmd_start,
            "help": self.cmd_help,
            "status": self.cmd_status,
            "workspace": self.cmd_workspace,
        }.get(command.command)
        if handler is None:
            await self._reply_logged(
                conversation_id,
                f"❓ Unknown command: /{command.command}\nType /help for available commands.",
            )
            return
        await handler(conversation_id)

    async def cmd_start(self, conversation_id: str):
        await self._reply_logged(conversation_id, WELCOME_TEXT)

    async def cmd_help(self, conversation_id: str):
        await self._reply_logged(conversation_id, HELP_TEXT)

    async def cmd_status(self, conversation_id: str):
        conversation = self.sessions.get_session(conversation_id)
        text = format_status(
            authenticated=self._has_credentials(),
            gateway_active=self.gateway_active,
            provider=self.config.llm_provider,
            model=self.config.llm_model,
            workspace_path=self._workspace_display_path(),
            session_messages=len(conversation.messages),
            pending_confirmations=self.confirmations.pending_count(conversation_id),
            uptime=self._uptime_text(),
        )
        await self._reply_logged(conversation_id, text)

    async def cmd_workspace(self, conversation_id: str):
        await self._reply_logged(
            conversation_id, f"📁 **Current Workspace:**\n`{self._workspace_display_path()}`"
        )

    async def cmd_clear(self, conversation_id: str):
        self.sessions.clear_session(conversation_id)
        await self._reply_logged(
            conversation_id, "🧹 **Session Reset!**\nMemory cleared. I'm ready for a fresh start."
        )
