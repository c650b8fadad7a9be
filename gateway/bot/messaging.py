"""Outbound replies and user-visible error formatting."""

from __future__ import annotations

from providers import LLMAuthError

from ..logging_setup import log


class BotMessagingMixin:
    async def _reply_logged(self, conversation_id: str, text: str) -> list[int]:
        """Send a reply and mirror the same content to terminal logs."""
        self._log_bot_message(conversation_id, text)
        return await self.transport.send_message(conversation_id, text)

    @staticmethod
    def _format_error(error: Exception) -> str:
        if isinstance(error, LLMAuthError):
            return f"❌ **Error:** {error}\n\nCheck the API key in your .env and restart DevGate."
        message = str(error) or error.__class__.__name__
        return f"❌ **Error:** {message}\n\nPlease try again."

    async def _reply_error(self, conversation_id: str, error: Exception):
        try:
            await self._reply_logged(conversation_id, self._format_error(error))
        except Exception as e:
            log.error(f"[{conversation_id}] Failed to deliver error reply: {e}")
