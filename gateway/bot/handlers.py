"""Inbound message and button-press handling."""

from __future__ import annotations

from providers import LLMError

from ..logging_setup import log
from ..markdown import format_reply
from ..transport import parse_command
from ..types import CallbackEvent, InboundEvent


class BotHandlersMixin:
    async def on_message(self, event: InboundEvent):
        """Entry point for every inbound text message."""
        if not event.text:
            return
        if not self.is_allowed(event.sender_id):
            log.info(f"[{event.conversation_id}] Ignoring message from non-allowed user {event.sender_id}")
            return

        command = parse_command(event.text, self.transport.username)
        if command is not None:
            await self.handle_command(event, command)
            return

        self._log_user_message(event.conversation_id, event.text)
        waiting = self.queues.enqueue(event.conversation_id, lambda: self._process_user_message(event))
        if waiting > 1:
            log.info(f"[{event.conversation_id}] Queued behind {waiting - 1} message(s)")

    async def _process_user_message(self, event: InboundEvent):
        """One conversational turn: context → reasoning loop → reply → persist."""
        conversation_id = event.conversation_id
        await self.transport.send_typing(conversation_id)

        try:
            context = self.sessions.build_context(conversation_id)
            result = await self.agent.think(event.text, context)
        except LLMError as e:
            log.error(f"[{conversation_id}] LLM request failed: {e}")
            await self._reply_error(conversation_id, e)
            return
        except Exception as e:
            log.exception(f"[{conversation_id}] Error processing message: {e}")
            await self._reply_error(conversation_id, e)
            return

        log.info(
            f"[{conversation_id}] Turn finished: {result.iterations} iteration(s), "
            f"{len(result.tool_calls)} tool call(s), {result.tokens_used} tokens"
        )
        await self._reply_logged(conversation_id, format_reply(result.response, result.tool_calls))

        await self.sessions.add_message(conversation_id, "user", event.text)
        await self.sessions.add_message(conversation_id, "assistant", result.response)

    async def on_callback(self, event: CallbackEvent):
        """Resolve confirmation buttons; anything else is answered as unknown."""
        if not self.is_allowed(event.sender_id):
            await self.transport.answer_callback(event.callback_id, "Not allowed")
            return

        outcome = self.confirmations.handle_callback(event.data)
        if outcome is None:
            await self.transport.answer_callback(event.callback_id, "Unknown action")
            return

        await self.transport.answer_callback(
            event.callback_id, "✅ Approved" if outcome.approved else "❌ Rejected"
        )
        if event.message_id is not None:
            status = "✅ **Approved:**" if outcome.approved else "❌ **Rejected:**"
            await self.transport.edit_message(event.conversation_id, event.message_id, f"{status} {outcome.tool_name}")
