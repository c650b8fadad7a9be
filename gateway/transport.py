"""Telegram transport: long polling for updates and chunked outbound messages."""

from __future__ import annotations

import asyncio
import contextlib
import time
from datetime import timedelta
from typing import Awaitable, Callable

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest, Conflict, NetworkError, RetryAfter, TelegramError

from .logging_setup import log
from .markdown import markdown_to_telegram_html, strip_html
from .types import CallbackEvent, ConfirmButton, ControlCommand, InboundEvent

MAX_MESSAGE_CHARS = 4000
TELEGRAM_HARD_LIMIT = 4096
ALLOWED_UPDATES = ["message", "callback_query"]

MessageHandlerFn = Callable[[InboundEvent], Awaitable[None]]
CallbackHandlerFn = Callable[[CallbackEvent], Awaitable[None]]


def chunk_text(text: str, max_len: int = MAX_MESSAGE_CHARS) -> list[str]:
    """Split text into chunks that fit the message limit.

    Prefers a newline in the second half of the window, then a space in the
    last 70%, and only then splits hard at the limit.
    """
    if not text:
        return []
    if len(text) <= max_len:
        return [text]

    chunks = []
    remaining = text
    while len(remaining) > max_len:
        split_at = remaining.rfind("\n", 0, max_len)
        if split_at < max_len * 0.5:
            split_at = remaining.rfind(" ", 0, max_len)
        if split_at < max_len * 0.3:
            piece, remaining = remaining[:max_len], remaining[max_len:]
        else:
            # Only the separator is dropped; indentation on the next line survives.
            piece, remaining = remaining[:split_at], remaining[split_at + 1:]
        if piece.strip():
            chunks.append(piece)

    if remaining.strip():
        chunks.append(remaining)
    return chunks


def parse_command(text: str, bot_username: str | None = None) -> ControlCommand | None:
    """Parse "/cmd@bot args" into a ControlCommand. Non-commands return None."""
    text = (text or "").strip()
    if not text.startswith("/"):
        return None
    head, _, args = text.partition(" ")
    command = head[1:]
    name, at, target = command.partition("@")
    if at and bot_username and target.lower() != bot_username.lower():
        return None
    if not name:
        return None
    return ControlCommand(command=name.lower(), args=args.strip())


def _chat_id(conversation_id: str) -> int | str:
    try:
        return int(conversation_id)
    except (TypeError, ValueError):
        return conversation_id


def _retry_seconds(value: int | float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class TelegramTransport:
    """
    Long-polling Telegram adapter.

    The update cursor only advances after an update was dispatched, so each
    update is handed to the bot exactly once. ``stop()`` cancels the in-flight
    getUpdates request and makes ``poll()`` return without raising.
    """

    def __init__(
        self,
        token: str = "",
        poll_timeout: int = 30,
        retry_delay: float = 3.0,
        bot: Bot | None = None,
        max_message_chars: int = MAX_MESSAGE_CHARS,
    ):
        self.bot = bot if bot is not None else Bot(token)
        self.poll_timeout = max(0, int(poll_timeout))
        self.retry_delay = max(0.0, float(retry_delay))
        self.max_message_chars = max_message_chars
        self.offset: int | None = None
        self.username: str | None = None
        self.running = False
        self._stop = asyncio.Event()
        self._last_conflict_log_at = 0.0

    async def initialize(self):
        await self.bot.initialize()
        self.username = self.bot.username
        log.info(f"Telegram transport ready (@{self.username or 'unknown'})")

    async def shutdown(self):
        await self.bot.shutdown()

    # ── Polling ───────────────────────────────────────────────

    def stop(self):
        self._stop.set()

    async def poll(self, on_message: MessageHandlerFn, on_callback: CallbackHandlerFn):
        """Fetch and dispatch updates until ``stop()`` is called."""
        self._stop.clear()
        self.running = True
        log.info("Telegram polling started")
        try:
            while not self._stop.is_set():
                try:
                    updates = await self._fetch_updates()
                except Conflict:
                    now = time.time()
                    # Polling conflicts repeat every few seconds; avoid log spam.
                    if now - self._last_conflict_log_at >= 30:
                        self._last_conflict_log_at = now
                        log.warning(
                            "Telegram polling conflict: another bot instance is using getUpdates. "
                            "Keep only one DevGate process active for this bot token."
                        )
                    await self._sleep(self.retry_delay)
                    continue
                except RetryAfter as e:
                    delay = _retry_seconds(e.retry_after)
                    log.warning(f"Telegram rate limit during polling: retry after {delay:.0f}s")
                    await self._sleep(delay)
                    continue
                except NetworkError as e:
                    log.warning(f"Telegram polling network issue: {e}")
                    await self._sleep(self.retry_delay)
                    continue
                except TelegramError as e:
                    log.error(f"Telegram polling error: {e}")
                    await self._sleep(self.retry_delay)
                    continue

                if updates is None:
                    break
                for update in updates:
                    await self._dispatch(update, on_message, on_callback)
                    self.offset = update.update_id + 1
        finally:
            self.running = False
            log.info("Telegram polling stopped")

    async def _fetch_updates(self) -> tuple[Update, ...] | None:
        """One getUpdates call raced against the stop signal. None means stopped."""
        fetch = asyncio.ensure_future(
            self.bot.get_updates(
                offset=self.offset,
                timeout=self.poll_timeout,
                allowed_updates=ALLOWED_UPDATES,
            )
        )
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait({fetch, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not fetch.done():
                fetch.cancel()
        if fetch not in done:
            with contextlib.suppress(asyncio.CancelledError, TelegramError):
                await fetch
            return None
        return tuple(fetch.result())

    async def _sleep(self, delay: float):
        """Back off for ``delay`` seconds, waking early on stop."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, delay))

    async def _dispatch(self, update: Update, on_message: MessageHandlerFn, on_callback: CallbackHandlerFn):
        event: InboundEvent | CallbackEvent | None = None
        try:
            if update.callback_query is not None:
                event = self.callback_event(update)
                if event is not None:
                    await on_callback(event)
            elif update.message is not None:
                event = self.inbound_event(update)
                if event is not None:
                    await on_message(event)
        except Exception as e:
            conversation_id = event.conversation_id if event is not None else "unknown"
            log.exception(f"[{conversation_id}] Failed to handle update {update.update_id}: {e}")

    @staticmethod
    def inbound_event(update: Update) -> InboundEvent | None:
        message = update.message
        if message is None or not message.text or not message.text.strip():
            return None
        sender = message.from_user
        return InboundEvent(
            conversation_id=str(message.chat.id),
            text=message.text.strip(),
            sender_name=(sender.first_name if sender and sender.first_name else "User"),
            sender_id=str(sender.id) if sender else "",
            message_id=message.message_id,
            timestamp_ms=int(message.date.timestamp() * 1000) if message.date else int(time.time() * 1000),
        )

    @staticmethod
    def callback_event(update: Update) -> CallbackEvent | None:
        query = update.callback_query
        if query is None:
            return None
        message = query.message
        conversation_id = str(message.chat.id) if message is not None else str(query.from_user.id)
        return CallbackEvent(
            callback_id=str(query.id),
            conversation_id=conversation_id,
            data=query.data or "",
            message_id=message.message_id if message is not None else None,
            sender_id=str(query.from_user.id) if query.from_user else "",
        )

    # ── Outbound ──────────────────────────────────────────────

    @staticmethod
    async def _send_html(send_fn, html: str, **kwargs):
        """Send with HTML parse mode, falling back to plain text if Telegram rejects the markup."""
        try:
            return await send_fn(text=html, parse_mode=ParseMode.HTML, **kwargs)
        except BadRequest as e:
            log.debug(f"HTML rejected by Telegram, resending as plain text: {e}")
        return await send_fn(text=strip_html(html), **kwargs)

    @classmethod
    def _html_chunks(cls, markdown: str, max_len: int = MAX_MESSAGE_CHARS) -> list[str]:
        """Convert markdown to HTML pieces that each fit in one Telegram message.

        Entity expansion can push a converted chunk past the hard limit; such a
        chunk is split again from its markdown until every piece fits.
        """
        pieces: list[str] = []
        for chunk in chunk_text(markdown, max_len):
            html = markdown_to_telegram_html(chunk)
            if len(html) <= TELEGRAM_HARD_LIMIT or len(chunk) <= 1:
                pieces.append(html)
            else:
                pieces.extend(cls._html_chunks(chunk, max(1, len(chunk) // 2)))
        return pieces

    async def send_message(self, conversation_id: str, text: str) -> list[int]:
        """Send markdown text, chunked and converted per chunk. Returns sent message ids."""
        chat_id = _chat_id(conversation_id)
        sent_ids: list[int] = []
        pieces = self._html_chunks(text, self.max_message_chars)
        for html in pieces:
            try:
                message = await self._send_html(self.bot.send_message, html, chat_id=chat_id)
            except TelegramError as e:
                log.error(f"[{conversation_id}] Failed to send message chunk: {e}")
                continue
            if message is not None:
                sent_ids.append(message.message_id)
        if len(pieces) > 1:
            log.info(f"[{conversation_id}] Long response split into {len(pieces)} messages ({len(text)} chars)")
        return sent_ids

    async def send_typing(self, conversation_id: str):
        try:
            await self.bot.send_chat_action(chat_id=_chat_id(conversation_id), action=ChatAction.TYPING)
        except TelegramError as e:
            log.debug(f"[{conversation_id}] Typing indicator failed: {e}")

    async def send_confirmation_prompt(
        self, conversation_id: str, text: str, buttons: list[list[ConfirmButton]]
    ) -> int | None:
        """Send an approve/reject prompt. Errors propagate so the caller can deny the action.

        A prompt too long for one message is sent in pieces; the buttons go on the last one.
        """
        markup = InlineKeyboardMarkup(
            [[InlineKeyboardButton(button.label, callback_data=button.data) for button in row] for row in buttons]
        )
        chat_id = _chat_id(conversation_id)
        *leading, last = self._html_chunks(text) or [""]
        for html in leading:
            await self._send_html(self.bot.send_message, html, chat_id=chat_id)
        message = await self._send_html(self.bot.send_message, last, chat_id=chat_id, reply_markup=markup)
        return message.message_id if message is not None else None

    async def answer_callback(self, callback_id: str, text: str | None = None):
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text)
        except TelegramError as e:
            log.warning(f"Failed to answer callback {callback_id}: {e}")

    async def edit_message(self, conversation_id: str, message_id: int, text: str):
        """Replace a message's text; any overflow is sent as follow-up messages."""
        chat_id = _chat_id(conversation_id)
        first, *rest = self._html_chunks(text) or [""]
        try:
            await self._send_html(self.bot.edit_message_text, first, chat_id=chat_id, message_id=message_id)
            for html in rest:
                await self._send_html(self.bot.send_message, html, chat_id=chat_id)
        except TelegramError as e:
            log.warning(f"[{conversation_id}] Failed to edit message {message_id}: {e}")
