from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError

from gateway.transport import TelegramTransport, chunk_text, parse_command
from gateway.types import ConfirmButton


def test_chunk_text_short_and_empty():
    assert chunk_text("") == []
    assert chunk_text("hello", 100) == ["hello"]


def test_chunk_text_prefers_late_newline():
    text = "a" * 60 + "\n" + "b" * 60
    assert chunk_text(text, 100) == ["a" * 60, "b" * 60]


def test_chunk_text_falls_back_to_space_when_newline_is_early():
    text = "a" * 20 + "\n" + "b" * 50 + " " + "c" * 50
    assert chunk_text(text, 100) == ["a" * 20 + "\n" + "b" * 50, "c" * 50]


def test_chunk_text_hard_splits_without_whitespace():
    chunks = chunk_text("x" * 250, 100)
    assert chunks == ["x" * 100, "x" * 100, "x" * 50]
    assert all(len(c) <= 100 for c in chunks)


def test_chunk_text_keeps_indentation_after_a_newline_split():
    code = "    return value" + "b" * 40
    assert chunk_text("a" * 60 + "\n" + code, 100) == ["a" * 60, code]


@pytest.mark.parametrize("text, username, expected", [
    ("/Status", None, ("status", "")),
    ("/help@DevBot more words", "devbot", ("help", "more words")),
    ("/clear   ", "devbot", ("clear", "")),
])
def test_parse_command(text, username, expected):
    command = parse_command(text, username)
    assert (command.command, command.args) == expected


@pytest.mark.parametrize("text", ["hello", "/help@OtherBot", "/", ""])
def test_parse_command_rejects_non_commands(text):
    assert parse_command(text, "devbot") is None


def _message_update(update_id: int, text: str, chat_id: int = 5, user_id: int = 77):
    message = SimpleNamespace(
        text=text,
        chat=SimpleNamespace(id=chat_id),
        from_user=SimpleNamespace(id=user_id, first_name="Sam"),
        message_id=update_id * 10,
        date=None,
    )
    return SimpleNamespace(update_id=update_id, message=message, callback_query=None)


def _callback_update(update_id: int, data: str, chat_id: int = 5, user_id: int = 77):
    query = SimpleNamespace(
        id=f"cb{update_id}",
        data=data,
        from_user=SimpleNamespace(id=user_id),
        message=SimpleNamespace(chat=SimpleNamespace(id=chat_id), message_id=99),
    )
    return SimpleNamespace(update_id=update_id, message=None, callback_query=query)


class FakeBot:
    def __init__(self, batches):
        self.batches = list(batches)
        self.offsets: list[int | None] = []
        self.sent: list[dict] = []
        self.reject_html = False
        self.username = "devbot"

    async def initialize(self):
        pass

    async def shutdown(self):
        pass

    async def get_updates(self, offset=None, timeout=None, allowed_updates=None):
        self.offsets.append(offset)
        if not self.batches:
            await asyncio.Event().wait()
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch

    async def send_message(self, **kwargs):
        if self.reject_html and kwargs.get("parse_mode") == ParseMode.HTML:
            raise BadRequest("Can't parse entities")
        self.sent.append(kwargs)
        return SimpleNamespace(message_id=len(self.sent))


async def test_poll_dispatches_once_and_advances_cursor():
    bot = FakeBot([
        [_message_update(10, "hi")],
        NetworkError("connection reset"),
        [_callback_update(11, "confirm_1_abc:approve")],
    ])
    transport = TelegramTransport(bot=bot, retry_delay=0)
    messages, callbacks = [], []

    async def on_message(event):
        messages.append(event)

    async def on_callback(event):
        callbacks.append(event)

    task = asyncio.create_task(transport.poll(on_message, on_callback))
    for _ in range(200):
        if len(bot.offsets) >= 4:
            break
        await asyncio.sleep(0)
    transport.stop()
    await asyncio.wait_for(task, timeout=1)

    assert bot.offsets[:4] == [None, 11, 11, 12]
    assert [m.text for m in messages] == ["hi"]
    assert messages[0].conversation_id == "5"
    assert messages[0].sender_id == "77"
    assert [c.data for c in callbacks] == ["confirm_1_abc:approve"]
    assert callbacks[0].message_id == 99
    assert transport.running is False


async def test_handler_errors_do_not_stop_polling():
    bot = FakeBot([[_message_update(1, "boom"), _message_update(2, "ok")]])
    transport = TelegramTransport(bot=bot, retry_delay=0)
    seen = []

    async def on_message(event):
        seen.append(event.text)
        if event.text == "boom":
            raise RuntimeError("handler failed")

    async def on_callback(event):
        pass

    task = asyncio.create_task(transport.poll(on_message, on_callback))
    for _ in range(200):
        if len(bot.offsets) >= 2:
            break
        await asyncio.sleep(0)
    transport.stop()
    await asyncio.wait_for(task, timeout=1)

    assert seen == ["boom", "ok"]
    assert transport.offset == 3


def test_blank_messages_are_ignored():
    assert TelegramTransport.inbound_event(_message_update(1, "   ")) is None


async def test_send_message_chunks_and_falls_back_to_plain_text():
    bot = FakeBot([])
    bot.reject_html = True
    transport = TelegramTransport(bot=bot, max_message_chars=100)

    ids = await transport.send_message("5", "**bold** " + "y" * 60 + " " + "x" * 80)

    assert ids == [1, 2]
    assert all("parse_mode" not in kwargs for kwargs in bot.sent)
    assert bot.sent[0]["chat_id"] == 5
    assert bot.sent[0]["text"] == "bold " + "y" * 60
    assert bot.sent[1]["text"] == "x" * 80


async def test_send_message_uses_html():
    bot = FakeBot([])
    transport = TelegramTransport(bot=bot)
    await transport.send_message("5", "**done**")
    assert bot.sent == [{"text": "<b>done</b>", "parse_mode": ParseMode.HTML, "chat_id": 5}]


async def test_send_message_resplits_when_html_escaping_overflows():
    bot = FakeBot([])
    transport = TelegramTransport(bot=bot)

    await transport.send_message("5", "<" * 3990 + " TAIL")

    texts = [kwargs["text"] for kwargs in bot.sent]
    assert len(texts) > 1
    assert all(len(text) <= 4096 for text in texts)
    assert "".join(texts).count("&lt;") == 3990
    assert texts[-1] == "TAIL"


async def test_long_confirmation_prompt_keeps_buttons_on_last_piece():
    bot = FakeBot([])
    transport = TelegramTransport(bot=bot)
    buttons = [[ConfirmButton("✅ Approve", "confirm_1_abc:approve")]]

    message_id = await transport.send_confirmation_prompt("5", "x " * 3000, buttons)

    assert len(bot.sent) == 2
    assert "reply_markup" not in bot.sent[0]
    assert bot.sent[1]["reply_markup"].inline_keyboard[0][0].callback_data == "confirm_1_abc:approve"
    assert message_id == 2
