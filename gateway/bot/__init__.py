"""Composed DevGate bot class built from focused mixins."""

from __future__ import annotations

from .base import BotBaseMixin
from .commands import BotCommandsMixin
from .handlers import BotHandlersMixin
from .lifecycle import BotLifecycleMixin
from .messaging import BotMessagingMixin
from .queueing import ConversationQueues


class DevGateBot(
    BotLifecycleMixin,
    BotMessagingMixin,
    BotHandlersMixin,
    BotCommandsMixin,
    BotBaseMixin,
):
    """The main bot class wiring Telegram, the reasoning loop, and session memory together."""

    pass


__all__ = ["ConversationQueues", "DevGateBot"]
