"""Shared datatypes for DevGate."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from memory import Conversation, Message, now_ms


@dataclass
class ToolInvocation:
    tool: str
    args: dict[str, Any]
    success: bool
    result: str | None = None
    error: str | None = None


@dataclass
class ThinkResult:
    response: str
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    tokens_used: int = 0
    iterations: int = 0


@dataclass
class ConversationContext:
    """Read-only projection of a conversation handed to the reasoning loop."""

    conversation_id: str
    summary: str = ""
    recent_messages: list[Message] = field(default_factory=list)
    goals: list[str] = field(default_factory=list)
    tech_stack: list[str] = field(default_factory=list)
    workspace_path: str | None = None


@dataclass
class InboundEvent:
    conversation_id: str
    text: str
    sender_name: str = "User"
    sender_id: str = ""
    message_id: int | None = None
    timestamp_ms: int = field(default_factory=now_ms)


@dataclass
class CallbackEvent:
    callback_id: str
    conversation_id: str
    data: str
    message_id: int | None = None
    sender_id: str = ""


@dataclass
class ControlCommand:
    command: str
    args: str = ""


@dataclass(frozen=True)
class ConfirmButton:
    label: str
    data: str


@dataclass
class ConfirmationOutcome:
    correlation_id: str
    conversation_id: str
    tool_name: str
    approved: bool


__all__ = [
    "CallbackEvent",
    "ConfirmButton",
    "ConfirmationOutcome",
    "ControlCommand",
    "Conversation",
    "ConversationContext",
    "InboundEvent",
    "Message",
    "ThinkResult",
    "ToolInvocation",
]
