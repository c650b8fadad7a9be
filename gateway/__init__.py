"""DevGate core package."""

from .agent import ReasoningLoop
from .app import main
from .bot import DevGateBot
from .confirmation import ConfirmationGate
from .constants import AGENT_IDENTITY, FALLBACK_RESPONSE, PROJECT_ROOT
from .logging_setup import log
from .markdown import format_reply, markdown_to_telegram_html
from .personality import build_system_prompt, load_personality, resolve_runtime_path
from .sessions import SessionStore
from .transport import TelegramTransport, chunk_text
from .types import ConversationContext, ThinkResult, ToolInvocation

__all__ = [
    "AGENT_IDENTITY",
    "build_system_prompt",
    "chunk_text",
    "ConfirmationGate",
    "ConversationContext",
    "DevGateBot",
    "FALLBACK_RESPONSE",
    "format_reply",
    "load_personality",
    "log",
    "main",
    "markdown_to_telegram_html",
    "PROJECT_ROOT",
    "ReasoningLoop",
    "resolve_runtime_path",
    "SessionStore",
    "TelegramTransport",
    "ThinkResult",
    "ToolInvocation",
]
