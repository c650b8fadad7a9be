"""Human approval for destructive tool calls.

Every request gets a fresh correlation id and one asyncio future. The future
is resolved exactly once: by the user's button press, by the timeout (denied),
or by ``clear_all`` on shutdown (denied).
"""

from __future__ import annotations

import asyncio
import json
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from .constants import APPROVE_ACTION, CONFIRMATION_RULES, DESTRUCTIVE_COMMAND_MARKERS, REJECT_ACTION
from .logging_setup import log
from .types import ConfirmButton, ConfirmationOutcome


class ConfirmationPrompter(Protocol):
    async def send_confirmation_prompt(
        self, conversation_id: str, text: str, buttons: list[list[ConfirmButton]]
    ) -> Any: ...


@dataclass
class PendingConfirmation:
    correlation_id: str
    conversation_id: str
    tool_name: str
    args: dict
    future: asyncio.Future
    deadline: float
    timer: asyncio.TimerHandle | None = None
    created_at: float = field(default_factory=time.time)


def short_path(full_path: str | None) -> str:
    """Last three path segments, for compact display."""
    if not full_path:
        return ""
    parts = str(full_path).replace("\\", "/").split("/")
    return "/".join(parts[-3:])


def describe_action(tool_name: str, args: dict) -> str:
    """Human-readable approval prompt for a tool call."""
    lines = ["⚠️ **Confirmation Required**", ""]

    if tool_name == "write_to_file":
        lines.append(f"📝 **Overwrite file:**\n`{short_path(args.get('TargetFile'))}`")
        content = args.get("CodeContent")
        if content:
            lines.append(f"\n📏 Content: {len(content)} characters")
    elif tool_name == "replace_file_content":
        lines.append(f"✏️ **Edit file:**\n`{short_path(args.get('TargetFile'))}`")
        target = args.get("TargetContent") or ""
        if target:
            preview = target[:100] + ("..." if len(target) > 100 else "")
            lines.append(f"\n🔍 Find: `{preview}`")
    elif tool_name == "multi_replace_file_content":
        lines.append(f"✏️ **Multiple edits in:**\n`{short_path(args.get('TargetFile'))}`")
        chunks = args.get("ReplacementChunks")
        if isinstance(chunks, list):
            lines.append(f"\n📊 {len(chunks)} edit(s)")
    elif tool_name == "run_command":
        lines.append(f"⚡ **Run command:**\n`{args.get('CommandLine', '')}`")
        if args.get("Cwd"):
            lines.append(f"📂 In: `{short_path(args.get('Cwd'))}`")
    else:
        rendered = json.dumps(args, ensure_ascii=False, indent=2, default=str)[:500]
        lines.append(f"🔧 **Tool:** {tool_name}\n{rendered}")

    lines.append("\nDo you approve this action?")
    return "\n".join(lines)


class ConfirmationGate:
    """Pauses risky tool calls until the user approves, rejects, or the timeout expires."""

    def __init__(
        self,
        prompter: ConfirmationPrompter,
        timeout_sec: float = 300.0,
        rules: dict[str, dict[str, str]] | None = None,
        extra_markers: list[str] | tuple[str, ...] = (),
    ):
        self.prompter = prompter
        self.timeout_sec = float(timeout_sec)
        self.rules = dict(CONFIRMATION_RULES if rules is None else rules)
        self.markers = tuple(
            dict.fromkeys(m.lower() for m in (*DESTRUCTIVE_COMMAND_MARKERS, *extra_markers) if m)
        )
        self._pending: dict[str, PendingConfirmation] = {}

    # ── Classification ────────────────────────────────────────

    def is_destructive_command(self, command: str | None) -> bool:
        if not command:
            return False
        lower = command.lower()
        return any(marker in lower for marker in self.markers)

    def needs_confirmation(self, tool_name: str, args: dict | None) -> bool:
        rule = self.rules.get(tool_name)
        if not rule:
            return False
        args = args or {}
        kind = rule.get("kind")
        if kind == "always":
            return True
        if kind == "flag":
            return args.get(rule["arg"]) is True
        if kind == "command":
            return self.is_destructive_command(str(args.get(rule["arg"]) or ""))
        return False

    # ── Request / resolve ─────────────────────────────────────

    @staticmethod
    def _new_correlation_id() -> str:
        return f"confirm_{int(time.time() * 1000)}_{secrets.token_hex(3)}"

    async def request_confirmation(self, conversation_id: str, tool_name: str, args: dict) -> bool:
        """Ask the user to approve a tool call. Returns False on rejection or timeout."""
        loop = asyncio.get_running_loop()
        correlation_id = self._new_correlation_id()
        pending = PendingConfirmation(
            correlation_id=correlation_id,
            conversation_id=conversation_id,
            tool_name=tool_name,
            args=dict(args or {}),
            future=loop.create_future(),
            deadline=loop.time() + self.timeout_sec,
        )
        # Registered before the prompt goes out so an immediate button press resolves it.
        self._pending[correlation_id] = pending

        buttons = [[
            ConfirmButton("✅ Approve", f"{correlation_id}:{APPROVE_ACTION}"),
            ConfirmButton("❌ Reject", f"{correlation_id}:{REJECT_ACTION}"),
        ]]
        try:
            await self.prompter.send_confirmation_prompt(
                conversation_id, describe_action(tool_name, pending.args), buttons
            )
        except Exception as e:
            self._pending.pop(correlation_id, None)
            log.error(f"[{conversation_id}] Could not send confirmation prompt for {tool_name}: {e}")
            return False

        log.info(f"[{conversation_id}] Awaiting confirmation {correlation_id} for {tool_name}")
        if not pending.future.done():
            pending.timer = loop.call_at(pending.deadline, self._expire, correlation_id)
        try:
            return await pending.future
        finally:
            if pending.timer is not None:
                pending.timer.cancel()
            self._pending.pop(correlation_id, None)

    def _expire(self, correlation_id: str):
        pending = self._pending.get(correlation_id)
        if pending is None or pending.future.done():
            return
        loop = pending.future.get_loop()
        if loop.time() < pending.deadline:
            pending.timer = loop.call_at(pending.deadline, self._expire, correlation_id)
            return
        pending.future.set_result(False)
        self._pending.pop(correlation_id, None)
        log.info(
            f"[{pending.conversation_id}] Confirmation {correlation_id} for {pending.tool_name} "
            f"timed out after {self.timeout_sec:.0f}s"
        )

    @staticmethod
    def parse_callback(data: str) -> tuple[str, str] | None:
        correlation_id, sep, action = (data or "").rpartition(":")
        if not sep or not correlation_id or action not in (APPROVE_ACTION, REJECT_ACTION):
            return None
        return correlation_id, action

    def handle_callback(self, data: str) -> ConfirmationOutcome | None:
        """Resolve a pending confirmation from button data. Unknown or stale ids return None."""
        parsed = self.parse_callback(data)
        if parsed is None:
            return None
        correlation_id, action = parsed

        pending = self._pending.get(correlation_id)
        if pending is None or pending.future.done():
            return None

        approved = action == APPROVE_ACTION
        if pending.timer is not None:
            pending.timer.cancel()
        pending.future.set_result(approved)
        self._pending.pop(correlation_id, None)
        log.info(
            f"[{pending.conversation_id}] Confirmation {correlation_id} for {pending.tool_name}: "
            f"{'approved' if approved else 'rejected'}"
        )
        return ConfirmationOutcome(
            correlation_id=correlation_id,
            conversation_id=pending.conversation_id,
            tool_name=pending.tool_name,
            approved=approved,
        )

    def clear_all(self) -> int:
        """Deny every outstanding confirmation. Returns how many were pending."""
        count = 0
        for pending in list(self._pending.values()):
            if pending.timer is not None:
                pending.timer.cancel()
            if not pending.future.done():
                pending.future.set_result(False)
                count += 1
        self._pending.clear()
        if count:
            log.info(f"Cleared {count} pending confirmation(s)")
        return count

    def pending_count(self, conversation_id: str | None = None) -> int:
        if conversation_id is None:
            return len(self._pending)
        return sum(1 for p in self._pending.values() if p.conversation_id == conversation_id)
