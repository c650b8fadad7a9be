"""Reply formatting and Markdown to Telegram-safe HTML conversion."""

from __future__ import annotations

import re

from .types import ToolInvocation

_READ_TOOLS = {"view_file", "list_dir"}
_SEARCH_TOOLS = {"grep_search", "find_by_name"}
_EDIT_TOOLS = {"replace_file_content", "multi_replace_file_content"}
_PATH_ARGS = ("AbsolutePath", "TargetFile", "DirectoryPath", "SearchPath", "SearchDirectory")


def _escape_html(text: str) -> str:
    """Escape HTML special characters."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def strip_html(text: str) -> str:
    """Plain-text fallback for markup Telegram rejected."""
    plain = re.sub(r"<[^>]+>", "", text)
    return plain.replace("&lt;", "<").replace("&gt;", ">").replace("&amp;", "&")


def markdown_to_telegram_html(text: str) -> str:
    """Convert LLM markdown to Telegram-safe HTML.

    Handles code blocks, inline code, headings, bold, italic, strikethrough,
    links, blockquotes, and list markers. All other text is HTML-escaped.
    """
    if not text:
        return ""

    # 1. Extract fenced code blocks → placeholders
    code_blocks: list[str] = []

    def _extract_code_block(m: re.Match) -> str:
        code_blocks.append(m.group(1))
        return f"\x00CB{len(code_blocks) - 1}\x00"

    text = re.sub(r"```\w*\n?([\s\S]*?)```", _extract_code_block, text)

    # 2. Extract inline code → placeholders
    inline_codes: list[str] = []

    def _extract_inline(m: re.Match) -> str:
        inline_codes.append(m.group(1))
        return f"\x00IC{len(inline_codes) - 1}\x00"

    text = re.sub(r"`([^`\n]+)`", _extract_inline, text)

    # 3. Headings become bold lines (# Title → **Title**)
    text = re.sub(r"^#{1,6}\s+(.+)$", r"**\1**", text, flags=re.MULTILINE)

    # 4. Strip blockquote markers
    text = re.sub(r"^>\s*(.*)$", r"\1", text, flags=re.MULTILINE)

    # 5. Escape HTML in remaining text
    text = _escape_html(text)

    # 6. Convert markdown formatting (order matters)
    text = re.sub(r"\[([^\]]+)\]\(([^)\s]+)\)", r'<a href="\2">\1</a>', text)  # links
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)  # bold
    text = re.sub(r"__(.+?)__", r"<b>\1</b>", text)  # bold alt
    text = re.sub(r"(?<!\w)_([^_\n]+)_(?!\w)", r"<i>\1</i>", text)  # italic
    text = re.sub(r"~~(.+?)~~", r"<s>\1</s>", text)  # strikethrough
    text = re.sub(r"^[-*]\s+", "• ", text, flags=re.MULTILINE)  # list markers

    # 7. Restore inline code
    for i, code in enumerate(inline_codes):
        text = text.replace(f"\x00IC{i}\x00", f"<code>{_escape_html(code)}</code>")

    # 8. Restore code blocks
    for i, code in enumerate(code_blocks):
        text = text.replace(
            f"\x00CB{i}\x00", f"<pre><code>{_escape_html(code)}</code></pre>"
        )

    return text


def format_outgoing(text: str) -> str:
    """Normalize a model reply for chat: task checkboxes become emoji."""
    text = re.sub(r"^(\s*)[-*] \[ \]", r"\1⬜", text or "", flags=re.MULTILINE)
    text = re.sub(r"^(\s*)[-*] \[[xX]\]", r"\1✅", text, flags=re.MULTILINE)
    return text.strip()


def extract_path(args: dict | None) -> str:
    """Last three segments of the first path-like argument."""
    args = args or {}
    raw = next((str(args[key]) for key in _PATH_ARGS if args.get(key)), "")
    parts = raw.replace("\\", "/").split("/")
    return "/".join(parts[-3:])


def format_change_summary(tool_calls: list[ToolInvocation]) -> str:
    """Group performed tool calls into a short "what happened" block."""
    if not tool_calls:
        return ""

    read: list[str] = []
    searched: list[str] = []
    modified: list[str] = []
    created: list[str] = []
    commands: list[str] = []
    errors: list[str] = []

    for call in tool_calls:
        if not call.success:
            errors.append(f"❌ {call.tool}: {call.error}")
        elif call.tool in _READ_TOOLS:
            read.append(f"📂 {call.tool}({extract_path(call.args)})")
        elif call.tool in _SEARCH_TOOLS:
            query = call.args.get("Query") or call.args.get("Pattern") or ""
            searched.append(f'🔍 {call.tool}("{query}")')
        elif call.tool in _EDIT_TOOLS:
            modified.append(f"✏️ {extract_path(call.args)}")
        elif call.tool == "write_to_file":
            created.append(f"📝 {extract_path(call.args)}")
        elif call.tool == "run_command":
            commands.append(f"⚡ `{call.args.get('CommandLine') or 'command'}`")
        else:
            read.append(f"🔧 {call.tool}")

    lines: list[str] = []
    if read:
        lines.append(f"📖 **Read:** {len(read)} files")
    if searched:
        lines.append(f"🔍 **Searched:** {len(searched)} queries")
    if modified:
        lines.append("✏️ **Modified:**\n" + "\n".join(modified))
    if created:
        lines.append("📝 **Created:**\n" + "\n".join(created))
    if commands:
        lines.append("⚡ **Commands:**\n" + "\n".join(commands))
    if errors:
        lines.append("\n⚠️ **Errors:**\n" + "\n".join(errors))
    return "\n".join(lines)


def format_reply(response: str, tool_calls: list[ToolInvocation]) -> str:
    """Final chat reply: the model's answer plus the action summary, if any."""
    reply = format_outgoing(response)
    summary = format_change_summary(tool_calls)
    if summary:
        reply = f"{reply}\n\n---\n**Actions performed:**\n{summary}"
    return reply


def format_status(
    *,
    authenticated: bool,
    gateway_active: bool,
    provider: str,
    model: str,
    workspace_path: str | None,
    session_messages: int | None = None,
    pending_confirmations: int = 0,
    uptime: str | None = None,
) -> str:
    lines = ["🤖 **DevGate Status**", ""]
    lines.append(f"🔐 Auth: {'✅ Connected' if authenticated else '❌ Not connected'}")
    lines.append(f"📱 Gateway: {'🟢 Active' if gateway_active else '🔴 Stopped'}")
    lines.append(f"🧠 Model: {model or 'Not set'} ({provider or 'no provider'})")
    if workspace_path:
        lines.append(f"📁 Workspace: `{workspace_path}`")
    if session_messages is not None:
        lines.append(f"💬 Messages in session: {session_messages}")
    if pending_confirmations:
        lines.append(f"⏳ Pending confirmations: {pending_confirmations}")
    if uptime:
        lines.append(f"⏱️ Uptime: {uptime}")
    return "\n".join(lines)
