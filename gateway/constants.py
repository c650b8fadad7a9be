"""Shared constants used by the DevGate bot."""

from __future__ import annotations

from pathlib import Path

# Project root for resolving runtime-relative paths reliably.
PROJECT_ROOT = Path(__file__).resolve().parent.parent

FALLBACK_RESPONSE = "⚠️ Could not reach a final answer. Please try again."

# Substrings that mark a shell command as destructive (matched case-insensitively).
DESTRUCTIVE_COMMAND_MARKERS = (
    "rm ",
    "rm -",
    "rmdir",
    "del ",
    "delete",
    "format",
    "drop ",
    "truncate",
    "npm uninstall",
    "pip uninstall",
    "git reset --hard",
    "git clean",
    "shutdown",
    "reboot",
)

# Which tool calls pause for human approval.
#   always  -> every call
#   flag    -> when the named boolean argument is true
#   command -> when the named argument contains a destructive marker
CONFIRMATION_RULES: dict[str, dict[str, str]] = {
    "write_to_file": {"kind": "flag", "arg": "Overwrite"},
    "replace_file_content": {"kind": "always"},
    "multi_replace_file_content": {"kind": "always"},
    "run_command": {"kind": "command", "arg": "CommandLine"},
}

APPROVE_ACTION = "approve"
REJECT_ACTION = "reject"

MAX_TOOL_RESULT_CHARS = 20000

AGENT_IDENTITY = """# DevGate

You are DevGate, an autonomous AI coding agent working inside the user's local workspace.
The user talks to you from Telegram, so keep chat replies short and readable on a phone.

## Working Rules
1. Inspect files (view_file, list_dir, grep_search) before editing them.
2. Prefer replace_file_content for small edits; only overwrite whole files when asked.
3. Use absolute paths inside the workspace for every tool call.
4. Destructive actions (overwrites, edits, risky commands) ask the user for approval.
   If an action is rejected, do not retry it; explain what you would have done instead.
5. When a tool fails, read the error and correct your next call.
6. Finish with a concise summary of what you changed. Never paste whole files into chat.
7. Respond in the same language the user writes in."""

HELP_TEXT = (
    "🤖 **DevGate Help**\n\n"
    "**What I can do:**\n"
    "• Read and understand your code\n"
    "• Create new files and edit existing ones\n"
    "• Run terminal commands\n"
    "• Search your codebase\n\n"
    "**Tips:**\n"
    "• Be specific about file names and paths\n"
    "• I'll ask for confirmation before destructive actions\n\n"
    "**Commands:**\n"
    "/status — View connection status\n"
    "/workspace — Show workspace path\n"
    "/clear — Clear conversation memory\n"
    "/help — This help message"
)

WELCOME_TEXT = (
    "👋 **Welcome to DevGate!**\n\n"
    "I'm your local AI coding assistant. Send me any coding task and I'll work on it "
    "in your workspace.\n\n"
    "**Commands:**\n"
    "/status — View connection status\n"
    "/workspace — Show current workspace\n"
    "/clear — Clear session memory\n"
    "/help — Show help"
)
