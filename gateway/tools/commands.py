"""Shell command tool executed inside the workspace."""

from __future__ import annotations

import asyncio
import os
import subprocess

from pydantic import BaseModel, Field

from ..logging_setup import log
from .registry import ToolExecutionError, ToolRegistry, ToolSpec
from .workspace import WorkspaceTools

MAX_OUTPUT_CHARS = 12000


class RunCommandArgs(BaseModel):
    CommandLine: str = Field(min_length=1, description="Shell command to run.")
    Cwd: str | None = Field(default=None, description="Working directory (inside the workspace).")


RUN_COMMAND_SCHEMA = {
    "type": "object",
    "properties": {
        "CommandLine": {"type": "string", "description": "Shell command to run."},
        "Cwd": {"type": "string", "description": "Absolute working directory inside the workspace."},
    },
    "required": ["CommandLine"],
}


def _tail(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"...[truncated {len(text) - limit} chars]\n" + text[-limit:]


class CommandTools:
    """Runs shell commands with a wall-clock timeout and bounded output."""

    def __init__(self, workspace: WorkspaceTools, timeout_sec: int = 120):
        self.workspace = workspace
        self.timeout_sec = max(1, int(timeout_sec))

    def _run_sync(self, command: str, cwd: str) -> dict:
        env = os.environ.copy()
        env["CI"] = "1"
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                text=True,
                capture_output=True,
                timeout=self.timeout_sec,
                env=env,
            )
            return {
                "exitCode": int(completed.returncode),
                "stdout": _tail(str(completed.stdout or "")),
                "stderr": _tail(str(completed.stderr or "")),
                "timedOut": False,
            }
        except subprocess.TimeoutExpired as e:
            stdout = e.stdout.decode("utf-8", "replace") if isinstance(e.stdout, bytes) else str(e.stdout or "")
            stderr = e.stderr.decode("utf-8", "replace") if isinstance(e.stderr, bytes) else str(e.stderr or "")
            return {
                "exitCode": 124,
                "stdout": _tail(stdout),
                "stderr": _tail(stderr),
                "timedOut": True,
            }

    async def run_command(self, args: RunCommandArgs) -> dict:
        cwd = self.workspace.resolve(args.Cwd) if args.Cwd else self.workspace.workspace
        if not cwd.is_dir():
            raise ToolExecutionError(f"Working directory not found: {args.Cwd}")

        log.info(f"Running command in {cwd}: {args.CommandLine}")
        try:
            result = await asyncio.to_thread(self._run_sync, args.CommandLine, str(cwd))
        except OSError as e:
            raise ToolExecutionError(f"Failed to start command: {e}") from e

        result["command"] = args.CommandLine
        result["status"] = "done" if result["exitCode"] == 0 else "error"
        if result["timedOut"]:
            result["status"] = "timeout"
            log.warning(f"Command timed out after {self.timeout_sec}s: {args.CommandLine}")
        return result

    def register(self, registry: ToolRegistry):
        registry.register(ToolSpec(
            "run_command",
            f"Run a shell command in the workspace and return its exit code and output "
            f"(times out after {self.timeout_sec}s).",
            RUN_COMMAND_SCHEMA, RunCommandArgs, self.run_command,
        ))
