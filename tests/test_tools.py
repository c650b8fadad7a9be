from __future__ import annotations

import asyncio
import json
import sys
import time

import pytest
from pydantic import BaseModel

from providers import gemini_tools, openai_tools

from gateway.tools import (
    ToolArgumentError,
    ToolExecutionError,
    ToolRegistry,
    ToolSpec,
    UnknownToolError,
    build_default_registry,
)


@pytest.fixture
def registry(workspace):
    return build_default_registry(str(workspace), command_timeout_sec=10)


def test_default_registry_advertises_every_tool(registry):
    assert registry.names() == [
        "view_file", "list_dir", "find_by_name", "grep_search",
        "write_to_file", "replace_file_content", "multi_replace_file_content", "run_command",
    ]
    declarations = registry.declarations()
    assert all({"name", "description", "parameters"} <= set(d) for d in declarations)
    assert openai_tools(declarations)[0] == {"type": "function", "function": declarations[0]}
    assert gemini_tools(declarations) == [{"functionDeclarations": declarations}]


def test_duplicate_registration_is_rejected():
    class Args(BaseModel):
        pass

    registry = ToolRegistry()
    spec = ToolSpec("noop", "does nothing", {"type": "object"}, Args, lambda args: None)
    registry.register(spec)
    with pytest.raises(ValueError):
        registry.register(spec)


async def test_unknown_tool_and_bad_arguments(registry):
    with pytest.raises(UnknownToolError):
        await registry.execute("does_not_exist", {})
    with pytest.raises(ToolArgumentError, match="AbsolutePath"):
        await registry.execute("view_file", {"StartLine": 3})


async def test_handler_exceptions_become_execution_errors():
    class Args(BaseModel):
        pass

    def boom(args):
        raise KeyError("kaput")

    registry = ToolRegistry()
    registry.register(ToolSpec("boom", "fails", {"type": "object"}, Args, boom))
    with pytest.raises(ToolExecutionError):
        await registry.execute("boom", {})


async def test_blocking_handlers_do_not_stall_the_event_loop():
    class Args(BaseModel):
        pass

    def slow(args):
        time.sleep(0.2)
        return "slow done"

    registry = ToolRegistry()
    registry.register(ToolSpec("slow", "blocks", {"type": "object"}, Args, slow))
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            ticks += 1
            await asyncio.sleep(0.01)

    task = asyncio.create_task(ticker())
    try:
        assert await registry.execute("slow", {}) == "slow done"
    finally:
        task.cancel()

    assert ticks >= 5


async def test_paths_outside_workspace_are_denied(registry, workspace, tmp_path):
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")
    with pytest.raises(ToolExecutionError, match="Access denied"):
        await registry.execute("view_file", {"AbsolutePath": str(tmp_path / "secret.txt")})
    with pytest.raises(ToolExecutionError, match="Access denied"):
        await registry.execute("view_file", {"AbsolutePath": "../secret.txt"})


async def test_view_file_line_range_and_relative_paths(registry, workspace):
    (workspace / "lines.txt").write_text("one\ntwo\nthree\nfour", encoding="utf-8")
    assert await registry.execute("view_file", {"AbsolutePath": "lines.txt", "StartLine": 2, "EndLine": 3}) == "two\nthree"


async def test_list_dir_puts_directories_first(registry, workspace):
    (workspace / "b.txt").write_text("bb", encoding="utf-8")
    (workspace / "a_dir").mkdir()
    (workspace / "a_dir" / "inner.txt").write_text("", encoding="utf-8")

    entries = json.loads(await registry.execute("list_dir", {"DirectoryPath": str(workspace)}))
    assert [e["name"] for e in entries] == ["a_dir", "b.txt"]
    assert entries[0]["isDir"] is True and entries[0]["numChildren"] == 1
    assert entries[1]["sizeBytes"] == 2


async def test_find_and_grep(registry, workspace):
    (workspace / "src").mkdir()
    (workspace / "src" / "main.py").write_text("def main():\n    return 1\n", encoding="utf-8")
    (workspace / "node_modules").mkdir()
    (workspace / "node_modules" / "skip.py").write_text("def main(): pass\n", encoding="utf-8")

    found = json.loads(await registry.execute("find_by_name", {"SearchDirectory": str(workspace), "Pattern": "*.py"}))
    assert [path.rsplit("/", 1)[-1] for path in found] == ["main.py"]

    hits = json.loads(await registry.execute("grep_search", {"SearchPath": str(workspace), "Query": "DEF MAIN", "CaseInsensitive": True}))
    assert len(hits) == 1
    assert hits[0]["lineNumber"] == 1
    assert hits[0]["lineContent"] == "def main():"


async def test_write_to_file_refuses_to_clobber(registry, workspace):
    target = workspace / "pkg" / "new.py"
    await registry.execute("write_to_file", {"TargetFile": str(target), "CodeContent": "x = 1\n"})
    assert target.read_text(encoding="utf-8") == "x = 1\n"

    with pytest.raises(ToolExecutionError, match="already exists"):
        await registry.execute("write_to_file", {"TargetFile": str(target), "CodeContent": "x = 2\n"})

    await registry.execute("write_to_file", {"TargetFile": str(target), "CodeContent": "x = 2\n", "Overwrite": True})
    assert target.read_text(encoding="utf-8") == "x = 2\n"


async def test_replace_file_content(registry, workspace):
    target = workspace / "cfg.ini"
    target.write_text("debug = false\nlevel = false\n", encoding="utf-8")

    with pytest.raises(ToolExecutionError, match="not found"):
        await registry.execute("replace_file_content", {
            "TargetFile": str(target), "TargetContent": "verbose", "ReplacementContent": "x",
        })
    with pytest.raises(ToolExecutionError, match="2 occurrences"):
        await registry.execute("replace_file_content", {
            "TargetFile": str(target), "TargetContent": "false", "ReplacementContent": "true",
        })

    await registry.execute("replace_file_content", {
        "TargetFile": str(target), "TargetContent": "false", "ReplacementContent": "true", "AllowMultiple": True,
    })
    assert target.read_text(encoding="utf-8") == "debug = true\nlevel = true\n"


async def test_multi_replace_is_all_or_nothing(registry, workspace):
    target = workspace / "app.py"
    target.write_text("a = 1\nb = 2\n", encoding="utf-8")

    with pytest.raises(ToolExecutionError):
        await registry.execute("multi_replace_file_content", {
            "TargetFile": str(target),
            "ReplacementChunks": [
                {"TargetContent": "a = 1", "ReplacementContent": "a = 10"},
                {"TargetContent": "c = 3", "ReplacementContent": "c = 30"},
            ],
        })
    assert target.read_text(encoding="utf-8") == "a = 1\nb = 2\n"

    await registry.execute("multi_replace_file_content", {
        "TargetFile": str(target),
        "ReplacementChunks": [
            {"TargetContent": "a = 1", "ReplacementContent": "a = 10"},
            {"TargetContent": "b = 2", "ReplacementContent": "b = 20"},
        ],
    })
    assert target.read_text(encoding="utf-8") == "a = 10\nb = 20\n"


async def test_run_command_reports_exit_code_and_output(registry, workspace):
    ok = json.loads(await registry.execute("run_command", {"CommandLine": "echo hello"}))
    assert ok["exitCode"] == 0
    assert ok["stdout"].strip() == "hello"
    assert ok["status"] == "done"

    failed = json.loads(await registry.execute("run_command", {
        "CommandLine": f'"{sys.executable}" -c "import sys; sys.exit(3)"',
    }))
    assert failed["exitCode"] == 3
    assert failed["status"] == "error"


async def test_run_command_rejects_cwd_outside_workspace(registry, tmp_path):
    with pytest.raises(ToolExecutionError, match="Access denied"):
        await registry.execute("run_command", {"CommandLine": "pwd", "Cwd": str(tmp_path)})
