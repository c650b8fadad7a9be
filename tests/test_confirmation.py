from __future__ import annotations

import asyncio

import pytest
from conftest import FakeTransport

from gateway.confirmation import ConfirmationGate, describe_action, short_path


async def _wait_for_prompt(transport: FakeTransport, count: int = 1):
    for _ in range(100):
        if len(transport.prompts) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError("confirmation prompt was never sent")


def _callback_data(transport: FakeTransport, index: int = 0, button: int = 0) -> str:
    _, _, buttons = transport.prompts[index]
    return buttons[0][button].data


@pytest.mark.parametrize("tool, args, expected", [
    ("write_to_file", {"TargetFile": "/w/a.py", "Overwrite": True}, True),
    ("write_to_file", {"TargetFile": "/w/a.py", "Overwrite": False}, False),
    ("write_to_file", {"TargetFile": "/w/a.py"}, False),
    ("replace_file_content", {"TargetFile": "/w/a.py"}, True),
    ("multi_replace_file_content", {"TargetFile": "/w/a.py"}, True),
    ("run_command", {"CommandLine": "RM -rf build"}, True),
    ("run_command", {"CommandLine": "git reset --hard HEAD"}, True),
    ("run_command", {"CommandLine": "ls -la"}, False),
    ("view_file", {"AbsolutePath": "/w/a.py"}, False),
])
def test_needs_confirmation_rules(tool, args, expected):
    gate = ConfirmationGate(FakeTransport())
    assert gate.needs_confirmation(tool, args) is expected


def test_extra_markers_extend_destructive_commands():
    gate = ConfirmationGate(FakeTransport(), extra_markers=["docker system prune"])
    assert gate.is_destructive_command("docker system prune -af")
    assert not gate.is_destructive_command("docker ps")


def test_describe_action_mentions_the_command_and_short_path():
    text = describe_action("run_command", {"CommandLine": "rm -rf dist", "Cwd": "/home/me/proj/app"})
    assert text.startswith("⚠️ **Confirmation Required**")
    assert "`rm -rf dist`" in text
    assert "me/proj/app" in text
    assert short_path("/a/b/c/d/e.py") == "c/d/e.py"


async def test_approve_resolves_request():
    transport = FakeTransport()
    gate = ConfirmationGate(transport, timeout_sec=5)
    task = asyncio.create_task(gate.request_confirmation("1", "replace_file_content", {"TargetFile": "/w/a"}))
    await _wait_for_prompt(transport)

    data = _callback_data(transport, button=0)
    assert data.endswith(":approve")
    outcome = gate.handle_callback(data)

    assert outcome is not None and outcome.approved
    assert outcome.tool_name == "replace_file_content"
    assert await task is True
    assert gate.pending_count() == 0


async def test_second_resolution_is_a_noop():
    transport = FakeTransport()
    gate = ConfirmationGate(transport, timeout_sec=5)
    task = asyncio.create_task(gate.request_confirmation("1", "run_command", {"CommandLine": "rm x"}))
    await _wait_for_prompt(transport)

    reject = _callback_data(transport, button=1)
    approve = _callback_data(transport, button=0)
    assert gate.handle_callback(reject).approved is False
    assert gate.handle_callback(approve) is None
    assert await task is False


async def test_timeout_denies_after_deadline():
    transport = FakeTransport()
    gate = ConfirmationGate(transport, timeout_sec=0.05)
    loop = asyncio.get_running_loop()
    started = loop.time()

    approved = await gate.request_confirmation("1", "run_command", {"CommandLine": "rm x"})

    assert approved is False
    assert loop.time() - started >= 0.05
    assert gate.handle_callback(_callback_data(transport)) is None


async def test_clear_all_denies_everything_pending():
    transport = FakeTransport()
    gate = ConfirmationGate(transport, timeout_sec=60)
    first = asyncio.create_task(gate.request_confirmation("1", "run_command", {"CommandLine": "rm a"}))
    second = asyncio.create_task(gate.request_confirmation("2", "run_command", {"CommandLine": "rm b"}))
    await _wait_for_prompt(transport, 2)

    assert gate.pending_count() == 2
    assert gate.pending_count("2") == 1
    assert gate.clear_all() == 2
    assert await first is False
    assert await second is False


async def test_prompt_failure_denies():
    gate = ConfirmationGate(FakeTransport(prompt_error=RuntimeError("telegram down")))
    assert await gate.request_confirmation("1", "run_command", {"CommandLine": "rm x"}) is False
    assert gate.pending_count() == 0


@pytest.mark.parametrize("data", ["", "garbage", "confirm_1_abc:maybe", ":approve", "confirm_0_000000:approve"])
def test_unknown_callbacks_are_ignored(data):
    gate = ConfirmationGate(FakeTransport())
    assert gate.handle_callback(data) is None
