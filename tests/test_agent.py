from __future__ import annotations

import asyncio

from conftest import FakeLLM, FakeTransport, call_response, text_response

from gateway.agent import DECLINED_ERROR, ReasoningLoop
from gateway.confirmation import ConfirmationGate
from gateway.constants import FALLBACK_RESPONSE
from gateway.personality import build_contents, build_system_prompt
from gateway.tools import build_default_registry
from gateway.types import ConversationContext
from memory import Message


def _loop(workspace, llm, gate=None, max_iterations=5) -> ReasoningLoop:
    registry = build_default_registry(str(workspace), command_timeout_sec=10)
    return ReasoningLoop(llm, registry, gate, max_iterations=max_iterations)


def _context(workspace) -> ConversationContext:
    return ConversationContext(conversation_id="1", workspace_path=str(workspace))


async def test_plain_text_answer_needs_one_iteration(workspace):
    llm = FakeLLM([text_response("Hello!", tokens=12)])
    result = await _loop(workspace, llm).think("hi", _context(workspace))

    assert result.response == "Hello!"
    assert result.iterations == 1
    assert result.tokens_used == 12
    assert result.tool_calls == []
    assert llm.calls[0]["tool_schemas"]


async def test_tool_call_then_answer(workspace):
    (workspace / "notes.txt").write_text("remember the milk", encoding="utf-8")
    llm = FakeLLM([
        call_response("view_file", {"AbsolutePath": str(workspace / "notes.txt")}, call_id="c1"),
        text_response("The note says to remember the milk."),
    ])
    result = await _loop(workspace, llm).think("what does notes.txt say?", _context(workspace))

    assert result.response == "The note says to remember the milk."
    assert result.iterations == 2
    assert result.tokens_used == 20
    assert len(result.tool_calls) == 1
    assert result.tool_calls[0].success
    assert result.tool_calls[0].result == "remember the milk"

    second_turn = llm.calls[1]["contents"]
    assert second_turn[-2]["role"] == "model"
    response_part = second_turn[-1]["parts"][0]["functionResponse"]
    assert response_part == {"name": "view_file", "response": {"content": "remember the milk"}, "id": "c1"}


async def test_iteration_cap_returns_fallback(workspace):
    llm = FakeLLM()
    llm.default = call_response("list_dir", {"DirectoryPath": str(workspace)})
    result = await _loop(workspace, llm, max_iterations=3).think("loop forever", _context(workspace))

    assert result.response == FALLBACK_RESPONSE
    assert result.iterations == 3
    assert len(result.tool_calls) == 3
    assert len(llm.calls) == 3


async def test_empty_model_response_returns_fallback(workspace):
    result = await _loop(workspace, FakeLLM([None])).think("hi", _context(workspace))
    assert result.response == FALLBACK_RESPONSE
    assert result.iterations == 1


async def test_tool_failure_is_reported_to_the_model(workspace):
    llm = FakeLLM([
        call_response("view_file", {"AbsolutePath": str(workspace / "missing.py")}),
        text_response("That file does not exist."),
    ])
    result = await _loop(workspace, llm).think("open missing.py", _context(workspace))

    assert result.response == "That file does not exist."
    assert len(result.tool_calls) == 1
    failed = result.tool_calls[0]
    assert not failed.success
    assert "File not found" in failed.error
    response_part = llm.calls[1]["contents"][-1]["parts"][0]["functionResponse"]
    assert "File not found" in response_part["response"]["error"]


async def test_invalid_arguments_and_unknown_tools_fail_softly(workspace):
    llm = FakeLLM([
        call_response("view_file", {}),
        call_response("teleport", {"to": "mars"}),
        text_response("done"),
    ])
    result = await _loop(workspace, llm).think("go", _context(workspace))

    assert [c.success for c in result.tool_calls] == [False, False]
    assert "Invalid arguments" in result.tool_calls[0].error
    assert "Unknown tool" in result.tool_calls[1].error


async def test_overwrite_waits_for_approval(workspace):
    target = workspace / "app.py"
    target.write_text("old", encoding="utf-8")
    transport = FakeTransport()
    gate = ConfirmationGate(transport, timeout_sec=5)
    llm = FakeLLM([
        call_response("write_to_file", {"TargetFile": str(target), "CodeContent": "new", "Overwrite": True}),
        text_response("Rewrote app.py."),
    ])

    task = asyncio.create_task(_loop(workspace, llm, gate).think("rewrite app.py", _context(workspace)))
    for _ in range(100):
        if transport.prompts:
            break
        await asyncio.sleep(0)

    assert transport.prompts, "expected a confirmation prompt"
    assert target.read_text(encoding="utf-8") == "old"

    gate.handle_callback(transport.prompts[0][2][0][0].data)
    result = await task

    assert target.read_text(encoding="utf-8") == "new"
    assert result.tool_calls[0].success
    assert result.response == "Rewrote app.py."


async def test_rejected_action_is_not_executed(workspace):
    target = workspace / "app.py"
    target.write_text("keep me", encoding="utf-8")
    transport = FakeTransport()
    gate = ConfirmationGate(transport, timeout_sec=5)
    llm = FakeLLM([
        call_response("replace_file_content", {
            "TargetFile": str(target), "TargetContent": "keep", "ReplacementContent": "drop",
        }),
        text_response("Okay, I left it alone."),
    ])

    task = asyncio.create_task(_loop(workspace, llm, gate).think("edit app.py", _context(workspace)))
    for _ in range(100):
        if transport.prompts:
            break
        await asyncio.sleep(0)
    gate.handle_callback(transport.prompts[0][2][0][1].data)
    result = await task

    assert target.read_text(encoding="utf-8") == "keep me"
    assert result.tool_calls[0].success is False
    assert result.tool_calls[0].error == DECLINED_ERROR


def test_prompt_includes_summary_and_history():
    context = ConversationContext(
        conversation_id="1",
        summary="Created main.py.",
        recent_messages=[Message("user", "a"), Message("user", "b"), Message("assistant", "c")],
        goals=["ship v1"],
        workspace_path="/w",
    )
    prompt = build_system_prompt(context, "You are a test agent.")
    assert prompt.startswith("You are a test agent.")
    assert "Created main.py." in prompt
    assert "- ship v1" in prompt
    assert "/w" in prompt

    contents = build_contents("next", context)
    assert contents == [
        {"role": "user", "parts": [{"text": "a"}, {"text": "b"}]},
        {"role": "model", "parts": [{"text": "c"}]},
        {"role": "user", "parts": [{"text": "next"}]},
    ]
