"""Tool-calling reasoning loop.

Each iteration sends the full content history plus the tool declarations to the
model. Requested tools run sequentially (through the confirmation gate when
they are risky) and their results are appended as function responses until the
model answers with plain text or the iteration cap is reached.
"""

from __future__ import annotations

from typing import Any

from providers import LLMClient

from .confirmation import ConfirmationGate
from .constants import AGENT_IDENTITY, FALLBACK_RESPONSE
from .logging_setup import log
from .personality import build_contents, build_system_prompt
from .tools import ToolError, ToolRegistry
from .types import ConversationContext, ThinkResult, ToolInvocation

DECLINED_ERROR = "User declined this action (rejected or timed out). Do not retry it without asking."


class ReasoningLoop:
    def __init__(
        self,
        llm: LLMClient,
        registry: ToolRegistry,
        gate: ConfirmationGate | None = None,
        personality: str = AGENT_IDENTITY,
        max_iterations: int = 25,
    ):
        self.llm = llm
        self.registry = registry
        self.gate = gate
        self.personality = personality
        self.max_iterations = max(1, int(max_iterations))

    async def think(self, user_message: str, context: ConversationContext) -> ThinkResult:
        """Run the loop for one user message.

        Tool failures and declined confirmations are fed back to the model.
        ``LLMAuthError`` and ``LLMTransportError`` propagate to the caller.
        """
        system_prompt = build_system_prompt(context, self.personality)
        contents = build_contents(user_message, context)
        declarations = self.registry.declarations()

        tool_calls: list[ToolInvocation] = []
        total_tokens = 0
        iterations = 0

        while iterations < self.max_iterations:
            iterations += 1
            response = await self.llm.generate(system_prompt, contents, declarations)
            total_tokens += response.total_tokens

            if not response.parts:
                break
            contents.append(response.to_content())

            calls = response.function_calls
            if calls:
                results = []
                for call in calls:
                    invocation, part = await self._run_tool(context.conversation_id, iterations, call)
                    tool_calls.append(invocation)
                    results.append(part)
                contents.append({"role": "user", "parts": results})
                continue

            text = response.text
            if text.strip():
                return ThinkResult(
                    response=text,
                    tool_calls=tool_calls,
                    tokens_used=total_tokens,
                    iterations=iterations,
                )
            break

        log.warning(
            f"[{context.conversation_id}] No final answer after {iterations} iteration(s) "
            f"({len(tool_calls)} tool call(s))"
        )
        return ThinkResult(
            response=FALLBACK_RESPONSE,
            tool_calls=tool_calls,
            tokens_used=total_tokens,
            iterations=iterations,
        )

    async def _run_tool(
        self, conversation_id: str, iteration: int, call: dict
    ) -> tuple[ToolInvocation, dict]:
        name = str(call.get("name") or "")
        args: dict[str, Any] = call.get("args") if isinstance(call.get("args"), dict) else {}
        log.info(f"[{conversation_id}] tool {name} (iteration {iteration})")

        try:
            self.registry.validate(name, args)
            if self.gate is not None and self.gate.needs_confirmation(name, args):
                approved = await self.gate.request_confirmation(conversation_id, name, args)
                if not approved:
                    log.info(f"[{conversation_id}] tool {name} declined by user")
                    return self._failure(call, name, args, DECLINED_ERROR)
            result = await self.registry.execute(name, args)
        except ToolError as e:
            log.warning(f"[{conversation_id}] tool {name} failed: {e}")
            return self._failure(call, name, args, str(e))

        invocation = ToolInvocation(tool=name, args=args, success=True, result=result)
        return invocation, self._function_response(call, name, {"content": result})

    def _failure(self, call: dict, name: str, args: dict, error: str) -> tuple[ToolInvocation, dict]:
        invocation = ToolInvocation(tool=name, args=args, success=False, error=error)
        return invocation, self._function_response(call, name, {"error": error})

    @staticmethod
    def _function_response(call: dict, name: str, response: dict) -> dict:
        payload: dict[str, Any] = {"name": name, "response": response}
        if call.get("id"):
            payload["id"] = call["id"]
        return {"functionResponse": payload}
