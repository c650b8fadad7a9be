"""Tool registry and dispatcher with typed argument validation."""

from __future__ import annotations

import asyncio
import inspect
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, ValidationError

from ..constants import MAX_TOOL_RESULT_CHARS
from ..logging_setup import log

ToolHandler = Callable[[BaseModel], Union[Any, Awaitable[Any]]]


class ToolError(Exception):
    """Base error raised by the dispatcher; the message is shown to the model."""


class UnknownToolError(ToolError):
    pass


class ToolArgumentError(ToolError):
    pass


class ToolExecutionError(ToolError):
    pass


@dataclass
class ToolSpec:
    """One callable tool: its advertised schema plus its typed argument model."""

    name: str
    description: str
    parameters: dict
    args_model: type[BaseModel]
    handler: ToolHandler

    def declaration(self) -> dict:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        problems.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(problems)


def _stringify(result: Any) -> str:
    if result is None:
        return "OK"
    if isinstance(result, str):
        text = result
    else:
        text = json.dumps(result, ensure_ascii=False, default=str, indent=2)
    if len(text) > MAX_TOOL_RESULT_CHARS:
        text = text[:MAX_TOOL_RESULT_CHARS] + f"\n...[truncated {len(text) - MAX_TOOL_RESULT_CHARS} chars]"
    return text


class ToolRegistry:
    """Static set of tools advertised to the model and executed by name."""

    def __init__(self):
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict]:
        """Provider-neutral schemas: [{name, description, parameters}]."""
        return [spec.declaration() for spec in self._tools.values()]

    def validate(self, name: str, args: dict | None) -> BaseModel:
        spec = self._tools.get(name)
        if spec is None:
            raise UnknownToolError(f"Unknown tool: {name}")
        try:
            return spec.args_model.model_validate(args or {})
        except ValidationError as e:
            raise ToolArgumentError(f"Invalid arguments for {name}: {_format_validation_error(e)}") from e

    async def execute(self, name: str, args: dict | None) -> str:
        """Validate ``args`` and run the tool.

        Raises:
            UnknownToolError: no tool is registered under ``name``.
            ToolArgumentError: the arguments do not match the tool's model.
            ToolExecutionError: the handler failed.
        """
        parsed = self.validate(name, args)
        spec = self._tools[name]
        try:
            if inspect.iscoroutinefunction(spec.handler):
                result = await spec.handler(parsed)
            else:
                # Blocking file I/O runs off the event loop.
                result = await asyncio.to_thread(spec.handler, parsed)
                if inspect.isawaitable(result):
                    result = await result
        except ToolError:
            raise
        except Exception as e:
            log.warning(f"tool {name} failed: {e}")
            raise ToolExecutionError(str(e) or e.__class__.__name__) from e
        return _stringify(result)
