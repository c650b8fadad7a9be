"""Workspace tools exposed to the model."""

from __future__ import annotations

from .commands import CommandTools
from .registry import (
    ToolArgumentError,
    ToolError,
    ToolExecutionError,
    ToolRegistry,
    ToolSpec,
    UnknownToolError,
)
from .workspace import WorkspaceTools


def build_default_registry(workspace_path: str, command_timeout_sec: int = 120) -> ToolRegistry:
    """Registry with the file tools and run_command bound to ``workspace_path``."""
    registry = ToolRegistry()
    workspace = WorkspaceTools(workspace_path)
    workspace.register(registry)
    CommandTools(workspace, timeout_sec=command_timeout_sec).register(registry)
    return registry


__all__ = [
    "build_default_registry",
    "CommandTools",
    "ToolArgumentError",
    "ToolError",
    "ToolExecutionError",
    "ToolRegistry",
    "ToolSpec",
    "UnknownToolError",
    "WorkspaceTools",
]
