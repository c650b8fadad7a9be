"""Workspace file tools: read, list, search and edit files inside the workspace."""

from __future__ import annotations

import fnmatch
import os
import re
from pathlib import Path

from pydantic import BaseModel, Field

from ..logging_setup import log
from .registry import ToolExecutionError, ToolRegistry, ToolSpec

MAX_VIEW_LINES = 800
MAX_RESULTS = 50
SKIPPED_DIRS = {".git", "node_modules", "dist", "build", "coverage", "__pycache__", ".venv", "venv"}


# ── Argument models ───────────────────────────────────────────


class ViewFileArgs(BaseModel):
    AbsolutePath: str = Field(description="Path of the file to read.")
    StartLine: int | None = Field(default=None, ge=1, description="First line to show (1-indexed).")
    EndLine: int | None = Field(default=None, ge=1, description="Last line to show (inclusive).")


class ListDirArgs(BaseModel):
    DirectoryPath: str = Field(description="Directory to list.")


class FindByNameArgs(BaseModel):
    SearchDirectory: str = Field(description="Directory to search recursively.")
    Pattern: str = Field(description="Glob pattern matched against file names, e.g. '*.py'.")


class GrepSearchArgs(BaseModel):
    SearchPath: str = Field(description="File or directory to search.")
    Query: str = Field(min_length=1, description="Regular expression to search for.")
    CaseInsensitive: bool = False


class WriteToFileArgs(BaseModel):
    TargetFile: str = Field(description="File to create.")
    CodeContent: str = ""
    Overwrite: bool = False


class ReplaceFileContentArgs(BaseModel):
    TargetFile: str
    TargetContent: str = Field(min_length=1)
    ReplacementContent: str
    AllowMultiple: bool = False


class ReplacementChunk(BaseModel):
    TargetContent: str = Field(min_length=1)
    ReplacementContent: str
    AllowMultiple: bool = False


class MultiReplaceFileContentArgs(BaseModel):
    TargetFile: str
    ReplacementChunks: list[ReplacementChunk] = Field(min_length=1)


# ── Advertised schemas ────────────────────────────────────────

_STRING = {"type": "string"}
_BOOLEAN = {"type": "boolean"}

VIEW_FILE_SCHEMA = {
    "type": "object",
    "properties": {
        "AbsolutePath": {**_STRING, "description": "Absolute path of the file to read (inside the workspace)."},
        "StartLine": {"type": "integer", "description": "Optional first line to show (1-indexed)."},
        "EndLine": {"type": "integer", "description": "Optional last line to show (inclusive)."},
    },
    "required": ["AbsolutePath"],
}

LIST_DIR_SCHEMA = {
    "type": "object",
    "properties": {
        "DirectoryPath": {**_STRING, "description": "Absolute path of the directory to list."},
    },
    "required": ["DirectoryPath"],
}

FIND_BY_NAME_SCHEMA = {
    "type": "object",
    "properties": {
        "SearchDirectory": {**_STRING, "description": "Directory to search recursively."},
        "Pattern": {**_STRING, "description": "Glob pattern matched against file names, e.g. '*.py'."},
    },
    "required": ["SearchDirectory", "Pattern"],
}

GREP_SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "SearchPath": {**_STRING, "description": "File or directory to search."},
        "Query": {**_STRING, "description": "Regular expression to search for."},
        "CaseInsensitive": {**_BOOLEAN, "description": "Match without regard to case."},
    },
    "required": ["SearchPath", "Query"],
}

WRITE_TO_FILE_SCHEMA = {
    "type": "object",
    "properties": {
        "TargetFile": {**_STRING, "description": "Absolute path of the file to create."},
        "CodeContent": {**_STRING, "description": "Full content of the file."},
        "Overwrite": {**_BOOLEAN, "description": "Replace the file if it already exists."},
    },
    "required": ["TargetFile", "CodeContent"],
}

REPLACE_FILE_CONTENT_SCHEMA = {
    "type": "object",
    "properties": {
        "TargetFile": {**_STRING, "description": "Absolute path of the file to edit."},
        "TargetContent": {**_STRING, "description": "Exact text to find."},
        "ReplacementContent": {**_STRING, "description": "Text that replaces TargetContent."},
        "AllowMultiple": {**_BOOLEAN, "description": "Replace every occurrence instead of exactly one."},
    },
    "required": ["TargetFile", "TargetContent", "ReplacementContent"],
}

MULTI_REPLACE_FILE_CONTENT_SCHEMA = {
    "type": "object",
    "properties": {
        "TargetFile": {**_STRING, "description": "Absolute path of the file to edit."},
        "ReplacementChunks": {
            "type": "array",
            "description": "Edits applied in order.",
            "items": {
                "type": "object",
                "properties": {
                    "TargetContent": {**_STRING, "description": "Exact text to find."},
                    "ReplacementContent": {**_STRING, "description": "Replacement text."},
                    "AllowMultiple": {**_BOOLEAN, "description": "Replace every occurrence."},
                },
                "required": ["TargetContent", "ReplacementContent"],
            },
        },
    },
    "required": ["TargetFile", "ReplacementChunks"],
}


def _replace(content: str, target: str, replacement: str, allow_multiple: bool) -> str:
    occurrences = content.count(target)
    if occurrences == 0:
        preview = target[:50] + ("..." if len(target) > 50 else "")
        raise ToolExecutionError(f"Target content not found: {preview!r}")
    if occurrences > 1 and not allow_multiple:
        raise ToolExecutionError(
            f"Found {occurrences} occurrences of target content. Set AllowMultiple to true to replace all."
        )
    return content.replace(target, replacement)


class WorkspaceTools:
    """File tools confined to one workspace directory."""

    def __init__(self, workspace_path: str):
        self.workspace = Path(workspace_path).expanduser().resolve()

    def resolve(self, raw_path: str) -> Path:
        """Resolve a model-provided path inside the workspace, blocking escapes."""
        path_text = (raw_path or "").strip().strip("`").strip()
        if not path_text:
            raise ToolExecutionError("Empty path")

        path = Path(path_text).expanduser()
        if not path.is_absolute():
            path = self.workspace / path
        # resolve() follows symlinks, so links pointing outside are rejected too.
        candidate = path.resolve()
        try:
            candidate.relative_to(self.workspace)
        except ValueError:
            raise ToolExecutionError(
                f"Access denied: {path_text} is outside the workspace root {self.workspace}"
            ) from None
        return candidate

    def _display(self, path: Path) -> str:
        return path.as_posix()

    # ── Read-only tools ───────────────────────────────────────

    def view_file(self, args: ViewFileArgs) -> str:
        target = self.resolve(args.AbsolutePath)
        if not target.is_file():
            raise ToolExecutionError(f"File not found: {args.AbsolutePath}")
        try:
            content = target.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            raise ToolExecutionError(f"File is not UTF-8 text: {args.AbsolutePath}") from None

        lines = content.split("\n")
        if args.StartLine or args.EndLine:
            start = (args.StartLine or 1) - 1
            end = args.EndLine or len(lines)
            return "\n".join(lines[start:end])
        if len(lines) > MAX_VIEW_LINES:
            shown = "\n".join(lines[:MAX_VIEW_LINES])
            return f"{shown}\n\n... File truncated (showing {MAX_VIEW_LINES} of {len(lines)} lines)"
        return content

    def list_dir(self, args: ListDirArgs) -> list[dict]:
        target = self.resolve(args.DirectoryPath)
        if not target.is_dir():
            raise ToolExecutionError(f"Directory not found: {args.DirectoryPath}")

        entries = []
        for item in target.iterdir():
            entry: dict = {"name": item.name, "isDir": item.is_dir(), "path": self._display(item)}
            try:
                if item.is_dir():
                    entry["numChildren"] = sum(1 for _ in item.iterdir())
                else:
                    entry["sizeBytes"] = item.stat().st_size
            except OSError:
                entry["numChildren" if item.is_dir() else "sizeBytes"] = "unknown"
            entries.append(entry)

        entries.sort(key=lambda e: (not e["isDir"], e["name"].lower()))
        return entries

    def find_by_name(self, args: FindByNameArgs) -> list[str]:
        root = self.resolve(args.SearchDirectory)
        if not root.is_dir():
            raise ToolExecutionError(f"Directory not found: {args.SearchDirectory}")

        matches: list[str] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRS)
            for name in sorted(filenames + dirnames):
                if fnmatch.fnmatch(name, args.Pattern):
                    matches.append(self._display(Path(dirpath) / name))
                    if len(matches) >= MAX_RESULTS:
                        return matches
        return matches

    def grep_search(self, args: GrepSearchArgs) -> list[dict]:
        root = self.resolve(args.SearchPath)
        if not root.exists():
            raise ToolExecutionError(f"Path not found: {args.SearchPath}")
        try:
            pattern = re.compile(args.Query, re.IGNORECASE if args.CaseInsensitive else 0)
        except re.error as e:
            raise ToolExecutionError(f"Invalid regular expression: {e}") from e

        if root.is_file():
            files = [root]
        else:
            files = []
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRS)
                files.extend(Path(dirpath) / name for name in sorted(filenames))

        results: list[dict] = []
        for file in files:
            try:
                text = file.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for number, line in enumerate(text.split("\n"), start=1):
                if pattern.search(line):
                    results.append({"file": self._display(file), "lineNumber": number, "lineContent": line.strip()})
                    if len(results) >= MAX_RESULTS:
                        return results
        return results

    # ── Mutating tools ────────────────────────────────────────

    def write_to_file(self, args: WriteToFileArgs) -> str:
        target = self.resolve(args.TargetFile)
        if target == self.workspace or target.is_dir():
            raise ToolExecutionError(f"Target is a directory: {args.TargetFile}")
        if target.exists() and not args.Overwrite:
            raise ToolExecutionError(
                f"File already exists: {args.TargetFile}. Set Overwrite to true to replace."
            )
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(args.CodeContent, encoding="utf-8")
        log.info(f"Wrote {len(args.CodeContent)} chars to {target}")
        return f"Successfully wrote to {self._display(target)}"

    def replace_file_content(self, args: ReplaceFileContentArgs) -> str:
        target = self.resolve(args.TargetFile)
        if not target.is_file():
            raise ToolExecutionError(f"File not found: {args.TargetFile}")
        content = target.read_text(encoding="utf-8")
        content = _replace(content, args.TargetContent, args.ReplacementContent, args.AllowMultiple)
        target.write_text(content, encoding="utf-8")
        log.info(f"Replaced content in {target}")
        return f"Successfully replaced content in {self._display(target)}"

    def multi_replace_file_content(self, args: MultiReplaceFileContentArgs) -> str:
        target = self.resolve(args.TargetFile)
        if not target.is_file():
            raise ToolExecutionError(f"File not found: {args.TargetFile}")
        content = target.read_text(encoding="utf-8")
        # All chunks must apply before anything is written.
        for chunk in args.ReplacementChunks:
            content = _replace(content, chunk.TargetContent, chunk.ReplacementContent, chunk.AllowMultiple)
        target.write_text(content, encoding="utf-8")
        log.info(f"Applied {len(args.ReplacementChunks)} replacement(s) to {target}")
        return f"Successfully applied {len(args.ReplacementChunks)} replacement(s) to {self._display(target)}"

    def register(self, registry: ToolRegistry):
        registry.register(ToolSpec(
            "view_file",
            "Read a file from the workspace. Long files are truncated unless a line range is given.",
            VIEW_FILE_SCHEMA, ViewFileArgs, self.view_file,
        ))
        registry.register(ToolSpec(
            "list_dir",
            "List a directory: names, whether each entry is a directory, sizes and child counts.",
            LIST_DIR_SCHEMA, ListDirArgs, self.list_dir,
        ))
        registry.register(ToolSpec(
            "find_by_name",
            "Recursively find files and directories whose name matches a glob pattern (max 50 results).",
            FIND_BY_NAME_SCHEMA, FindByNameArgs, self.find_by_name,
        ))
        registry.register(ToolSpec(
            "grep_search",
            "Search file contents with a regular expression (max 50 matching lines).",
            GREP_SEARCH_SCHEMA, GrepSearchArgs, self.grep_search,
        ))
        registry.register(ToolSpec(
            "write_to_file",
            "Create a new file. Existing files are only replaced when Overwrite is true.",
            WRITE_TO_FILE_SCHEMA, WriteToFileArgs, self.write_to_file,
        ))
        registry.register(ToolSpec(
            "replace_file_content",
            "Replace an exact block of text in a file. Fails if the text is missing or ambiguous.",
            REPLACE_FILE_CONTENT_SCHEMA, ReplaceFileContentArgs, self.replace_file_content,
        ))
        registry.register(ToolSpec(
            "multi_replace_file_content",
            "Apply several exact-text replacements to one file in a single step.",
            MULTI_REPLACE_FILE_CONTENT_SCHEMA, MultiReplaceFileContentArgs, self.multi_replace_file_content,
        ))
