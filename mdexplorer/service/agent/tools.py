"""Tool registry: direct and permission-gated tools over the sandboxed file store.

``invoke`` is what the model reaches. The direct tool returns its payload
immediately; gated tools only run read-only precondition checks and answer
with ``requiresPermission``. The real reads happen in ``execute_approved``,
which is only called once a user has approved the request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, assert_never

from .. import sandbox
from ..errors import (
    FileIOError,
    MDExplorerError,
    NotAFile,
    NotFound,
    UnknownToolError,
    ValidationError,
    WrongFileType,
    from_os_error,
)
from ..filestore import FileStore, build_tree, search_lines, walk_markdown_files
from .validators import validate_tool_args

logger = logging.getLogger("mdexplorer.agent.tools")


class ToolName(str, Enum):
    PROPOSE_DOCUMENT_CHANGE = "proposeDocumentChange"
    READ_MARKDOWN_FILE = "readMarkdownFile"
    SEARCH_MARKDOWN_FILES = "searchMarkdownFiles"
    SEARCH_MARKDOWN_CONTENT = "searchMarkdownContent"
    LIST_FILE_TREE = "listFileTree"

    @classmethod
    def parse(cls, name: str) -> ToolName:
        try:
            return cls(name)
        except ValueError:
            raise UnknownToolError(str(name))

    @property
    def gated(self) -> bool:
        return self is not ToolName.PROPOSE_DOCUMENT_CHANGE


GATED_TOOLS = frozenset(t for t in ToolName if t.gated)

TOOL_TITLES = {
    ToolName.READ_MARKDOWN_FILE: "Read Markdown File",
    ToolName.SEARCH_MARKDOWN_FILES: "Search for Markdown Files",
    ToolName.SEARCH_MARKDOWN_CONTENT: "Search File Contents",
    ToolName.LIST_FILE_TREE: "View File Tree",
}


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ToolRegistry:

    def __init__(self, filestore: FileStore) -> None:
        self.filestore = filestore

    @property
    def root(self) -> Path:
        return self.filestore.root

    # ─── First invocation (model-facing) ────────────────────────────

    def invoke(self, name: str, params: dict[str, Any], root: Path | None = None) -> dict[str, Any]:
        """Run the direct tool, or answer a gated one with a permission request.

        Raises:
            UnknownToolError: ``name`` is not a registered tool.
        """
        tool = ToolName.parse(name)
        root = root or self.root

        valid, err = validate_tool_args(tool.value, params)
        if not valid:
            if tool is ToolName.PROPOSE_DOCUMENT_CHANGE:
                return {
                    "success": False,
                    "type": "error",
                    "error": err,
                    "hint": "Use the path exactly as shown in the 'Current File' context.",
                }
            return ValidationError(err).to_result()

        match tool:
            case ToolName.PROPOSE_DOCUMENT_CHANGE:
                return self._propose_document_change(params, root)
            case (
                ToolName.READ_MARKDOWN_FILE
                | ToolName.SEARCH_MARKDOWN_FILES
                | ToolName.SEARCH_MARKDOWN_CONTENT
                | ToolName.LIST_FILE_TREE
            ):
                return self._request_permission(tool, params, root)
            case _:
                assert_never(tool)

    def _propose_document_change(self, params: dict[str, Any], root: Path) -> dict[str, Any]:
        target_path = params["path"]
        new_content = params["newContent"]
        summary = params.get("summary", "")

        if not sandbox.is_within(target_path, root):
            logger.warning("proposeDocumentChange rejected: path outside sandbox")
            return {
                "success": False,
                "type": "error",
                "error": f"Access denied: Path '{target_path}' is outside the allowed directory",
                "hint": "Ensure you're using the exact path from the context, not a modified version.",
            }

        logger.info(f"Proposal ready for review: {target_path} ({len(new_content)} chars)")
        return {
            "success": True,
            "type": "proposal",
            "message": f"Proposed changes ready for review: {summary}",
            "path": target_path,
            "proposedContent": new_content,
            "summary": summary,
            "contentLength": len(new_content),
            "timestamp": _iso_now(),
        }

    def _request_permission(self, tool: ToolName, params: dict[str, Any], root: Path) -> dict[str, Any]:
        try:
            action = self._check_preconditions(tool, params, root)
        except MDExplorerError as e:
            return e.to_result()

        return {
            "success": False,
            "requiresPermission": True,
            "permissionRequest": {
                "toolName": tool.value,
                "action": action,
                **params,
            },
        }

    def _check_preconditions(self, tool: ToolName, params: dict[str, Any], root: Path) -> str:
        """Read-only checks; returns the human-readable action for the approval prompt."""
        match tool:
            case ToolName.READ_MARKDOWN_FILE:
                target = self._markdown_target(params["filePath"], root)
                return f"{TOOL_TITLES[tool]}: {sandbox.relative_to_root(target, root)}"
            case ToolName.SEARCH_MARKDOWN_FILES:
                pattern = params.get("pattern") or "*"
                return f"{TOOL_TITLES[tool]}: {pattern}"
            case ToolName.SEARCH_MARKDOWN_CONTENT:
                return f"{TOOL_TITLES[tool]}: {params['query']}"
            case ToolName.LIST_FILE_TREE:
                return TOOL_TITLES[tool]
            case ToolName.PROPOSE_DOCUMENT_CHANGE:
                raise ValidationError("proposeDocumentChange does not require permission")
            case _:
                assert_never(tool)

    @staticmethod
    def _markdown_target(file_path: str, root: Path) -> Path:
        target = sandbox.validate(file_path, root)
        if not target.exists():
            raise NotFound(f"File not found: {file_path}")
        if not target.is_file():
            raise NotAFile(f"Not a file: {file_path}")
        if target.suffix.lower() != ".md":
            raise WrongFileType(f"Only markdown (.md) files can be read: {file_path}")
        return target

    # ─── Approved execution ─────────────────────────────────────────

    def execute_approved(self, name: str, params: dict[str, Any], root: Path | None = None) -> dict[str, Any]:
        """Perform the real read for an approved gated tool.

        Blocking; async callers run it through ``asyncio.to_thread``.

        Raises:
            UnknownToolError: ``name`` is not a registered tool.
        """
        tool = ToolName.parse(name)
        root = sandbox.resolve_root(root or self.root)

        valid, err = validate_tool_args(tool.value, params, require_reason=False)
        if not valid:
            return ValidationError(err).to_result()

        try:
            match tool:
                case ToolName.READ_MARKDOWN_FILE:
                    data = self._read_markdown_file(params["filePath"], root)
                case ToolName.SEARCH_MARKDOWN_FILES:
                    data = self._search_markdown_files(params.get("pattern"), root)
                case ToolName.SEARCH_MARKDOWN_CONTENT:
                    data = self._search_markdown_content(params["query"], params.get("filePattern"), root)
                case ToolName.LIST_FILE_TREE:
                    data = {
                        "tree": build_tree(root, root, self.filestore.settings),
                        "rootDirectory": str(root),
                    }
                case ToolName.PROPOSE_DOCUMENT_CHANGE:
                    return self.invoke(tool.value, params, root)
                case _:
                    assert_never(tool)
        except MDExplorerError as e:
            logger.info(f"{tool.value} failed after approval: {e}")
            return e.to_result()
        except UnicodeDecodeError:
            return FileIOError("File is not valid UTF-8 text").to_result()
        except OSError as e:
            logger.warning(f"{tool.value} I/O error: {e}")
            return from_os_error(e, params.get("filePath", "")).to_result()

        logger.info(f"Executed approved tool {tool.value}")
        return {"success": True, "data": data}

    def _read_markdown_file(self, file_path: str, root: Path) -> dict[str, Any]:
        target = self._markdown_target(file_path, root)
        content = target.read_text(encoding="utf-8")
        stats = target.stat()
        return {
            "filePath": str(target),
            "content": content,
            "fileName": target.name,
            "size": stats.st_size,
            "modified": datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc).isoformat(),
        }

    def _search_markdown_files(self, pattern: str | None, root: Path) -> dict[str, Any]:
        files = walk_markdown_files(root, root, self.filestore.settings, pattern)
        return {
            "files": [
                {"path": str(f), "name": f.name, "relativePath": sandbox.relative_to_root(f, root)}
                for f in files
            ],
            "count": len(files),
            "pattern": pattern or "*",
        }

    def _search_markdown_content(self, query: str, file_pattern: str | None, root: Path) -> dict[str, Any]:
        files = walk_markdown_files(root, root, self.filestore.settings, file_pattern)
        results = []
        for f in files:
            matches = search_lines(f, query)
            if matches:
                results.append({
                    "file": str(f),
                    "relativePath": sandbox.relative_to_root(f, root),
                    "matches": matches,
                })
        return {
            "query": query,
            "results": results,
            "totalFiles": len(files),
            "filesWithMatches": len(results),
            "totalMatches": sum(len(r["matches"]) for r in results),
        }
