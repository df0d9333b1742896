from __future__ import annotations

from typing import Any

# Large documents are fine, but a runaway generation should not be staged
MAX_PROPOSAL_CHARS = 2_000_000


def _non_empty(arguments: dict[str, Any], key: str) -> bool:
    value = arguments.get(key)
    return isinstance(value, str) and bool(value.strip())


def validate_tool_args(
    tool_name: str, arguments: dict[str, Any], require_reason: bool = True
) -> tuple[bool, str | None]:
    """Check required parameters before a tool is run or a permission request is opened.

    The reason is only demanded of the model; approved re-execution skips it.
    """
    if not isinstance(arguments, dict):
        return False, "Tool arguments must be an object."

    if tool_name == "proposeDocumentChange":
        if not _non_empty(arguments, "path"):
            return False, "ERROR: No file path provided. The AI must use the exact path from the context."
        if not isinstance(arguments.get("newContent"), str):
            return False, "'newContent' must be a string."
        if len(arguments["newContent"]) > MAX_PROPOSAL_CHARS:
            return False, f"'newContent' is too long ({len(arguments['newContent'])} chars)."
        if not isinstance(arguments.get("summary", ""), str):
            return False, "'summary' must be a string."

    elif tool_name == "readMarkdownFile":
        if not _non_empty(arguments, "filePath"):
            return False, "'filePath' must be a non-empty string."
        if require_reason and not _non_empty(arguments, "reason"):
            return False, "'reason' must be a non-empty string explaining why the file is needed."

    elif tool_name == "searchMarkdownFiles":
        pattern = arguments.get("pattern")
        if pattern is not None and not isinstance(pattern, str):
            return False, "'pattern' must be a string when given."
        if require_reason and not _non_empty(arguments, "reason"):
            return False, "'reason' must be a non-empty string explaining why the search is needed."

    elif tool_name == "searchMarkdownContent":
        if not _non_empty(arguments, "query"):
            return False, "'query' must be a non-empty string."
        file_pattern = arguments.get("filePattern")
        if file_pattern is not None and not isinstance(file_pattern, str):
            return False, "'filePattern' must be a string when given."
        if require_reason and not _non_empty(arguments, "reason"):
            return False, "'reason' must be a non-empty string explaining why the search is needed."

    elif tool_name == "listFileTree":
        if require_reason and not _non_empty(arguments, "reason"):
            return False, "'reason' must be a non-empty string explaining why the tree is needed."

    return True, None
