from __future__ import annotations


def get_tool_definitions() -> list[dict]:
    return [
        _propose_document_change_def(),
        _read_markdown_file_def(),
        _search_markdown_files_def(),
        _search_markdown_content_def(),
        _list_file_tree_def(),
    ]


_REASON_PROPERTY = {
    "type": "string",
    "description": "Why you need this. Shown to the user, who must approve the request.",
}


def _propose_document_change_def() -> dict:
    return {
        "type": "function",
        "function": {
            "name": "proposeDocumentChange",
            "description": """Propose changes to the currently open markdown file.

You MUST use this tool whenever the user asks to modify, edit, add, remove,
update, refactor, summarize into, restructure, fix or otherwise change the
document. Do NOT describe the changes in chat; propose them with this tool.

The user sees a diff of the original against your proposal and can accept or
reject it. Nothing is written until they accept.

Use the EXACT absolute path from the "Current File" context.""",
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "The EXACT absolute path from the context's 'Current File' - copy it exactly.",
                    },
                    "newContent": {
                        "type": "string",
                        "description": "The complete new content of the entire file, not just the changed parts.",
                    },
                    "summary": {
                        "type": "string",
                        "description": "A brief 1-2 sentence summary of the changes.",
                    },
                },
                "required": ["path", "newContent", "summary"],
            },
        },
    }


def _read_markdown_file_def() -> dict:
    return {
        "type": "function",
        "function": {
            "name": "readMarkdownFile",
            "description": (
                "Read the full content of another markdown (.md) file in the workspace. "
                "Requires user approval."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "filePath": {"type": "string", "description": "Absolute path of the .md file to read."},
                    "reason": _REASON_PROPERTY,
                },
                "required": ["filePath", "reason"],
            },
        },
    }


def _search_markdown_files_def() -> dict:
    return {
        "type": "function",
        "function": {
            "name": "searchMarkdownFiles",
            "description": (
                "Find markdown files in the workspace whose file name contains a pattern "
                "(case-insensitive). Omit the pattern to list every markdown file. Requires user approval."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "pattern": {"type": "string", "description": "Optional file name substring."},
                    "reason": _REASON_PROPERTY,
                },
                "required": ["reason"],
            },
        },
    }


def _search_markdown_content_def() -> dict:
    return {
        "type": "function",
        "function": {
            "name": "searchMarkdownContent",
            "description": (
                "Search the text of markdown files for a query (case-insensitive, line by line). "
                "Returns matching lines with line numbers. Requires user approval."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Text to search for."},
                    "filePattern": {
                        "type": "string",
                        "description": "Optional file name substring restricting which files are searched.",
                    },
                    "reason": _REASON_PROPERTY,
                },
                "required": ["query", "reason"],
            },
        },
    }


def _list_file_tree_def() -> dict:
    return {
        "type": "function",
        "function": {
            "name": "listFileTree",
            "description": "List the complete folder and file tree of the workspace. Requires user approval.",
            "parameters": {
                "type": "object",
                "properties": {
                    "reason": _REASON_PROPERTY,
                },
                "required": ["reason"],
            },
        },
    }
