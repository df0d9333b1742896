"""Error taxonomy shared by the file store, the tool registry and the server.

Each failure kind is its own exception class with a stable ``code``. Inside
the service they are raised like any other exception; at the tool boundary
they are folded into ``{"success": False, "error": ..., "code": ...}`` dicts
so the agent always receives a structured result.
"""

from __future__ import annotations

from typing import Any


class MDExplorerError(Exception):
    """Base class for all service errors."""

    code = "error"

    def to_result(self, **extra: Any) -> dict[str, Any]:
        result: dict[str, Any] = {"success": False, "error": str(self), "code": self.code}
        result.update(extra)
        return result


class AccessDenied(MDExplorerError):
    """A path resolves outside the sandbox root."""

    code = "access_denied"

    def __init__(self, message: str = "Access denied: Path is outside the allowed directory") -> None:
        super().__init__(message)


class NotFound(MDExplorerError):
    code = "not_found"


class AlreadyExists(MDExplorerError):
    code = "already_exists"


class NotAFile(MDExplorerError):
    code = "not_a_file"


class WrongFileType(MDExplorerError):
    code = "wrong_file_type"


class ValidationError(MDExplorerError):
    """A required tool or request parameter is missing or empty."""

    code = "validation_error"


class ProviderError(MDExplorerError):
    """The model provider call failed or the stream was aborted."""

    code = "provider_error"


class FileIOError(MDExplorerError):
    """Generic filesystem failure."""

    code = "io_error"


class UnknownToolError(MDExplorerError):
    code = "unknown_tool"

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}")


class UnknownModelError(MDExplorerError):
    code = "unknown_model"

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(f"Invalid model: {model_id}")


class PermissionStateError(MDExplorerError):
    """A permission request was resolved twice, or never existed."""

    code = "permission_state"


def from_os_error(exc: OSError, display_path: str = "") -> MDExplorerError:
    """Map an OSError onto the taxonomy without leaking resolved paths."""
    label = f": {display_path}" if display_path else ""
    if isinstance(exc, FileNotFoundError):
        return NotFound(f"Not found{label}")
    if isinstance(exc, FileExistsError):
        return AlreadyExists(f"Already exists{label}")
    if isinstance(exc, IsADirectoryError):
        return NotAFile(f"Not a file{label}")
    if isinstance(exc, PermissionError):
        return FileIOError(f"Permission denied{label}")
    return FileIOError(f"{exc.strerror or exc.__class__.__name__}{label}")
