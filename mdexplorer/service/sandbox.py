"""Path sandboxing: every filesystem access is confined to the configured root."""

from __future__ import annotations

from pathlib import Path

from .errors import AccessDenied


def resolve_root(root: str | Path) -> Path:
    return Path(root).expanduser().resolve()


def validate(path: str | Path, root: str | Path) -> Path:
    """Resolve ``path`` and require it to be ``root`` or a descendant of it.

    Relative paths are taken relative to the root. The comparison is done on
    path segments, so a root of ``/docs`` never admits ``/docs-other``.

    Raises:
        AccessDenied: the resolved path escapes the root. The message never
            contains the resolved location.
    """
    try:
        resolved_root = resolve_root(root)
        resolved = (resolved_root / Path(path).expanduser()).resolve()
    except (ValueError, OSError, RuntimeError):
        # embedded NUL bytes, symlink loops
        raise AccessDenied()

    try:
        resolved.relative_to(resolved_root)
    except ValueError:
        raise AccessDenied()
    return resolved


def is_within(path: str | Path, root: str | Path) -> bool:
    try:
        validate(path, root)
    except AccessDenied:
        return False
    return True


def is_strict_descendant(path: Path, ancestor: Path) -> bool:
    """True if ``path`` lies strictly below ``ancestor`` (both already resolved)."""
    return path != ancestor and ancestor in path.parents


def relative_to_root(path: str | Path, root: str | Path) -> str:
    """Root-relative display form of an already validated path."""
    rel = validate(path, root).relative_to(resolve_root(root))
    return rel.as_posix() if rel.parts else "."
