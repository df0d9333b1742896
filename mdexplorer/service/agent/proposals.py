"""Change proposals: stage, review as a diff, then accept or reject.

A proposal never touches the disk until it is accepted. Accept writes
through the sandboxed file store and only on success commits the editor
slot and clears the pending change in one synchronous step.
"""

from __future__ import annotations

import asyncio
import difflib
import logging
from pathlib import Path
from typing import Any

from .. import sandbox
from ..errors import AccessDenied, ValidationError
from ..filestore import FileStore
from .models import EditorState, PendingChange

logger = logging.getLogger("mdexplorer.agent.proposals")


def unified_diff(original: str, proposed: str, file_path: str = "") -> dict[str, Any]:
    """Plain textual diff with +/- line counts."""
    name = Path(file_path).name if file_path else "document"
    lines = list(difflib.unified_diff(
        original.splitlines(keepends=True),
        proposed.splitlines(keepends=True),
        fromfile=f"a/{name}",
        tofile=f"b/{name}",
    ))
    additions = sum(1 for ln in lines if ln.startswith("+") and not ln.startswith("+++"))
    deletions = sum(1 for ln in lines if ln.startswith("-") and not ln.startswith("---"))
    return {
        "diff": "".join(lines),
        "additions": additions,
        "deletions": deletions,
        "unchanged": original == proposed,
    }


class ChangeProposalPipeline:

    def __init__(self, filestore: FileStore, editor: EditorState) -> None:
        self.filestore = filestore
        self.editor = editor
        self._pending: PendingChange | None = None

    @property
    def pending(self) -> PendingChange | None:
        return self._pending

    def _same_file(self, a: str | None, b: str | None) -> bool:
        if not a or not b:
            return False
        try:
            return sandbox.validate(a, self.filestore.root) == sandbox.validate(b, self.filestore.root)
        except AccessDenied:
            return False

    def stage(self, file_path: str, proposed_content: str, summary: str = "") -> PendingChange:
        """Snapshot the live editor content and make this the only pending change.

        Any earlier pending change is replaced, never accumulated.
        """
        if self._same_file(file_path, self.editor.file_path) or self.editor.file_path is None:
            original = self.editor.content
        else:
            # proposal for a file that is not open: diff against what is on disk
            read = self.filestore.read_file(file_path)
            original = read["data"] if read["success"] else ""

        if self._pending is not None:
            logger.info(f"Replacing pending change for {self._pending.file_path}")
        self._pending = PendingChange(
            file_path=file_path,
            original_content=original,
            proposed_content=proposed_content,
            summary=summary or "AI proposed changes",
        )
        logger.info(f"Staged change for {file_path} ({len(proposed_content)} chars)")
        return self._pending

    def diff(self) -> dict[str, Any] | None:
        if self._pending is None:
            return None
        change = self._pending
        return {
            **change.to_json(),
            **unified_diff(change.original_content, change.proposed_content, change.file_path),
        }

    async def accept(self, file_path: str | None = None, proposed_content: str | None = None) -> dict[str, Any]:
        """Write the proposal, then commit editor state and clear it.

        With no pending change, an explicit ``file_path``/``proposed_content``
        pair is written directly. On a failed write the pending change stays.
        """
        change = self._pending
        if change is not None:
            if file_path and not self._same_file(file_path, change.file_path):
                return ValidationError("Accepted file does not match the pending change").to_result()
            target = change.file_path
            content = change.proposed_content if proposed_content is None else proposed_content
        else:
            if not file_path or proposed_content is None:
                return ValidationError("No pending change to accept").to_result()
            target, content = file_path, proposed_content

        result = await asyncio.to_thread(self.filestore.write_file, target, content)
        if not result["success"]:
            logger.warning(f"Accept failed for {target}: {result['error']}")
            return result

        written = result["data"]
        # editor commit and pending clear happen with no await in between
        if self.editor.file_path is None or self._same_file(self.editor.file_path, target):
            self.editor.commit_saved(written["path"], content)
        if self._pending is change:
            self._pending = None
        if self.filestore.recent is not None:
            await asyncio.to_thread(self.filestore.recent.add, written["path"], "save")

        logger.info(f"Accepted change for {written['path']} ({written['bytesWritten']} bytes)")
        return {"success": True, "bytesWritten": written["bytesWritten"], "path": written["path"]}

    def reject(self) -> bool:
        """Drop the pending change. Disk and editor content are untouched."""
        if self._pending is None:
            return False
        logger.info(f"Rejected change for {self._pending.file_path}")
        self._pending = None
        return True

    def invalidate_for(self, active_path: str | None) -> bool:
        """Discard a pending change that targets a file other than ``active_path``."""
        if self._pending is None or self._same_file(self._pending.file_path, active_path):
            return False
        logger.info(f"Discarding stale change for {self._pending.file_path}")
        self._pending = None
        return True
