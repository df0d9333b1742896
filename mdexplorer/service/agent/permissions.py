"""Single-slot approval state machine for gated tools.

    Idle -> Pending(request) -> {Approved, Denied} -> Idle

Resolution clears the slot before anything else runs, so an outstanding
request never coexists with an in-flight resume. Resolved ids are
remembered and can never transition again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any

from ..errors import PermissionStateError
from .models import PermissionStatus, ToolPermissionRequest

logger = logging.getLogger("mdexplorer.agent.permissions")


def approval_message(tool_name: str, result: dict[str, Any]) -> str:
    if result.get("success"):
        payload = json.dumps(result.get("data"), indent=2, ensure_ascii=False, default=str)
        return f'Tool "{tool_name}" executed successfully. Result: {payload}'
    return f'Tool "{tool_name}" failed: {result.get("error", "Unknown error")}'


def denial_message(tool_name: str) -> str:
    return f'Permission denied for tool "{tool_name}". The user did not approve the request.'


def busy_result(pending: ToolPermissionRequest) -> dict[str, Any]:
    """Tool result for a gated call made while another request awaits the user."""
    return PermissionStateError(
        f"Another permission request ({pending.tool_name}) is still awaiting the user's decision. "
        "Wait for it to be resolved before requesting another tool."
    ).to_result()


class PermissionGate:

    def __init__(self) -> None:
        self._pending: ToolPermissionRequest | None = None
        self._resolved: dict[str, PermissionStatus] = {}

    @property
    def pending(self) -> ToolPermissionRequest | None:
        return self._pending

    @property
    def is_idle(self) -> bool:
        return self._pending is None

    def status_of(self, request_id: str) -> PermissionStatus | None:
        if self._pending is not None and self._pending.id == request_id:
            return PermissionStatus.PENDING
        return self._resolved.get(request_id)

    def open(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        action: str = "execute",
        reason: str = "",
        tool_call_id: str = "",
    ) -> ToolPermissionRequest:
        """Idle -> Pending.

        Raises:
            PermissionStateError: a request is already pending. There is no queue.
        """
        if self._pending is not None:
            raise PermissionStateError(
                f"Permission request {self._pending.id} for {self._pending.tool_name} is still pending"
            )
        request = ToolPermissionRequest(
            tool_name=tool_name,
            action=action,
            reason=reason or "No reason provided",
            parameters=dict(parameters),
            tool_call_id=tool_call_id,
        )
        self._pending = request
        logger.info(f"Permission requested: {tool_name} ({request.id})")
        return request

    def _resolve(self, request_id: str, status: PermissionStatus) -> ToolPermissionRequest:
        if self._pending is None or self._pending.id != request_id:
            previous = self._resolved.get(request_id)
            if previous is not None:
                raise PermissionStateError(f"Permission request {request_id} was already {previous.value}")
            raise PermissionStateError(f"No pending permission request with id {request_id}")

        resolved = replace(self._pending, status=status)
        self._pending = None
        self._resolved[request_id] = status
        logger.info(f"Permission {status.value}: {resolved.tool_name} ({request_id})")
        return resolved

    def approve(self, request_id: str) -> ToolPermissionRequest:
        return self._resolve(request_id, PermissionStatus.APPROVED)

    def deny(self, request_id: str) -> ToolPermissionRequest:
        return self._resolve(request_id, PermissionStatus.DENIED)

    def clear(self) -> None:
        """Drop the pending request (chat reset); it counts as denied."""
        if self._pending is not None:
            self._resolved[self._pending.id] = PermissionStatus.DENIED
            logger.info(f"Discarded pending permission request {self._pending.id}")
            self._pending = None
