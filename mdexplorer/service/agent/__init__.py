"""Agent package.

Public API:
    from mdexplorer.service.agent import SessionState, ConversationOrchestrator
    from mdexplorer.service.agent import AgentEvent, EditorState, PendingChange, ToolPermissionRequest

Internal layout:
    models.py      AgentEvent, ToolPermissionRequest, PendingChange, Conversation, EditorState
    tool_defs.py   get_tool_definitions() (function-tool schemas)
    validators.py  validate_tool_args()
    tools.py       ToolName, ToolRegistry (direct vs gated, approved execution)
    permissions.py PermissionGate
    proposals.py   ChangeProposalPipeline, unified_diff()
    prompts.py     system instructions and the edit-keyword heuristic
    commands.py    CommandRegistry (command port)
    loop.py        ConversationOrchestrator (bounded tool-use loop)
    session.py     SessionState (per-app state container)
"""

from .loop import ConversationOrchestrator
from .models import AgentEvent, EditorState, PendingChange, ToolPermissionRequest
from .session import SessionState

__all__ = [
    "AgentEvent",
    "ConversationOrchestrator",
    "EditorState",
    "PendingChange",
    "SessionState",
    "ToolPermissionRequest",
]
