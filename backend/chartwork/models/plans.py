from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .workspace import TextEditorRequest

PlanStatus = Literal["draft", "applying", "applied", "review"]
ActionFileAction = Literal["create", "update"]
ActionFileStatus = Literal["pending", "creating", "created"]

ACTION_FILE_STATUSES = ("pending", "creating", "created")
ACTION_FILE_ACTIONS = ("create", "update")

# review -> applying is the manual retry path; nothing leaves "applied".
PLAN_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"applying"}),
    "review": frozenset({"applying"}),
    "applying": frozenset({"applied", "review"}),
    "applied": frozenset(),
}

TEXT_EDITOR_TOOL_NAMES = frozenset({"textEditor", "text_editor"})


def can_transition(current: str, target: str) -> bool:
    return target in PLAN_TRANSITIONS.get(current, frozenset())


def statuses_entering(target: str) -> list[str]:
    return sorted(src for src, targets in PLAN_TRANSITIONS.items() if target in targets)


class ActionFile(BaseModel):
    path: str
    action: ActionFileAction = "create"
    status: ActionFileStatus = "pending"


class ToolCall(BaseModel):
    id: str = ""
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[int] = None

    def text_editor_request(self) -> Optional[TextEditorRequest]:
        if self.tool_name not in TEXT_EDITOR_TOOL_NAMES:
            return None
        command = str(self.args.get("command") or "").strip()
        path = str(self.args.get("path") or "").strip()
        if command not in ("view", "create", "str_replace") or not path:
            return None
        return TextEditorRequest(
            command=command,
            path=path,
            content=self.args.get("content"),
            old_str=self.args.get("old_str", self.args.get("oldStr")),
            new_str=self.args.get("new_str", self.args.get("newStr")),
        )


class ToolStep(BaseModel):
    tool_calls: List[ToolCall] = Field(default_factory=list)


class Plan(BaseModel):
    id: str
    workspace_id: str
    description: str = ""
    status: PlanStatus = "draft"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    proceed_at: Optional[datetime] = None
    action_files: List[ActionFile] = Field(default_factory=list)
    chat_message_ids: List[str] = Field(default_factory=list)
    buffered_tool_calls: List[ToolCall] = Field(default_factory=list)

    def action_file(self, path: str) -> Optional[ActionFile]:
        for row in self.action_files:
            if row.path == path:
                return row
        return None
