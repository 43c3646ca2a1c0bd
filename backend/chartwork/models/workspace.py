from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

EditorCommand = Literal["view", "create", "str_replace"]
EditorErrorCode = Literal["invalid_request", "not_found", "already_exists", "no_match"]


class WorkspaceFile(BaseModel):
    id: str
    workspace_id: str
    chart_id: Optional[str] = None
    file_path: str
    content: str = ""
    content_pending: Optional[str] = None
    revision_number: Optional[int] = None

    @property
    def has_pending(self) -> bool:
        return self.content_pending is not None


class Chart(BaseModel):
    id: str
    workspace_id: str
    name: str
    revision_number: int = 0
    files: list[WorkspaceFile] = Field(default_factory=list)


class Workspace(BaseModel):
    id: str
    current_revision_number: int = 0
    last_updated_at: Optional[datetime] = None
    # Revision the charts and files below were read at.
    revision_number: Optional[int] = None
    charts: list[Chart] = Field(default_factory=list)
    # Files that belong to no chart.
    files: list[WorkspaceFile] = Field(default_factory=list)

    def all_files(self) -> list[WorkspaceFile]:
        out = [row for chart in self.charts for row in chart.files]
        out.extend(self.files)
        return out


class ReplaceLogEntry(BaseModel):
    workspace_id: Optional[str] = None
    file_path: str
    found: bool
    old_str: str
    new_str: str
    updated_content: str
    old_str_len: int
    new_str_len: int
    context_before: Optional[str] = None
    context_after: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class TextEditorRequest(BaseModel):
    command: EditorCommand
    path: str
    content: Optional[str] = None
    old_str: Optional[str] = None
    new_str: Optional[str] = None


class EditorResult(BaseModel):
    success: bool
    content: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[EditorErrorCode] = None


class PatchFailure(BaseModel):
    file_id: str
    file_path: str = ""
    error: str


class PatchBatchResult(BaseModel):
    updated: list[WorkspaceFile] = Field(default_factory=list)
    failed: list[PatchFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed
