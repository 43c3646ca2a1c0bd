from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from ..models.plans import ActionFile, Plan
from ..models.workspace import Chart, ReplaceLogEntry, Workspace, WorkspaceFile


class WorkspaceFileRepository(Protocol):
    async def find(self, workspace_id: str, file_path: str) -> WorkspaceFile | None: ...

    async def get(self, workspace_id: str, file_path: str) -> WorkspaceFile: ...

    async def get_by_id(self, file_id: str, revision_number: int | None = None) -> WorkspaceFile: ...

    async def insert(
        self,
        *,
        workspace_id: str,
        file_path: str,
        content: str,
        revision_number: int | None,
        chart_id: str | None = None,
        file_id: str | None = None,
        content_pending: str | None = None,
    ) -> WorkspaceFile: ...

    async def update(
        self,
        file_id: str,
        revision_number: int | None,
        content: str,
        *,
        clear_pending: bool = False,
    ) -> None: ...

    async def set_pending(self, file_id: str, revision_number: int | None, content: str) -> None: ...

    async def clear_pending(self, file_id: str, revision_number: int | None) -> None: ...

    async def list_revision(self, workspace_id: str, revision_number: int) -> list[WorkspaceFile]: ...

    async def list_pending(self, workspace_id: str, revision_number: int) -> list[WorkspaceFile]: ...

    async def clear_pending_for_revision(self, workspace_id: str, revision_number: int) -> int: ...


class WorkspaceRepository(Protocol):
    async def find(self, workspace_id: str) -> Workspace | None: ...

    async def current_revision(self, workspace_id: str) -> int: ...

    async def advance_revision(self, workspace_id: str, *, expected: int, now: datetime) -> int | None: ...

    async def insert_revision(self, doc: dict[str, Any]) -> None: ...

    async def list_charts(self, workspace_id: str, revision_number: int) -> list[Chart]: ...

    async def copy_charts(self, charts: list[Chart], revision_number: int) -> None: ...


class PlanRepository(Protocol):
    async def get(self, plan_id: str) -> Plan: ...

    async def insert(self, doc: dict[str, Any]) -> Plan: ...

    async def transition_status(
        self,
        plan_id: str,
        *,
        from_statuses: list[str],
        to_status: str,
        now: datetime,
        proceed_at: datetime | None = None,
    ) -> Plan | None: ...

    async def set_action_files(self, plan_id: str, action_files: list[ActionFile], *, now: datetime) -> None: ...


class ReplaceLogRepository(Protocol):
    async def insert(self, entry: ReplaceLogEntry) -> str: ...

    async def list_entries(
        self,
        *,
        workspace_id: str | None = None,
        file_path: str | None = None,
        found_only: bool = False,
        limit: int = 50,
    ) -> list[ReplaceLogEntry]: ...
