from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..errors import PlanNotFound, WorkspaceError
from ..models.plans import ACTION_FILE_ACTIONS, ACTION_FILE_STATUSES, ActionFile, Plan
from ..repositories.factory import RepositoryFactory, repository_factory
from ..utils.mongo import utc_now
from .realtime import EventPublisher

logger = logging.getLogger(__name__)


def _validate(action: str, status: str) -> None:
    if action not in ACTION_FILE_ACTIONS:
        raise WorkspaceError(f"Invalid action file action: {action}")
    if status not in ACTION_FILE_STATUSES:
        raise WorkspaceError(f"Invalid action file status: {status}")


def upsert_action_file(action_files: list[ActionFile], path: str, action: str, status: str) -> list[ActionFile]:
    """Returns a new list with ``path`` set to ``action``/``status``, appended when absent."""
    _validate(action, status)
    out: list[ActionFile] = []
    found = False
    for row in action_files:
        if row.path == path:
            out.append(ActionFile(path=path, action=action, status=status))
            found = True
        else:
            out.append(row)
    if not found:
        out.append(ActionFile(path=path, action=action, status=status))
    return out


async def add_or_update_action_file(
    workspace_id: str,
    plan_id: str,
    path: str,
    action: str,
    status: str,
    *,
    repos: RepositoryFactory | None = None,
) -> Plan:
    r = repos or repository_factory()
    plan = await r.plans.get(plan_id)
    if plan.workspace_id != workspace_id:
        raise PlanNotFound(f"Plan not found: {plan_id}")
    clean_path = str(path or "").strip()
    if not clean_path:
        raise WorkspaceError("path is required")
    updated = upsert_action_file(plan.action_files, clean_path, action, status)
    await r.plans.set_action_files(plan_id, updated, now=utc_now())
    logger.info(
        "plan.action_file.upsert workspace=%s plan=%s path=%s action=%s status=%s",
        workspace_id,
        plan_id,
        clean_path,
        action,
        status,
    )
    return plan.model_copy(update={"action_files": updated})


@dataclass(frozen=True)
class ActionFileTransition:
    path: str
    status: str


@dataclass
class ActiveFileTracker:
    """
    In-run view of a plan's action files.

    Only one file is "active" at a time. Switching to another file while the active one has not
    reached ``created`` demotes it back to ``pending``. A ``created`` file never moves back:
    later edits of the same path keep it ``created``. Every change is written through to the
    plan record before it is published.

    Rows left ``creating`` by an earlier, interrupted run start out ``pending`` again; the
    next ``seed`` persists that.
    """

    plan: Plan
    repos: RepositoryFactory
    publisher: Optional[EventPublisher] = None
    active_path: Optional[str] = None
    completed: set[str] = field(default_factory=set)
    transitions: list[ActionFileTransition] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.files: list[ActionFile] = []
        for row in self.plan.action_files:
            if row.status == "creating":
                logger.debug("plan.action_file.stale plan=%s path=%s", self.plan.id, row.path)
                self.files.append(row.model_copy(update={"status": "pending"}))
            else:
                self.files.append(row.model_copy())
        self.completed.update(row.path for row in self.files if row.status == "created")

    def status_of(self, path: str) -> str | None:
        for row in self.files:
            if row.path == path:
                return row.status
        return None

    def _action_of(self, path: str, default: str) -> str:
        for row in self.files:
            if row.path == path:
                return row.action
        return default

    def _set(self, path: str, action: str, status: str) -> None:
        self.files = upsert_action_file(self.files, path, action, status)
        self.transitions.append(ActionFileTransition(path=path, status=status))

    async def _persist(self, *, publish: bool) -> None:
        await self.repos.plans.set_action_files(self.plan.id, self.files, now=utc_now())
        if publish and self.publisher is not None:
            await self.publisher.publish_plan_update(self.plan.workspace_id, self.plan.id)

    def _activate(self, path: str) -> None:
        prev = self.active_path
        if prev and prev != path and prev not in self.completed:
            self._set(prev, self._action_of(prev, "create"), "pending")
            logger.debug("plan.action_file.demote plan=%s path=%s", self.plan.id, prev)
        self.active_path = path

    async def seed(self, paths: list[str]) -> None:
        for path in paths:
            if self.status_of(path) is None:
                self._set(path, "create", "pending")
        await self._persist(publish=True)

    async def begin_edit(self, path: str, action: str) -> None:
        self._activate(path)
        if path not in self.completed:
            self._set(path, self._action_of(path, action), "creating")
        await self._persist(publish=True)

    async def finish_edit(self, path: str, action: str) -> None:
        if path not in self.completed:
            self._set(path, self._action_of(path, action), "created")
            self.completed.add(path)
        self.active_path = None
        await self._persist(publish=True)

    async def release(self) -> None:
        """Demotes the active file back to ``pending`` when the run stops before finishing it."""
        prev = self.active_path
        self.active_path = None
        if prev and prev not in self.completed:
            self._set(prev, self._action_of(prev, "create"), "pending")
            await self._persist(publish=False)

    async def begin_view(self, path: str) -> None:
        if path in self.completed:
            return
        self._activate(path)
        self._set(path, self._action_of(path, "update"), "creating")
        await self._persist(publish=True)
