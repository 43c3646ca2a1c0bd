from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Protocol

import httpx

from ..errors import FileNotFound, PatchError
from ..models.workspace import PatchBatchResult, Workspace, WorkspaceFile
from ..repositories.factory import RepositoryFactory
from ..settings import settings
from ..utils.mongo import is_persisted_id
from . import patches
from .text_editor import remote_error_detail

logger = logging.getLogger(__name__)


class PatchServer(Protocol):
    async def accept(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile: ...

    async def reject(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile: ...

    async def accept_all(self, workspace_id: str, revision: int) -> PatchBatchResult: ...

    async def reject_all(self, workspace_id: str, revision: int) -> PatchBatchResult: ...


class StorePatchServer:
    """Authoritative accept/reject backed directly by the file store."""

    def __init__(self, repos: RepositoryFactory | None = None):
        self._repos = repos

    async def accept(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile:
        return await patches.accept_patch(file_id, revision, workspace_id=workspace_id, repos=self._repos)

    async def reject(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile:
        return await patches.reject_patch(file_id, revision, workspace_id=workspace_id, repos=self._repos)

    async def accept_all(self, workspace_id: str, revision: int) -> PatchBatchResult:
        return await patches.accept_all_patches(workspace_id, revision, repos=self._repos)

    async def reject_all(self, workspace_id: str, revision: int) -> PatchBatchResult:
        return await patches.reject_all_patches(workspace_id, revision, repos=self._repos)


class HttpPatchServer:
    """Calls the accept/reject routes of a running backend."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        user_id: str | None = None,
        timeout_sec: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or settings.MUTATION_BACKEND_URL).rstrip("/")
        self._user_id = user_id or settings.MUTATION_BACKEND_USER
        self._timeout_sec = timeout_sec
        self._transport = transport

    async def _post(self, path: str, revision: int) -> dict:
        async with httpx.AsyncClient(timeout=self._timeout_sec, transport=self._transport) as client:
            resp = await client.post(
                f"{self._base_url}{path}",
                params={"revision": int(revision)},
                headers={"X-Dev-User": self._user_id},
            )
        if resp.status_code >= 400:
            detail = remote_error_detail(resp.text)
            raise PatchError(f"{path} failed ({resp.status_code})" + (f": {detail}" if detail else ""))
        return resp.json() or {}

    async def accept(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile:
        return WorkspaceFile(**await self._post(f"/workspaces/{workspace_id}/files/{file_id}/accept", revision))

    async def reject(self, workspace_id: str, file_id: str, revision: int) -> WorkspaceFile:
        return WorkspaceFile(**await self._post(f"/workspaces/{workspace_id}/files/{file_id}/reject", revision))

    async def accept_all(self, workspace_id: str, revision: int) -> PatchBatchResult:
        return PatchBatchResult(**await self._post(f"/workspaces/{workspace_id}/patches/accept-all", revision))

    async def reject_all(self, workspace_id: str, revision: int) -> PatchBatchResult:
        return PatchBatchResult(**await self._post(f"/workspaces/{workspace_id}/patches/reject-all", revision))


class PatchClient:
    """
    Client-side view of a workspace's files with accept/reject of staged patches.

    Files whose id is not a store id only exist locally and are merged in place. Persisted
    files go to the server first; when that fails for any reason the same merge is applied
    locally and the fallback is logged as degraded. ``on_update`` receives every file the
    client changes; if it raises, the local copy is left untouched and the file stays pending.
    """

    def __init__(
        self,
        workspace_id: str,
        files: Iterable[WorkspaceFile],
        server: PatchServer,
        *,
        on_update: Optional[Callable[[WorkspaceFile], None]] = None,
    ):
        self.workspace_id = workspace_id
        self._files: dict[str, WorkspaceFile] = {row.id: row for row in files}
        self._server = server
        self._on_update = on_update

    @classmethod
    def for_workspace(
        cls,
        workspace: Workspace,
        server: PatchServer,
        *,
        on_update: Optional[Callable[[WorkspaceFile], None]] = None,
    ) -> "PatchClient":
        return cls(workspace.id, workspace.all_files(), server, on_update=on_update)

    def file(self, file_id: str) -> WorkspaceFile:
        row = self._files.get(file_id)
        if row is None:
            raise FileNotFound(f"File not found: {file_id}")
        return row

    def pending_files(self) -> list[WorkspaceFile]:
        return sorted((row for row in self._files.values() if row.has_pending), key=lambda row: row.file_path)

    def _store(self, row: WorkspaceFile) -> WorkspaceFile:
        if self._on_update is not None:
            self._on_update(row)
        self._files[row.id] = row
        return row

    def _apply_locally(self, row: WorkspaceFile, merge: Callable[[WorkspaceFile], WorkspaceFile], op: str) -> WorkspaceFile:
        try:
            return self._store(merge(row))
        except Exception:
            logger.exception("patch.client.%s.local_failed workspace=%s file=%s", op, self.workspace_id, row.id)
            return row

    async def _one(self, file_id: str, revision: int, op: str) -> WorkspaceFile:
        row = self.file(file_id)
        if not row.has_pending:
            return row
        merge = patches.accepted if op == "accept" else patches.rejected
        if not is_persisted_id(file_id):
            return self._apply_locally(row, merge, op)
        call = self._server.accept if op == "accept" else self._server.reject
        try:
            updated = await call(self.workspace_id, file_id, revision)
        except Exception as err:
            logger.warning(
                "patch.client.%s.degraded workspace=%s file=%s error=%s",
                op,
                self.workspace_id,
                file_id,
                err,
            )
            return self._apply_locally(row, merge, op)
        return self._apply_locally(row, lambda _row: updated, op)

    async def accept_one(self, file_id: str, revision: int) -> WorkspaceFile:
        return await self._one(file_id, revision, "accept")

    async def reject_one(self, file_id: str, revision: int) -> WorkspaceFile:
        return await self._one(file_id, revision, "reject")

    async def _all(self, revision: int, op: str) -> list[WorkspaceFile]:
        pending = self.pending_files()
        merge = patches.accepted if op == "accept" else patches.rejected
        updated: list[WorkspaceFile] = []

        local_only = [row for row in pending if not is_persisted_id(row.id)]
        persisted = {row.id: row for row in pending if is_persisted_id(row.id)}
        fallback: list[WorkspaceFile] = []
        if persisted:
            call = self._server.accept_all if op == "accept" else self._server.reject_all
            try:
                batch = await call(self.workspace_id, revision)
            except Exception as err:
                logger.warning(
                    "patch.client.%s_all.degraded workspace=%s files=%s error=%s",
                    op,
                    self.workspace_id,
                    len(persisted),
                    err,
                )
                fallback = list(persisted.values())
            else:
                for row in batch.updated:
                    if row.id in persisted:
                        updated.append(self._apply_locally(persisted.pop(row.id), lambda _row, r=row: r, op))
                for failure in batch.failed:
                    logger.warning(
                        "patch.client.%s_all.file_degraded workspace=%s file=%s error=%s",
                        op,
                        self.workspace_id,
                        failure.file_id,
                        failure.error,
                    )
                # Anything the server did not report is still ours to settle.
                fallback = list(persisted.values())

        for row in local_only + fallback:
            updated.append(self._apply_locally(row, merge, op))
        return updated

    async def accept_all(self, revision: int) -> list[WorkspaceFile]:
        return await self._all(revision, "accept")

    async def reject_all(self, revision: int) -> list[WorkspaceFile]:
        return await self._all(revision, "reject")


class DiffNavigator:
    """Circular cursor over the files that currently have a pending patch."""

    def __init__(self, files: Iterable[WorkspaceFile] = ()):
        self._files: list[WorkspaceFile] = []
        self.index = -1
        self.sync(files)

    def __len__(self) -> int:
        return len(self._files)

    @property
    def current(self) -> WorkspaceFile | None:
        if self.index < 0:
            return None
        return self._files[self.index]

    def sync(self, files: Iterable[WorkspaceFile]) -> None:
        """Replaces the pending set, staying on the current file when it is still pending."""
        current = self.current
        self._files = [row for row in files if row.has_pending]
        if not self._files:
            self.index = -1
            return
        if current is not None:
            for i, row in enumerate(self._files):
                if row.id == current.id:
                    self.index = i
                    return
        self.index = min(max(self.index, 0), len(self._files) - 1)

    def next(self) -> WorkspaceFile | None:
        if not self._files:
            return None
        self.index = 0 if self.index >= len(self._files) - 1 else self.index + 1
        return self._files[self.index]

    def prev(self) -> WorkspaceFile | None:
        if not self._files:
            return None
        self.index = len(self._files) - 1 if self.index <= 0 else self.index - 1
        return self._files[self.index]
