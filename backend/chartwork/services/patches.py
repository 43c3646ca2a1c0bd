from __future__ import annotations

import logging
from typing import Any

from ..errors import FileNotFound, PatchError, Unauthorized
from ..models.workspace import PatchBatchResult, PatchFailure, WorkspaceFile
from ..repositories.factory import RepositoryFactory, repository_factory
from ..utils.mongo import utc_now
from .realtime import EventPublisher

logger = logging.getLogger(__name__)


def fold_pending(content: str, content_pending: str | None) -> str:
    """Content after accepting a staged patch. An empty staged string keeps the committed text."""
    if content_pending:
        return content_pending
    return content


def accepted(row: WorkspaceFile) -> WorkspaceFile:
    return row.model_copy(update={"content": fold_pending(row.content, row.content_pending), "content_pending": None})


def rejected(row: WorkspaceFile) -> WorkspaceFile:
    return row.model_copy(update={"content_pending": None})


async def _load(r: RepositoryFactory, file_id: str, revision: int, workspace_id: str | None) -> WorkspaceFile:
    row = await r.files.get_by_id(file_id, revision)
    if workspace_id is not None and row.workspace_id != workspace_id:
        raise FileNotFound(f"File not found: {file_id}@{revision}")
    return row


async def stage_patch(
    workspace_id: str,
    file_id: str,
    revision: int,
    content: str,
    *,
    repos: RepositoryFactory | None = None,
    publisher: EventPublisher | None = None,
) -> WorkspaceFile:
    """
    Stages ``content`` as the file's pending patch, replacing any earlier one.

    Only the workspace's current revision takes patches; a commit copies that revision and
    would drop anything staged on an older one.
    """
    r = repos or repository_factory()
    row = await _load(r, file_id, revision, workspace_id)
    current = await r.workspaces.current_revision(workspace_id)
    if row.revision_number != current:
        raise PatchError(f"Revision {revision} is not the current revision ({current}) of {workspace_id}")
    await r.files.set_pending(row.id, row.revision_number, content)
    logger.info(
        "patch.stage workspace=%s file=%s revision=%s chars=%s",
        workspace_id,
        row.id,
        revision,
        len(content),
    )
    if publisher is not None:
        await publisher.publish_artifact_update(workspace_id, row.id, row.file_path)
    return row.model_copy(update={"content_pending": content})


async def accept_patch(
    file_id: str,
    revision: int,
    *,
    workspace_id: str | None = None,
    repos: RepositoryFactory | None = None,
    publisher: EventPublisher | None = None,
) -> WorkspaceFile:
    r = repos or repository_factory()
    row = await _load(r, file_id, revision, workspace_id)
    if not row.has_pending:
        return row
    merged = accepted(row)
    await r.files.update(row.id, row.revision_number, merged.content, clear_pending=True)
    logger.info("patch.accept workspace=%s file=%s revision=%s", row.workspace_id, row.id, revision)
    if publisher is not None:
        await publisher.publish_artifact_update(row.workspace_id, row.id, row.file_path)
    return merged


async def reject_patch(
    file_id: str,
    revision: int,
    *,
    workspace_id: str | None = None,
    repos: RepositoryFactory | None = None,
    publisher: EventPublisher | None = None,
) -> WorkspaceFile:
    r = repos or repository_factory()
    row = await _load(r, file_id, revision, workspace_id)
    if not row.has_pending:
        return row
    await r.files.clear_pending(row.id, row.revision_number)
    logger.info("patch.reject workspace=%s file=%s revision=%s", row.workspace_id, row.id, revision)
    if publisher is not None:
        await publisher.publish_artifact_update(row.workspace_id, row.id, row.file_path)
    return rejected(row)


async def _for_each_pending(r: RepositoryFactory, workspace_id: str, revision: int, op, label: str) -> PatchBatchResult:
    result = PatchBatchResult()
    for row in await r.files.list_pending(workspace_id, revision):
        try:
            result.updated.append(await op(row))
        except Exception as err:
            # Best effort: one file failing does not stop the rest of the batch.
            logger.warning(
                "patch.%s_all.file_failed workspace=%s file=%s error=%s",
                label,
                workspace_id,
                row.id,
                err,
            )
            result.failed.append(PatchFailure(file_id=row.id, file_path=row.file_path, error=str(err)))
    logger.info(
        "patch.%s_all workspace=%s revision=%s updated=%s failed=%s",
        label,
        workspace_id,
        revision,
        len(result.updated),
        len(result.failed),
    )
    return result


async def accept_all_patches(
    workspace_id: str,
    revision: int,
    *,
    repos: RepositoryFactory | None = None,
) -> PatchBatchResult:
    r = repos or repository_factory()

    async def _accept(row: WorkspaceFile) -> WorkspaceFile:
        merged = accepted(row)
        await r.files.update(row.id, row.revision_number, merged.content, clear_pending=True)
        return merged

    return await _for_each_pending(r, workspace_id, revision, _accept, "accept")


async def reject_all_patches(
    workspace_id: str,
    revision: int,
    *,
    repos: RepositoryFactory | None = None,
) -> PatchBatchResult:
    r = repos or repository_factory()

    async def _reject(row: WorkspaceFile) -> WorkspaceFile:
        await r.files.clear_pending(row.id, row.revision_number)
        return rejected(row)

    return await _for_each_pending(r, workspace_id, revision, _reject, "reject")


async def commit_pending_changes(
    workspace_id: str,
    user_id: str | None,
    *,
    repos: RepositoryFactory | None = None,
    publisher: EventPublisher | None = None,
) -> dict[str, Any]:
    """
    Snapshots the current revision into a new one with every staged patch folded in.

    The revision number is claimed first with a conditional increment, so a concurrent
    commit fails instead of writing the same revision twice. The copy itself is not
    transactional.
    """
    if not str(user_id or "").strip():
        raise Unauthorized("Unauthorized")
    r = repos or repository_factory()
    now = utc_now()
    prev = await r.workspaces.current_revision(workspace_id)
    new = await r.workspaces.advance_revision(workspace_id, expected=prev, now=now)
    if new is None:
        raise PatchError(f"Workspace {workspace_id} not found or its revision changed during commit")

    await r.workspaces.insert_revision(
        {
            "workspace_id": workspace_id,
            "revision_number": new,
            "created_at": now,
            "created_by_user_id": user_id,
            "created_type": "commit_pending",
            "is_complete": True,
        }
    )
    await r.workspaces.copy_charts(await r.workspaces.list_charts(workspace_id, prev), new)

    files: list[WorkspaceFile] = []
    for row in await r.files.list_revision(workspace_id, prev):
        files.append(
            await r.files.insert(
                workspace_id=workspace_id,
                file_path=row.file_path,
                content=fold_pending(row.content, row.content_pending),
                revision_number=new,
                chart_id=row.chart_id,
                file_id=row.id,
            )
        )
    cleared = await r.files.clear_pending_for_revision(workspace_id, prev)
    logger.info(
        "workspace.commit workspace=%s revision=%s->%s files=%s cleared=%s",
        workspace_id,
        prev,
        new,
        len(files),
        cleared,
    )
    if publisher is not None:
        for row in files:
            await publisher.publish_artifact_update(workspace_id, row.id, row.file_path)
    return {"workspace_id": workspace_id, "revision_number": new, "files": files}
