from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..deps import current_user_id, get_publisher, http_error
from ..errors import WorkspaceError
from ..models.workspace import (
    EditorResult,
    PatchBatchResult,
    ReplaceLogEntry,
    TextEditorRequest,
    Workspace,
    WorkspaceFile,
)
from ..services.patches import (
    accept_all_patches,
    accept_patch,
    commit_pending_changes,
    reject_all_patches,
    reject_patch,
    stage_patch,
)
from ..services.realtime import EventPublisher
from ..services.text_editor import execute_editor_command
from ..services.workspace import get_workspace, list_replace_log
from ..utils.mongo import to_jsonable

router = APIRouter(prefix="/workspaces", tags=["workspace"])
logger = logging.getLogger(__name__)


class StagePatchReq(BaseModel):
    content: str


@router.get("/{workspace_id}", response_model=Workspace)
async def workspace_get(
    workspace_id: str,
    revision: int | None = Query(default=None),
    user_id: str = Depends(current_user_id),
):
    try:
        return await get_workspace(workspace_id, revision)
    except WorkspaceError as err:
        raise http_error(err)


@router.get("/{workspace_id}/replace-log", response_model=list[ReplaceLogEntry])
async def workspace_replace_log(
    workspace_id: str,
    path: str | None = Query(default=None),
    found_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    user_id: str = Depends(current_user_id),
):
    return await list_replace_log(workspace_id, file_path=path, found_only=found_only, limit=limit)


@router.post("/{workspace_id}/editor", response_model=EditorResult)
async def workspace_editor(
    workspace_id: str,
    req: TextEditorRequest,
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await execute_editor_command(workspace_id, req, publisher=publisher)
    except WorkspaceError as err:
        raise http_error(err)


@router.post("/{workspace_id}/files/{file_id}/pending", response_model=WorkspaceFile)
async def workspace_file_stage(
    workspace_id: str,
    file_id: str,
    req: StagePatchReq,
    revision: int = Query(...),
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await stage_patch(workspace_id, file_id, revision, req.content, publisher=publisher)
    except WorkspaceError as err:
        raise http_error(err)


@router.post("/{workspace_id}/files/{file_id}/accept", response_model=WorkspaceFile)
async def workspace_file_accept(
    workspace_id: str,
    file_id: str,
    revision: int = Query(...),
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await accept_patch(file_id, revision, workspace_id=workspace_id, publisher=publisher)
    except WorkspaceError as err:
        raise http_error(err)


@router.post("/{workspace_id}/files/{file_id}/reject", response_model=WorkspaceFile)
async def workspace_file_reject(
    workspace_id: str,
    file_id: str,
    revision: int = Query(...),
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        return await reject_patch(file_id, revision, workspace_id=workspace_id, publisher=publisher)
    except WorkspaceError as err:
        raise http_error(err)


@router.post("/{workspace_id}/patches/accept-all", response_model=PatchBatchResult)
async def workspace_patches_accept_all(
    workspace_id: str,
    revision: int = Query(...),
    user_id: str = Depends(current_user_id),
):
    try:
        return await accept_all_patches(workspace_id, revision)
    except WorkspaceError as err:
        raise http_error(err)


@router.post("/{workspace_id}/patches/reject-all", response_model=PatchBatchResult)
async def workspace_patches_reject_all(
    workspace_id: str,
    revision: int = Query(...),
    user_id: str = Depends(current_user_id),
):
    try:
        return await reject_all_patches(workspace_id, revision)
    except WorkspaceError as err:
        raise http_error(err)


@router.post("/{workspace_id}/commit")
async def workspace_commit(
    workspace_id: str,
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
) -> dict[str, Any]:
    try:
        out = await commit_pending_changes(workspace_id, user_id, publisher=publisher)
    except WorkspaceError as err:
        raise http_error(err)
    return to_jsonable(
        {
            "workspace_id": out["workspace_id"],
            "revision_number": out["revision_number"],
            "files": [row.model_dump() for row in out["files"]],
        }
    )
