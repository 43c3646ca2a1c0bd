from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import current_user_id, get_publisher, http_error
from ..errors import WorkspaceError
from ..models.plans import ActionFileAction, ActionFileStatus, ToolCall
from ..services.action_files import add_or_update_action_file
from ..services.plan_executor import PlanExecutor, proceed_plan
from ..services.plans import create_plan_from_tool_calls, get_plan
from ..services.realtime import EventPublisher
from ..utils.mongo import to_jsonable

router = APIRouter(prefix="/workspaces", tags=["plans"])
logger = logging.getLogger(__name__)


class PlanCreateReq(BaseModel):
    chat_message_id: str | None = None
    description: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ActionFileReq(BaseModel):
    path: str
    action: ActionFileAction = "create"
    status: ActionFileStatus = "pending"


def _plan_out(plan) -> dict[str, Any]:
    return to_jsonable(plan.model_dump())


@router.post("/{workspace_id}/plans")
async def workspace_plan_create(
    workspace_id: str,
    req: PlanCreateReq,
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        plan = await create_plan_from_tool_calls(
            workspace_id,
            req.tool_calls,
            chat_message_id=req.chat_message_id,
            description=req.description,
            publisher=publisher,
        )
    except WorkspaceError as err:
        raise http_error(err)
    return _plan_out(plan)


@router.get("/{workspace_id}/plans/{plan_id}")
async def workspace_plan_get(
    workspace_id: str,
    plan_id: str,
    user_id: str = Depends(current_user_id),
):
    try:
        plan = await get_plan(workspace_id, plan_id)
    except WorkspaceError as err:
        raise http_error(err)
    return _plan_out(plan)


@router.post("/{workspace_id}/plans/{plan_id}/action-files")
async def workspace_plan_action_file(
    workspace_id: str,
    plan_id: str,
    req: ActionFileReq,
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        plan = await add_or_update_action_file(workspace_id, plan_id, req.path, req.action, req.status)
    except WorkspaceError as err:
        raise http_error(err)
    await publisher.publish_plan_update(workspace_id, plan_id)
    return _plan_out(plan)


@router.post("/{workspace_id}/plans/{plan_id}/publish")
async def workspace_plan_publish(
    workspace_id: str,
    plan_id: str,
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    ok = await publisher.publish_plan_update(workspace_id, plan_id)
    return {"success": bool(ok)}


@router.post("/{workspace_id}/plans/{plan_id}/proceed")
async def workspace_plan_proceed(
    workspace_id: str,
    plan_id: str,
    user_id: str = Depends(current_user_id),
    publisher: EventPublisher = Depends(get_publisher),
):
    try:
        plan = await proceed_plan(user_id, workspace_id, plan_id, executor=PlanExecutor(publisher=publisher))
    except WorkspaceError as err:
        raise http_error(err)
    return _plan_out(plan)
