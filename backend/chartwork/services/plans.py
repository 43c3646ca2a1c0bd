from __future__ import annotations

import logging
from typing import Any

from ..errors import PlanNotFound, PlanStateError
from ..models.plans import ActionFile, Plan, ToolCall, statuses_entering
from ..repositories.factory import RepositoryFactory, repository_factory
from ..utils.mongo import utc_now
from .realtime import EventPublisher

logger = logging.getLogger(__name__)

EMPTY_PLAN_DESCRIPTION = "Plan awaiting approval. Proceed to start creating files."


async def get_plan(workspace_id: str, plan_id: str, *, repos: RepositoryFactory | None = None) -> Plan:
    r = repos or repository_factory()
    plan = await r.plans.get(plan_id)
    if plan.workspace_id != workspace_id:
        raise PlanNotFound(f"Plan not found: {plan_id}")
    return plan


async def transition_plan(
    plan_id: str,
    to_status: str,
    *,
    repos: RepositoryFactory | None = None,
    publisher: EventPublisher | None = None,
) -> Plan:
    """
    Moves a plan along the status machine with a single conditional update.

    The store only accepts the write when the current status is a legal source for
    ``to_status``, so two callers racing into ``applying`` cannot both win. Reaching
    ``applied`` stamps ``proceed_at``. Raises ``PlanStateError`` for an illegal move and
    ``PlanNotFound`` for an unknown plan.
    """
    r = repos or repository_factory()
    sources = statuses_entering(to_status)
    if not sources:
        raise PlanStateError(f"No plan may move to status {to_status!r}")
    now = utc_now()
    plan = await r.plans.transition_status(
        plan_id,
        from_statuses=sources,
        to_status=to_status,
        now=now,
        proceed_at=now if to_status == "applied" else None,
    )
    if plan is None:
        current = await r.plans.get(plan_id)
        raise PlanStateError(f"Plan {plan_id} cannot move from {current.status} to {to_status}")
    logger.info("plan.status workspace=%s plan=%s status=%s", plan.workspace_id, plan_id, to_status)
    if publisher is not None:
        await publisher.publish_plan_update(plan.workspace_id, plan_id)
    return plan


def _editor_calls(tool_calls: list[ToolCall]):
    for call in tool_calls:
        req = call.text_editor_request()
        if req is not None:
            yield call, req


def describe_tool_calls(tool_calls: list[ToolCall]) -> str:
    lines: list[str] = []
    for _, req in _editor_calls(tool_calls):
        if req.command == "create":
            lines.append(f"- Create file: `{req.path}`")
        elif req.command == "str_replace":
            lines.append(f"- Modify file: `{req.path}`")
    if not lines:
        return EMPTY_PLAN_DESCRIPTION
    return "I'll make the following changes:\n\n" + "\n".join(lines)


def extract_action_files(tool_calls: list[ToolCall]) -> list[ActionFile]:
    """One pending entry per path, in first-seen order; ``create`` only when the first call creates."""
    out: list[ActionFile] = []
    seen: set[str] = set()
    for _, req in _editor_calls(tool_calls):
        if req.path in seen:
            continue
        seen.add(req.path)
        out.append(ActionFile(path=req.path, action="create" if req.command == "create" else "update"))
    return out


async def create_plan_from_tool_calls(
    workspace_id: str,
    tool_calls: list[ToolCall],
    *,
    chat_message_id: str | None = None,
    description: str | None = None,
    repos: RepositoryFactory | None = None,
    publisher: EventPublisher | None = None,
) -> Plan:
    r = repos or repository_factory()
    now = utc_now()
    doc: dict[str, Any] = {
        "workspace_id": workspace_id,
        "description": str(description or "").strip() or describe_tool_calls(tool_calls),
        "status": "review",
        "created_at": now,
        "updated_at": now,
        "proceed_at": None,
        "action_files": [row.model_dump() for row in extract_action_files(tool_calls)],
        "chat_message_ids": [chat_message_id] if chat_message_id else [],
        "buffered_tool_calls": [call.model_dump() for call in tool_calls],
    }
    plan = await r.plans.insert(doc)
    logger.info(
        "plan.create workspace=%s plan=%s tool_calls=%s action_files=%s",
        workspace_id,
        plan.id,
        len(tool_calls),
        len(plan.action_files),
    )
    if publisher is not None:
        await publisher.publish_plan_update(workspace_id, plan.id)
    return plan
