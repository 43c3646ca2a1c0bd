from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument

from ..db import get_db
from ..errors import PlanNotFound
from ..models.plans import ActionFile, Plan, ToolCall

PLANS = "workspace_plans"


def _plan_from_doc(doc: dict[str, Any]) -> Plan:
    return Plan(
        id=str(doc.get("_id") or ""),
        workspace_id=str(doc.get("workspace_id") or ""),
        description=str(doc.get("description") or ""),
        status=str(doc.get("status") or "draft"),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
        proceed_at=doc.get("proceed_at"),
        action_files=[ActionFile(**row) for row in doc.get("action_files") or [] if isinstance(row, dict)],
        chat_message_ids=[str(x) for x in doc.get("chat_message_ids") or []],
        buffered_tool_calls=[ToolCall(**row) for row in doc.get("buffered_tool_calls") or [] if isinstance(row, dict)],
    )


class MongoPlanRepository:
    def __init__(self, db=None):
        self._db = db if db is not None else get_db()

    async def get(self, plan_id: str) -> Plan:
        if not ObjectId.is_valid(str(plan_id or "")):
            raise PlanNotFound(f"Plan not found: {plan_id}")
        row = await self._db[PLANS].find_one({"_id": ObjectId(str(plan_id))})
        if not isinstance(row, dict):
            raise PlanNotFound(f"Plan not found: {plan_id}")
        return _plan_from_doc(row)

    async def insert(self, doc: dict[str, Any]) -> Plan:
        payload = dict(doc)
        payload.setdefault("_id", ObjectId())
        await self._db[PLANS].insert_one(payload)
        return _plan_from_doc(payload)

    async def transition_status(
        self,
        plan_id: str,
        *,
        from_statuses: list[str],
        to_status: str,
        now: datetime,
        proceed_at: datetime | None = None,
    ) -> Plan | None:
        """Atomically move a plan to ``to_status`` only if it is currently in one of ``from_statuses``."""
        if not ObjectId.is_valid(str(plan_id or "")):
            return None
        update: dict[str, Any] = {"status": to_status, "updated_at": now}
        if proceed_at is not None:
            update["proceed_at"] = proceed_at
        row = await self._db[PLANS].find_one_and_update(
            {"_id": ObjectId(str(plan_id)), "status": {"$in": list(from_statuses)}},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return _plan_from_doc(row) if isinstance(row, dict) else None

    async def set_action_files(self, plan_id: str, action_files: list[ActionFile], *, now: datetime) -> None:
        if not ObjectId.is_valid(str(plan_id or "")):
            raise PlanNotFound(f"Plan not found: {plan_id}")
        res = await self._db[PLANS].update_one(
            {"_id": ObjectId(str(plan_id))},
            {"$set": {"action_files": [row.model_dump() for row in action_files], "updated_at": now}},
        )
        if not int(getattr(res, "matched_count", 0) or 0):
            raise PlanNotFound(f"Plan not found: {plan_id}")
