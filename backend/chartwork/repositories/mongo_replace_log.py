from __future__ import annotations

from typing import Any

from ..db import get_db
from ..models.workspace import ReplaceLogEntry
from ..utils.mongo import utc_now

REPLACE_LOG = "str_replace_log"


class MongoReplaceLogRepository:
    def __init__(self, db=None):
        self._db = db if db is not None else get_db()

    async def insert(self, entry: ReplaceLogEntry) -> str:
        doc: dict[str, Any] = entry.model_dump()
        doc["created_at"] = doc.get("created_at") or utc_now()
        res = await self._db[REPLACE_LOG].insert_one(doc)
        return str(res.inserted_id)

    async def list_entries(
        self,
        *,
        workspace_id: str | None = None,
        file_path: str | None = None,
        found_only: bool = False,
        limit: int = 50,
    ) -> list[ReplaceLogEntry]:
        query: dict[str, Any] = {}
        if workspace_id:
            query["workspace_id"] = workspace_id
        if file_path:
            query["file_path"] = file_path
        if found_only:
            query["found"] = True
        safe_limit = max(1, min(int(limit or 50), 500))
        rows = (
            await self._db[REPLACE_LOG]
            .find(query)
            .sort("created_at", -1)
            .limit(safe_limit)
            .to_list(length=safe_limit)
        )
        return [ReplaceLogEntry(**{k: v for k, v in row.items() if k != "_id"}) for row in rows if isinstance(row, dict)]
