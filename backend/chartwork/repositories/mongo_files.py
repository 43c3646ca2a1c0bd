from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from ..db import get_db
from ..errors import FileAlreadyExists, FileNotFound
from ..models.workspace import Chart, Workspace, WorkspaceFile

FILES = "workspace_files"


def _file_from_doc(doc: dict[str, Any]) -> WorkspaceFile:
    revision = doc.get("revision_number")
    return WorkspaceFile(
        id=str(doc.get("file_id") or doc.get("_id") or ""),
        workspace_id=str(doc.get("workspace_id") or ""),
        chart_id=str(doc["chart_id"]) if doc.get("chart_id") else None,
        file_path=str(doc.get("file_path") or ""),
        content=str(doc.get("content") or ""),
        content_pending=doc.get("content_pending"),
        revision_number=int(revision) if revision is not None else None,
    )


def _row_query(file_id: str, revision_number: int | None) -> dict[str, Any]:
    return {"file_id": str(file_id), "revision_number": revision_number}


class MongoWorkspaceFileRepository:
    """Append-only file rows; the current row of a path is the one with the highest revision."""

    def __init__(self, db=None):
        self._db = db if db is not None else get_db()

    async def find(self, workspace_id: str, file_path: str) -> WorkspaceFile | None:
        row = await self._db[FILES].find_one(
            {"workspace_id": workspace_id, "file_path": file_path},
            sort=[("revision_number", -1)],
        )
        return _file_from_doc(row) if isinstance(row, dict) else None

    async def get(self, workspace_id: str, file_path: str) -> WorkspaceFile:
        row = await self.find(workspace_id, file_path)
        if row is None:
            raise FileNotFound(f"File not found: {file_path}")
        return row

    async def get_by_id(self, file_id: str, revision_number: int | None = None) -> WorkspaceFile:
        query: dict[str, Any] = {"file_id": str(file_id)}
        if revision_number is not None:
            query["revision_number"] = int(revision_number)
        row = await self._db[FILES].find_one(query, sort=[("revision_number", -1)])
        if not isinstance(row, dict):
            raise FileNotFound(f"File not found: {file_id}@{revision_number}")
        return _file_from_doc(row)

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
    ) -> WorkspaceFile:
        if file_id is None and await self.find(workspace_id, file_path) is not None:
            raise FileAlreadyExists(f"File already exists: {file_path}. Use str_replace to modify it.")
        row_id = ObjectId()
        doc = {
            "_id": row_id,
            "file_id": str(file_id or row_id),
            "workspace_id": workspace_id,
            "chart_id": chart_id,
            "file_path": file_path,
            "content": content,
            "content_pending": content_pending,
            "revision_number": revision_number,
        }
        try:
            await self._db[FILES].insert_one(doc)
        except DuplicateKeyError as err:
            raise FileAlreadyExists(f"File already exists: {file_path}. Use str_replace to modify it.") from err
        return _file_from_doc(doc)

    async def update(
        self,
        file_id: str,
        revision_number: int | None,
        content: str,
        *,
        clear_pending: bool = False,
    ) -> None:
        update: dict[str, Any] = {"content": content}
        if clear_pending:
            update["content_pending"] = None
        res = await self._db[FILES].update_one(_row_query(file_id, revision_number), {"$set": update})
        if not int(getattr(res, "matched_count", 0) or 0):
            raise FileNotFound(f"File not found: {file_id}@{revision_number}")

    async def set_pending(self, file_id: str, revision_number: int | None, content: str) -> None:
        res = await self._db[FILES].update_one(
            _row_query(file_id, revision_number),
            {"$set": {"content_pending": content}},
        )
        if not int(getattr(res, "matched_count", 0) or 0):
            raise FileNotFound(f"File not found: {file_id}@{revision_number}")

    async def clear_pending(self, file_id: str, revision_number: int | None) -> None:
        await self._db[FILES].update_one(
            _row_query(file_id, revision_number),
            {"$set": {"content_pending": None}},
        )

    async def list_revision(self, workspace_id: str, revision_number: int) -> list[WorkspaceFile]:
        rows = (
            await self._db[FILES]
            .find({"workspace_id": workspace_id, "revision_number": int(revision_number)})
            .sort("file_path", 1)
            .to_list(length=5000)
        )
        return [_file_from_doc(row) for row in rows if isinstance(row, dict)]

    async def list_pending(self, workspace_id: str, revision_number: int) -> list[WorkspaceFile]:
        rows = await self.list_revision(workspace_id, revision_number)
        return [row for row in rows if row.has_pending]

    async def clear_pending_for_revision(self, workspace_id: str, revision_number: int) -> int:
        res = await self._db[FILES].update_many(
            {"workspace_id": workspace_id, "revision_number": int(revision_number), "content_pending": {"$ne": None}},
            {"$set": {"content_pending": None}},
        )
        return int(getattr(res, "modified_count", 0) or 0)


class MongoWorkspaceRepository:
    def __init__(self, db=None):
        self._db = db if db is not None else get_db()

    async def find(self, workspace_id: str) -> Workspace | None:
        row = await self._db["workspaces"].find_one({"_id": workspace_id})
        if not isinstance(row, dict):
            return None
        return Workspace(
            id=str(row.get("_id") or ""),
            current_revision_number=int(row.get("current_revision_number") or 0),
            last_updated_at=row.get("last_updated_at"),
        )

    async def current_revision(self, workspace_id: str) -> int:
        row = await self._db["workspaces"].find_one({"_id": workspace_id}, {"current_revision_number": 1})
        if not isinstance(row, dict):
            return 0
        return int(row.get("current_revision_number") or 0)

    async def advance_revision(self, workspace_id: str, *, expected: int, now: datetime) -> int | None:
        row = await self._db["workspaces"].find_one_and_update(
            {"_id": workspace_id, "current_revision_number": int(expected)},
            {"$inc": {"current_revision_number": 1}, "$set": {"last_updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if not isinstance(row, dict):
            return None
        return int(row.get("current_revision_number") or 0)

    async def insert_revision(self, doc: dict[str, Any]) -> None:
        await self._db["workspace_revisions"].insert_one(dict(doc))

    async def list_charts(self, workspace_id: str, revision_number: int) -> list[Chart]:
        rows = (
            await self._db["workspace_charts"]
            .find({"workspace_id": workspace_id, "revision_number": int(revision_number)})
            .to_list(length=500)
        )
        return [
            Chart(
                id=str(row.get("chart_id") or ""),
                workspace_id=str(row.get("workspace_id") or ""),
                name=str(row.get("name") or ""),
                revision_number=int(row.get("revision_number") or 0),
            )
            for row in rows
            if isinstance(row, dict)
        ]

    async def copy_charts(self, charts: list[Chart], revision_number: int) -> None:
        if not charts:
            return
        await self._db["workspace_charts"].insert_many(
            [
                {
                    "chart_id": chart.id,
                    "workspace_id": chart.workspace_id,
                    "name": chart.name,
                    "revision_number": int(revision_number),
                }
                for chart in charts
            ]
        )
