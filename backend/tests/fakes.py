from __future__ import annotations

from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from chartwork.repositories.factory import RepositoryFactory, repository_factory


def _matches(row: dict, query: dict) -> bool:
    for key, expected in (query or {}).items():
        value = row.get(key)
        if isinstance(expected, dict):
            if "$in" in expected and value not in list(expected["$in"] or []):
                return False
            if "$ne" in expected and value == expected["$ne"]:
                return False
            if "$lt" in expected and (value is None or not value < expected["$lt"]):
                return False
            continue
        if value != expected:
            return False
    return True


def _sort_key(field: str):
    # Mongo orders null below every value.
    def _key(row: dict):
        value = row.get(field)
        return (value is not None, value if value is not None else 0)

    return _key


def _sorted(rows: list[dict], spec) -> list[dict]:
    out = list(rows)
    for field, direction in reversed(list(spec or [])):
        out.sort(key=_sort_key(str(field)), reverse=int(direction) < 0)
    return out


class _Result:
    def __init__(self, *, inserted_id=None, matched_count=0, modified_count=0, deleted_count=0):
        self.inserted_id = inserted_id
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.deleted_count = deleted_count


class FakeCursor:
    def __init__(self, rows: list[dict]):
        self.rows = list(rows)
        self.limit_value: int | None = None

    def sort(self, key, direction=None):  # noqa: ANN001
        spec = key if isinstance(key, list) else [(key, direction or 1)]
        self.rows = _sorted(self.rows, spec)
        return self

    def limit(self, value: int):
        self.limit_value = int(value)
        return self

    async def to_list(self, length: int | None = None):
        rows = self.rows
        if self.limit_value is not None:
            rows = rows[: self.limit_value]
        if length is not None:
            rows = rows[: int(length)]
        return [dict(row) for row in rows]


class FakeCollection:
    def __init__(self, rows: list[dict] | None = None):
        self.rows = [dict(row) for row in list(rows or [])]
        self.indexes: list[dict[str, Any]] = []
        self.unique_keys: list[tuple[str, ...]] = []

    async def create_index(self, keys, unique: bool = False, name: str | None = None, **_kwargs):
        self.indexes.append({"keys": list(keys), "unique": bool(unique), "name": name})
        if unique:
            self.unique_keys.append(tuple(str(k) for k, _ in keys))
        return name

    def _check_unique(self, row: dict) -> None:
        for fields in self.unique_keys:
            key = {f: row.get(f) for f in fields}
            if any(_matches(other, key) for other in self.rows):
                raise DuplicateKeyError(f"duplicate key {key}")

    def find(self, query: dict | None = None, projection: dict | None = None):
        return FakeCursor([row for row in self.rows if _matches(row, query or {})])

    async def find_one(self, query: dict | None = None, projection: dict | None = None, sort=None):
        matches = _sorted([row for row in self.rows if _matches(row, query or {})], sort)
        return dict(matches[0]) if matches else None

    async def insert_one(self, doc: dict):
        row = dict(doc)
        if row.get("_id") is None:
            row["_id"] = ObjectId()
        self._check_unique(row)
        self.rows.append(row)
        doc.setdefault("_id", row["_id"])
        return _Result(inserted_id=row["_id"])

    async def insert_many(self, docs: list[dict]):
        ids = []
        for doc in docs:
            res = await self.insert_one(doc)
            ids.append(res.inserted_id)
        return _Result(inserted_id=ids)

    @staticmethod
    def _apply(row: dict, update_doc: dict) -> dict:
        out = dict(row)
        for key, value in dict(update_doc.get("$set") or {}).items():
            out[key] = value
        for key, value in dict(update_doc.get("$inc") or {}).items():
            out[key] = (out.get(key) or 0) + value
        return out

    async def update_one(self, query: dict, update_doc: dict, upsert: bool = False):
        for idx, row in enumerate(self.rows):
            if _matches(row, query or {}):
                updated = self._apply(row, update_doc)
                self.rows[idx] = updated
                return _Result(matched_count=1, modified_count=int(updated != row))
        return _Result()

    async def update_many(self, query: dict, update_doc: dict):
        matched = modified = 0
        for idx, row in enumerate(self.rows):
            if _matches(row, query or {}):
                matched += 1
                updated = self._apply(row, update_doc)
                modified += int(updated != row)
                self.rows[idx] = updated
        return _Result(matched_count=matched, modified_count=modified)

    async def find_one_and_update(self, query: dict, update_doc: dict, return_document=ReturnDocument.BEFORE, **_kwargs):
        for idx, row in enumerate(self.rows):
            if _matches(row, query or {}):
                updated = self._apply(row, update_doc)
                self.rows[idx] = updated
                return dict(updated if return_document == ReturnDocument.AFTER else row)
        return None

    async def delete_many(self, query: dict):
        kept = [row for row in self.rows if not _matches(row, query or {})]
        deleted = len(self.rows) - len(kept)
        self.rows = kept
        return _Result(deleted_count=deleted)


class FakeDb:
    def __init__(self, collections: dict[str, FakeCollection] | None = None):
        self.collections = dict(collections or {})

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection()
        return self.collections[name]


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[str, ...]] = []

    async def publish_plan_update(self, workspace_id: str, plan_id: str) -> bool:
        self.events.append(("plan", workspace_id, plan_id))
        return True

    async def publish_artifact_update(self, workspace_id: str, file_id: str, path: str) -> bool:
        self.events.append(("artifact", workspace_id, path))
        return True

    def count(self, kind: str) -> int:
        return sum(1 for event in self.events if event[0] == kind)


def fake_repos(db: FakeDb | None = None) -> tuple[FakeDb, RepositoryFactory]:
    target = db if db is not None else FakeDb()
    # Same uniqueness the real indexes enforce.
    target["workspace_files"].unique_keys.append(("file_id", "revision_number"))
    return target, repository_factory(target)


async def seed_file(
    db: FakeDb,
    *,
    workspace_id: str = "ws1",
    path: str,
    content: str,
    revision: int | None = 0,
    pending: str | None = None,
    file_id: str | None = None,
    chart_id: str | None = None,
) -> str:
    row_id = ObjectId()
    fid = file_id or str(row_id)
    await db["workspace_files"].insert_one(
        {
            "_id": row_id,
            "file_id": fid,
            "workspace_id": workspace_id,
            "chart_id": chart_id,
            "file_path": path,
            "content": content,
            "content_pending": pending,
            "revision_number": revision,
        }
    )
    return fid


async def seed_workspace(db: FakeDb, workspace_id: str = "ws1", revision: int = 0) -> None:
    await db["workspaces"].insert_one({"_id": workspace_id, "current_revision_number": revision})


async def seed_chart(db: FakeDb, chart_id: str, name: str, *, workspace_id: str = "ws1", revision: int = 0) -> None:
    await db["workspace_charts"].insert_one(
        {"chart_id": chart_id, "workspace_id": workspace_id, "name": name, "revision_number": revision}
    )


async def seed_plan(db: FakeDb, *, workspace_id: str = "ws1", status: str = "draft", description: str = "", **extra) -> str:
    plan_id = ObjectId()
    await db["workspace_plans"].insert_one(
        {
            "_id": plan_id,
            "workspace_id": workspace_id,
            "description": description,
            "status": status,
            "action_files": [],
            "chat_message_ids": [],
            **extra,
        }
    )
    return str(plan_id)
