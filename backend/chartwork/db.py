from motor.motor_asyncio import AsyncIOMotorClient

from .settings import settings

_client: AsyncIOMotorClient | None = None


async def init_db():
    db = get_db()
    await db["workspace_files"].create_index(
        [("workspace_id", 1), ("file_path", 1), ("revision_number", -1)],
        name="workspace_files_path_latest",
    )
    await db["workspace_files"].create_index(
        [("file_id", 1), ("revision_number", 1)],
        unique=True,
        name="workspace_files_id_revision",
    )
    await db["workspace_files"].create_index(
        [("workspace_id", 1), ("revision_number", 1), ("content_pending", 1)],
        name="workspace_files_pending",
    )
    await db["workspace_charts"].create_index([("workspace_id", 1), ("revision_number", 1)], name="workspace_charts_revision")
    await db["workspace_revisions"].create_index(
        [("workspace_id", 1), ("revision_number", 1)],
        unique=True,
        name="workspace_revisions_number",
    )
    await db["workspace_plans"].create_index([("workspace_id", 1), ("created_at", -1)], name="workspace_plans_recent")
    await db["str_replace_log"].create_index([("file_path", 1), ("created_at", -1)], name="str_replace_log_path_recent")
    await db["str_replace_log"].create_index(
        [("workspace_id", 1), ("created_at", -1)],
        name="str_replace_log_workspace_recent",
    )
    await db["realtime_replay"].create_index([("created_at", 1)], name="realtime_replay_created")


def get_client() -> AsyncIOMotorClient:
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(settings.MONGODB_URI)
    return _client


def get_db():
    return get_client()[settings.MONGODB_DB]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
