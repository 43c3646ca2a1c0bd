from fastapi import Header, HTTPException

from .db import get_db
from .errors import (
    FileAlreadyExists,
    FileNotFound,
    PatchError,
    PlanNotFound,
    PlanStateError,
    Unauthorized,
    WorkspaceError,
    WorkspaceNotFound,
)
from .services.realtime import EventPublisher, default_publisher
from .settings import settings


async def current_user_id(x_dev_user: str | None = Header(default=None)) -> str:
    if settings.AUTH_MODE != "dev":
        raise HTTPException(500, "AUTH_MODE not set to dev for this POC")
    if not x_dev_user:
        raise HTTPException(401, "Missing X-Dev-User header (POC auth)")
    return x_dev_user


def get_publisher() -> EventPublisher:
    return default_publisher(get_db())


def http_error(err: WorkspaceError) -> HTTPException:
    detail = str(err)
    if isinstance(err, Unauthorized):
        return HTTPException(status_code=401, detail=detail)
    if isinstance(err, (FileNotFound, PlanNotFound, WorkspaceNotFound)):
        return HTTPException(status_code=404, detail=detail)
    if isinstance(err, (FileAlreadyExists, PlanStateError, PatchError)):
        return HTTPException(status_code=409, detail=detail)
    return HTTPException(status_code=400, detail=detail)
