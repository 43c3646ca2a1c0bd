from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.logging import configure_logging
from .db import close_client, init_db
from .middleware.request_id import RequestIdMiddleware
from .routes.plans import router as plans_router
from .routes.workspace import router as workspace_router
from .settings import settings

configure_logging()
logger = logging.getLogger(__name__)


def _allowed_origins() -> list[str]:
    raw = [settings.WEB_ORIGIN, "http://localhost:3000"]
    configured = os.getenv("CORS_ALLOW_ORIGINS", "")
    if configured.strip():
        raw.extend(x.strip() for x in configured.split(","))

    out: list[str] = []
    for value in raw:
        origin = str(value or "").strip()
        if origin and origin not in out:
            out.append(origin)
    return out


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("startup.begin version=%s mutation_backend=%s", settings.APP_VERSION, settings.MUTATION_BACKEND)
    await init_db()
    logger.info("startup.ready")
    try:
        yield
    finally:
        close_client()
        logger.info("shutdown.done")


app = FastAPI(title="Chartwork Workspace API", version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(workspace_router)
app.include_router(plans_router)
