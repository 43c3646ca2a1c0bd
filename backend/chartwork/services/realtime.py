from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Protocol

import httpx

from ..core.request_context import get_request_id
from ..errors import PublishFailure
from ..settings import settings
from ..utils.mongo import utc_now

logger = logging.getLogger(__name__)

PLAN_UPDATED_EVENT = "plan-updated"
ARTIFACT_UPDATED_EVENT = "artifact-updated"
PUBLISH_TIMEOUT_SEC = 5.0


class EventPublisher(Protocol):
    async def publish_plan_update(self, workspace_id: str, plan_id: str) -> bool: ...

    async def publish_artifact_update(self, workspace_id: str, file_id: str, path: str) -> bool: ...


def workspace_channel(workspace_id: str) -> str:
    return f"workspace#{workspace_id}"


class CentrifugoPublisher:
    """
    Pushes identifier-only invalidation hints to subscribers.

    Events never carry state: consumers re-fetch the plan or file they name. Every
    failure (missing key, transport error, non-2xx) is logged and reported as ``False``
    so callers can publish right after persisting without guarding the call.
    """

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        db=None,
        replay_ttl_sec: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_url = (api_url or settings.CENTRIFUGO_API_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.CENTRIFUGO_API_KEY
        self._db = db
        self._replay_ttl_sec = int(replay_ttl_sec if replay_ttl_sec is not None else settings.REALTIME_REPLAY_TTL_SEC)
        self._transport = transport

    async def publish_plan_update(self, workspace_id: str, plan_id: str) -> bool:
        return await self._publish(workspace_id, PLAN_UPDATED_EVENT, {"planId": plan_id})

    async def publish_artifact_update(self, workspace_id: str, file_id: str, path: str) -> bool:
        return await self._publish(workspace_id, ARTIFACT_UPDATED_EVENT, {"fileId": file_id, "path": path})

    async def _publish(self, workspace_id: str, event_type: str, data: dict[str, Any]) -> bool:
        message = {"eventType": event_type, "workspaceId": workspace_id, **data}
        try:
            await self._send(workspace_channel(workspace_id), message)
        except Exception as err:
            logger.warning(
                "realtime.publish.failed workspace=%s event=%s request=%s error=%s",
                workspace_id,
                event_type,
                get_request_id(),
                err,
            )
            return False
        await self._store_replay(workspace_id, message)
        logger.debug("realtime.publish.ok workspace=%s event=%s", workspace_id, event_type)
        return True

    async def _send(self, channel: str, message: dict[str, Any]) -> None:
        if not self._api_key:
            raise PublishFailure("CENTRIFUGO_API_KEY is not set")
        async with httpx.AsyncClient(timeout=PUBLISH_TIMEOUT_SEC, transport=self._transport) as client:
            resp = await client.post(
                f"{self._api_url}/publish",
                headers={"X-API-Key": self._api_key},
                json={"channel": channel, "data": message},
            )
        if resp.status_code >= 400:
            raise PublishFailure(f"centrifugo publish failed ({resp.status_code}): {resp.text[:400]}")

    async def _store_replay(self, workspace_id: str, message: dict[str, Any]) -> None:
        if self._db is None:
            return
        now = utc_now()
        try:
            await self._db["realtime_replay"].insert_one(
                {"workspace_id": workspace_id, "message_data": message, "created_at": now}
            )
            await self._db["realtime_replay"].delete_many(
                {"created_at": {"$lt": now - timedelta(seconds=self._replay_ttl_sec)}}
            )
        except Exception as err:
            logger.warning("realtime.replay.store_failed workspace=%s error=%s", workspace_id, err)


def default_publisher(db=None) -> CentrifugoPublisher:
    return CentrifugoPublisher(db=db)
