from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from chartwork.core.request_context import get_request_id
from chartwork.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/whoami")
    async def whoami() -> dict[str, str]:
        return {"request_id": get_request_id()}

    return app


def test_generated_request_id_is_bound_while_handling() -> None:
    response = TestClient(_app()).get("/whoami")
    assert response.status_code == 200
    header = response.headers.get(REQUEST_ID_HEADER)
    assert header
    assert response.json()["request_id"] == header


def test_caller_request_id_is_propagated() -> None:
    response = TestClient(_app()).get("/whoami", headers={"x-request-id": "req-123"})
    assert response.headers.get(REQUEST_ID_HEADER) == "req-123"
    assert response.json()["request_id"] == "req-123"


def test_blank_request_id_is_replaced() -> None:
    response = TestClient(_app()).get("/whoami", headers={"x-request-id": "   "})
    assert response.headers.get(REQUEST_ID_HEADER).strip()
    assert get_request_id() == "-"
