from __future__ import annotations

from contextvars import ContextVar, Token

_REQUEST_ID_CTX: ContextVar[str] = ContextVar("request_id", default="-")
_PLAN_ID_CTX: ContextVar[str] = ContextVar("plan_id", default="-")


def get_request_id() -> str:
    return _REQUEST_ID_CTX.get()


def set_request_id(request_id: str) -> Token[str]:
    return _REQUEST_ID_CTX.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    _REQUEST_ID_CTX.reset(token)


def get_plan_id() -> str:
    return _PLAN_ID_CTX.get()


def set_plan_id(plan_id: str) -> Token[str]:
    """Tag log lines emitted while a plan run is in progress."""
    return _PLAN_ID_CTX.set(str(plan_id or "").strip() or "-")


def reset_plan_id(token: Token[str]) -> None:
    _PLAN_ID_CTX.reset(token)
