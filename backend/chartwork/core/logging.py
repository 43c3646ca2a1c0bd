from __future__ import annotations

import logging
import os

from .request_context import get_plan_id, get_request_id

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s plan=%(plan_id)s] %(name)s: %(message)s"


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.plan_id = get_plan_id()
        return True


def configure_logging(level: str | None = None) -> None:
    name = str(level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
    context_filter = _ContextFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(context_filter)
    # httpx logs every request at INFO; publisher and remote editor calls are too chatty for that.
    logging.getLogger("httpx").setLevel(logging.WARNING)
