from __future__ import annotations

import logging
import os

from orgscope.infra.tenant import get_request_id, get_tenant_id, get_user_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [req=%(request_id)s tenant=%(tenant_id)s user=%(user_id)s] %(message)s"


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        record.tenant_id = get_tenant_id() or "-"
        record.user_id = get_user_id() or "-"
        return True


def configure_logging(level: str | None = None) -> None:
    """Attach a request-aware handler to the ``orgscope`` logger tree.

    Uvicorn configures its own handlers; this only covers our package so
    records carry the request id and tenant of the call that produced them.
    """
    logger = logging.getLogger("orgscope")
    logger.setLevel((level or LOG_LEVEL).upper())
    if any(isinstance(item, logging.StreamHandler) for item in logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
