from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from fastapi.encoders import jsonable_encoder
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from orgscope.domain.models import AuditLog
from orgscope.domain.scope import ScopeType
from orgscope.infra.db import get_engine
from orgscope.infra.tenant import get_request_id, set_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


def _to_nullable_string(value: Any, max_length: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:max_length]


@dataclass(frozen=True)
class AuditRequestMeta:
    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> AuditRequestMeta:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for and forwarded_for.strip():
            ip_address = forwarded_for.split(",")[0].strip()
        else:
            ip_address = request.client.host if request.client is not None else None
        request_id = getattr(request.state, "request_id", None) or get_request_id()
        return cls(
            request_id=_to_nullable_string(request_id, 80),
            ip_address=_to_nullable_string(ip_address, 64),
            user_agent=_to_nullable_string(request.headers.get("user-agent"), 255),
        )


def build_audit_log(
    *,
    tenant_id: int,
    actor_user_id: int | None,
    action: str,
    resource_type: str,
    resource_id: Any = None,
    target_user_id: int | None = None,
    scope_type: Any = None,
    scope_id: int | None = None,
    payload: dict[str, Any] | None = None,
    meta: AuditRequestMeta | None = None,
) -> AuditLog:
    normalized_action = _to_nullable_string(action, 120)
    normalized_resource_type = _to_nullable_string(resource_type, 80)
    if normalized_action is None or normalized_resource_type is None:
        raise ValueError("audit entries require action and resource_type")

    normalized_scope_type: str | None = None
    raw_scope_type = _to_nullable_string(scope_type, 32)
    if raw_scope_type is not None and raw_scope_type.upper() in ScopeType.__members__:
        normalized_scope_type = raw_scope_type.upper()

    request_meta = meta or AuditRequestMeta(request_id=get_request_id())
    return AuditLog(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        action=normalized_action,
        resource_type=normalized_resource_type,
        resource_id=_to_nullable_string(resource_id, 120),
        scope_type=normalized_scope_type,
        scope_id=scope_id if normalized_scope_type is not None else None,
        request_id=request_meta.request_id,
        ip_address=request_meta.ip_address,
        user_agent=request_meta.user_agent,
        payload=jsonable_encoder(payload or {}),
    )


def write_audit_log(session: Session, **entry: Any) -> AuditLog:
    """Stage an audit row in the caller's unit of work.

    The row commits or rolls back together with the mutation it describes.
    """
    log = build_audit_log(**entry)
    session.add(log)
    return log


def record_audit_event(**entry: Any) -> AuditLog:
    """Commit a stand-alone audit row, e.g. for a denied attempt."""
    log = build_audit_log(**entry)
    with Session(get_engine(), expire_on_commit=False) as session:
        session.add(log)
        session.commit()
        session.refresh(log)
    logger.info("audit event recorded action=%s resource=%s", log.action, log.resource_type)
    return log


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _to_nullable_string(request.headers.get(REQUEST_ID_HEADER), 80) or str(uuid4())
        request.state.request_id = request_id
        set_request_id(request_id)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
