from __future__ import annotations

from contextvars import ContextVar

tenant_id_ctx: ContextVar[int | None] = ContextVar("tenant_id", default=None)
user_id_ctx: ContextVar[int | None] = ContextVar("user_id", default=None)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_context(tenant_id: int | None, user_id: int | None) -> None:
    tenant_id_ctx.set(tenant_id)
    user_id_ctx.set(user_id)


def set_request_id(request_id: str | None) -> None:
    request_id_ctx.set(request_id)


def get_tenant_id() -> int | None:
    return tenant_id_ctx.get()


def get_user_id() -> int | None:
    return user_id_ctx.get()


def get_request_id() -> str | None:
    return request_id_ctx.get()
