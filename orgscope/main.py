from __future__ import annotations

from fastapi import FastAPI, HTTPException

from orgscope.api.routers import identity, org, security
from orgscope.infra.audit import RequestContextMiddleware
from orgscope.infra.db import check_db_ready
from orgscope.infra.redis_state import check_redis_ready, redis_enabled
from orgscope.logging_config import configure_logging

configure_logging()

app = FastAPI(
    title="orgscope",
    description="Multi-tenant RBAC and organizational data-scope authorization service.",
    version="0.1.0",
)

app.add_middleware(RequestContextMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(security.router, prefix="/api/security", tags=["security"])
app.include_router(org.router, prefix="/api/org", tags=["org"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    checks = {"db": "ok" if check_db_ready() else "fail"}
    if redis_enabled():
        checks["redis"] = "ok" if check_redis_ready() else "fail"
    if any(value != "ok" for value in checks.values()):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
