from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from orgscope import main as app_main
from orgscope.domain.errors import ValidationError
from orgscope.domain.models import AuditLog, Tenant
from orgscope.domain.scope import ScopeContext, ScopeType
from orgscope.infra import db, redis_state
from orgscope.infra.audit import AuditRequestMeta, build_audit_log
from orgscope.services import audit_service, permission_gate
from orgscope.services.audit_service import AuditLogFilters, AuditLogService

FIXED_AT = datetime(2026, 1, 15, 12, 0, 0)


@pytest.fixture()
def audit_engine(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[object, None, None]:
    db_path = tmp_path / "audit_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(redis_state, "REDIS_URL", "")
    monkeypatch.setattr(redis_state, "_memory_versions", {})
    monkeypatch.setattr(permission_gate, "_catalog_cache", {})
    yield test_engine
    test_engine.dispose()


def _seed(engine: object, rows: list[dict[str, object]]) -> None:
    with Session(engine) as session:
        for row in rows:
            session.add(AuditLog(**row))
        session.commit()


def _row(tenant_id: int = 1, **overrides: object) -> dict[str, object]:
    base: dict[str, object] = {
        "tenant_id": tenant_id,
        "actor_user_id": 1,
        "action": "org.group_company.create",
        "resource_type": "group_company",
        "scope_type": "GROUP",
        "scope_id": 1,
        "payload": {},
        "created_at": FIXED_AT,
    }
    base.update(overrides)
    return base


TENANT_WIDE = ScopeContext(tenant_id=1, tenant_wide=True)


def test_pagination_is_stable_on_identical_timestamps(audit_engine) -> None:
    _seed(audit_engine, [_row(resource_id=str(index)) for index in range(7)])
    service = AuditLogService()

    seen: list[int] = []
    for page in (1, 2, 3):
        result = service.list_audit_logs(1, TENANT_WIDE, page=page, page_size=3)
        seen.extend(item.id for item in result.rows)
        assert result.total == 7
        assert result.total_pages == 3

    assert seen == sorted(seen, reverse=True)
    assert len(set(seen)) == 7


def test_newest_rows_come_first(audit_engine) -> None:
    _seed(
        audit_engine,
        [
            _row(action="old", created_at=FIXED_AT - timedelta(hours=1)),
            _row(action="new", created_at=FIXED_AT + timedelta(hours=1)),
            _row(action="mid"),
        ],
    )
    result = AuditLogService().list_audit_logs(1, TENANT_WIDE)
    assert [item.action for item in result.rows] == ["new", "mid", "old"]


def test_listing_is_tenant_partitioned(audit_engine) -> None:
    _seed(audit_engine, [_row(tenant_id=1), _row(tenant_id=2), _row(tenant_id=2)])
    result = AuditLogService().list_audit_logs(1, TENANT_WIDE)
    assert result.total == 1
    assert all(item.tenant_id == 1 for item in result.rows)


def test_rows_filtered_by_visibility(audit_engine) -> None:
    _seed(
        audit_engine,
        [
            _row(scope_type="GROUP", scope_id=1, action="g1"),
            _row(scope_type="GROUP", scope_id=2, action="g2"),
            _row(scope_type="TENANT", scope_id=1, action="tenant"),
            _row(scope_type="COUNTRY", scope_id=1, action="c1"),
        ],
    )
    service = AuditLogService()
    narrow = ScopeContext(tenant_id=1, groups=frozenset({1}))
    assert [item.action for item in service.list_audit_logs(1, narrow).rows] == ["g1"]
    assert service.list_audit_logs(1, ScopeContext(tenant_id=1)).total == 0
    assert service.list_audit_logs(1, TENANT_WIDE).total == 4


def test_filters_narrow_results(audit_engine) -> None:
    _seed(
        audit_engine,
        [
            _row(action="scopes.replace", resource_type="data_scope", target_user_id=5),
            _row(action="scopes.replace", resource_type="data_scope", target_user_id=6),
            _row(action="role.assign", resource_type="user_role", actor_user_id=2),
            _row(scope_type="GROUP", scope_id=3, created_at=FIXED_AT - timedelta(days=2)),
        ],
    )
    service = AuditLogService()

    def _total(**kwargs: object) -> int:
        return service.list_audit_logs(1, TENANT_WIDE, AuditLogFilters.build(**kwargs)).total

    assert _total(action="scopes.replace") == 2
    assert _total(target_user_id=5) == 1
    assert _total(actor_user_id=2) == 1
    assert _total(resource_type="user_role") == 1
    assert _total(scope_type="group", scope_id=3) == 1
    assert _total(created_from=FIXED_AT - timedelta(hours=1)) == 3
    assert _total(created_to=FIXED_AT - timedelta(days=1)) == 1


def test_scope_type_filter_requires_scope_id() -> None:
    with pytest.raises(ValidationError):
        AuditLogFilters.build(scope_type="GROUP")
    with pytest.raises(ValidationError):
        AuditLogFilters.build(scope_type="REGION", scope_id=1)
    with pytest.raises(ValidationError):
        AuditLogFilters.build(scope_id=0)
    with pytest.raises(ValidationError):
        AuditLogFilters.build(created_from=FIXED_AT, created_to=FIXED_AT - timedelta(seconds=1))


def test_page_size_is_clamped(audit_engine, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(audit_service, "AUDIT_PAGE_SIZE_MAX", 2)
    _seed(audit_engine, [_row() for _ in range(3)])
    result = AuditLogService().list_audit_logs(1, TENANT_WIDE, page_size=500)
    assert result.page_size == 2
    assert len(result.rows) == 2
    assert result.total_pages == 2


def test_invalid_page_is_rejected(audit_engine) -> None:
    with pytest.raises(ValidationError):
        AuditLogService().list_audit_logs(1, TENANT_WIDE, page=0)


def test_build_audit_log_normalizes_fields() -> None:
    log = build_audit_log(
        tenant_id=1,
        actor_user_id=2,
        action="  scopes.replace  ",
        resource_type="data_scope",
        resource_id=42,
        scope_type="region",
        scope_id=3,
        payload={"at": FIXED_AT},
        meta=AuditRequestMeta(request_id="req-1", ip_address="10.0.0.1", user_agent="pytest"),
    )
    assert log.action == "scopes.replace"
    assert log.resource_id == "42"
    assert log.scope_type is None
    assert log.scope_id is None
    assert log.request_id == "req-1"
    assert log.payload == {"at": FIXED_AT.isoformat()}

    tagged = build_audit_log(
        tenant_id=1,
        actor_user_id=None,
        action="org.group_company.create",
        resource_type="group_company",
        scope_type=ScopeType.GROUP,
        scope_id=9,
    )
    assert (tagged.scope_type, tagged.scope_id) == ("GROUP", 9)


def test_audit_endpoint_records_request_metadata(audit_engine) -> None:
    client = TestClient(app_main.app)
    tenant = client.post("/api/identity/tenants", json={"name": "tenant-a"})
    tenant_id = tenant.json()["id"]
    assert client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "username": "admin", "password": "admin-pass"},
    ).status_code == 201
    token = client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": "admin", "password": "admin-pass"},
    ).json()["access_token"]
    headers = {
        "Authorization": f"Bearer {token}",
        "X-Request-Id": "req-audit-1",
        "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
        "User-Agent": "audit-test-agent",
    }

    created = client.post("/api/org/group-companies", json={"code": "G1", "name": "Group 1"}, headers=headers)
    assert created.status_code == 201

    response = client.get(
        "/api/security/audit-logs",
        params={"action": "org.group_company.create", "page_size": 1000},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"page": 1, "page_size": 200, "total": 1, "total_pages": 1}
    row = body["rows"][0]
    assert row["request_id"] == "req-audit-1"
    assert row["ip_address"] == "203.0.113.7"
    assert row["user_agent"] == "audit-test-agent"
    assert (row["scope_type"], row["scope_id"]) == ("GROUP", created.json()["id"])


def test_audit_endpoint_rejects_scope_type_without_id(audit_engine) -> None:
    client = TestClient(app_main.app)
    with Session(audit_engine) as session:
        session.add(Tenant(name="tenant-a"))
        session.commit()
    assert client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": 1, "username": "admin", "password": "admin-pass"},
    ).status_code == 201
    token = client.post(
        "/api/identity/dev-login",
        json={"tenant_id": 1, "username": "admin", "password": "admin-pass"},
    ).json()["access_token"]

    response = client.get(
        "/api/security/audit-logs",
        params={"scope_type": "GROUP"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 400
