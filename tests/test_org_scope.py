from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from orgscope import main as app_main
from orgscope.domain.permissions import (
    PERM_AUDIT_READ,
    PERM_ORG_GROUP_COMPANY_UPSERT,
    PERM_ORG_LEGAL_ENTITY_UPSERT,
    PERM_ORG_OPERATING_UNIT_UPSERT,
    PERM_ORG_TREE_READ,
)
from orgscope.infra import db, redis_state
from orgscope.services import permission_gate

ORG_PERMISSIONS = [
    PERM_ORG_TREE_READ,
    PERM_ORG_GROUP_COMPANY_UPSERT,
    PERM_ORG_LEGAL_ENTITY_UPSERT,
    PERM_ORG_OPERATING_UNIT_UPSERT,
    PERM_AUDIT_READ,
]


@pytest.fixture()
def org_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "org_test.db"
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
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _create_tenant(client: TestClient, name: str) -> int:
    response = client.post("/api/identity/tenants", json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


def _bootstrap_admin(client: TestClient, tenant_id: int, username: str, password: str) -> None:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "username": username, "password": password},
    )
    assert response.status_code == 201


def _login(client: TestClient, tenant_id: int, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": username, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def _create_scoped_user(
    client: TestClient,
    admin_token: str,
    tenant_id: int,
    username: str,
    scopes: list[dict[str, Any]],
) -> str:
    """Create a user holding every org permission, narrowed to ``scopes``."""
    permissions = client.get("/api/identity/permissions", headers=_auth_header(admin_token)).json()
    permission_ids = {item["name"]: item["id"] for item in permissions}

    user_id = client.post(
        "/api/identity/users",
        json={"username": username, "password": f"{username}-pass"},
        headers=_auth_header(admin_token),
    ).json()["id"]
    role_resp = client.post(
        "/api/identity/roles",
        json={"name": f"{username}-role"},
        headers=_auth_header(admin_token),
    )
    assert role_resp.status_code == 201
    role_id = role_resp.json()["id"]
    for name in ORG_PERMISSIONS:
        bound = client.post(
            f"/api/identity/roles/{role_id}/permissions/{permission_ids[name]}",
            headers=_auth_header(admin_token),
        )
        assert bound.status_code == 204
    assert client.post(
        f"/api/identity/users/{user_id}/roles/{role_id}",
        headers=_auth_header(admin_token),
    ).status_code == 204

    replaced = client.put(
        f"/api/security/data-scopes/users/{user_id}/replace",
        json={"scopes": scopes},
        headers=_auth_header(admin_token),
    )
    assert replaced.status_code == 200
    return _login(client, tenant_id, username, f"{username}-pass")


@pytest.fixture()
def org_tree(org_client: TestClient) -> dict[str, Any]:
    tenant_id = _create_tenant(org_client, "tenant-a")
    _bootstrap_admin(org_client, tenant_id, "admin", "admin-pass")
    token = _login(org_client, tenant_id, "admin", "admin-pass")

    countries = org_client.get("/api/org/countries", headers=_auth_header(token))
    assert countries.status_code == 200
    country_ids = {item["iso2"]: item["id"] for item in countries.json()}

    groups: dict[str, int] = {}
    for code in ("G1", "G2"):
        response = org_client.post(
            "/api/org/group-companies",
            json={"code": code, "name": f"Group {code}"},
            headers=_auth_header(token),
        )
        assert response.status_code == 201
        groups[code] = response.json()["id"]

    entity = org_client.post(
        "/api/org/legal-entities",
        json={"group_company_id": groups["G1"], "country_id": country_ids["US"], "code": "LE1", "name": "LE one"},
        headers=_auth_header(token),
    )
    assert entity.status_code == 201
    le1 = entity.json()["id"]

    units: dict[str, int] = {}
    for code in ("OU1", "OU2"):
        response = org_client.post(
            "/api/org/operating-units",
            json={"legal_entity_id": le1, "code": code, "name": f"Unit {code}"},
            headers=_auth_header(token),
        )
        assert response.status_code == 201
        units[code] = response.json()["id"]

    return {
        "tenant_id": tenant_id,
        "token": token,
        "countries": country_ids,
        "groups": groups,
        "le1": le1,
        "units": units,
    }


def test_write_conjunction_on_legal_entity(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    groups = org_tree["groups"]
    countries = org_tree["countries"]
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "regional",
        [
            {"scope_type": "GROUP", "scope_id": groups["G1"]},
            {"scope_type": "COUNTRY", "scope_id": countries["US"]},
        ],
    )

    def _create(group_id: int, country_id: int, code: str) -> int:
        return org_client.post(
            "/api/org/legal-entities",
            json={"group_company_id": group_id, "country_id": country_id, "code": code, "name": code},
            headers=_auth_header(token),
        ).status_code

    assert _create(groups["G1"], countries["US"], "LE-US") == 201
    assert _create(groups["G2"], countries["TR"], "LE-TR") == 403
    assert _create(groups["G1"], countries["TR"], "LE-MIX") == 403

    denied = org_client.get(
        "/api/security/audit-logs",
        params={"action": "org.legal_entity.create.denied"},
        headers=_auth_header(org_tree["token"]),
    )
    assert denied.status_code == 200
    assert denied.json()["pagination"]["total"] == 2
    assert denied.json()["rows"][0]["payload"]["reason"] == "scope"


def test_group_company_creation_needs_tenant_wide_scope(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "regional",
        [{"scope_type": "GROUP", "scope_id": org_tree["groups"]["G1"]}],
    )
    response = org_client.post(
        "/api/org/group-companies",
        json={"code": "G3", "name": "Group 3"},
        headers=_auth_header(token),
    )
    assert response.status_code == 403


def test_user_without_scopes_sees_nothing(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    token = _create_scoped_user(org_client, org_tree["token"], org_tree["tenant_id"], "nobody", [])

    for path in ("/api/org/group-companies", "/api/org/legal-entities", "/api/org/operating-units", "/api/org/countries"):
        response = org_client.get(path, headers=_auth_header(token))
        assert response.status_code == 200
        assert response.json() == []

    response = org_client.post(
        "/api/org/operating-units",
        json={"legal_entity_id": org_tree["le1"], "code": "OU9", "name": "Unit 9"},
        headers=_auth_header(token),
    )
    assert response.status_code == 403


def test_leaf_grant_sees_unit_but_cannot_filter_parent(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    ou1 = org_tree["units"]["OU1"]
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "leaf",
        [{"scope_type": "OPERATING_UNIT", "scope_id": ou1}],
    )

    listing = org_client.get("/api/org/operating-units", headers=_auth_header(token))
    assert listing.status_code == 200
    assert [item["id"] for item in listing.json()] == [ou1]

    filtered = org_client.get(
        "/api/org/operating-units",
        params={"legal_entity_id": org_tree["le1"]},
        headers=_auth_header(token),
    )
    assert filtered.status_code == 403

    entities = org_client.get("/api/org/legal-entities", headers=_auth_header(token))
    assert entities.json() == []


def test_group_grant_can_filter_descendants(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "group-reader",
        [{"scope_type": "GROUP", "scope_id": org_tree["groups"]["G1"]}],
    )

    filtered = org_client.get(
        "/api/org/operating-units",
        params={"legal_entity_id": org_tree["le1"]},
        headers=_auth_header(token),
    )
    assert filtered.status_code == 200
    assert sorted(item["id"] for item in filtered.json()) == sorted(org_tree["units"].values())

    by_group = org_client.get(
        "/api/org/legal-entities",
        params={"group_company_id": org_tree["groups"]["G1"]},
        headers=_auth_header(token),
    )
    assert by_group.status_code == 200
    assert [item["id"] for item in by_group.json()] == [org_tree["le1"]]

    other_group = org_client.get(
        "/api/org/legal-entities",
        params={"group_company_id": org_tree["groups"]["G2"]},
        headers=_auth_header(token),
    )
    assert other_group.status_code == 403

    groups = org_client.get("/api/org/group-companies", headers=_auth_header(token))
    assert [item["code"] for item in groups.json()] == ["G1"]


def test_filter_on_unknown_legal_entity_is_not_found(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    response = org_client.get(
        "/api/org/operating-units",
        params={"legal_entity_id": 9999},
        headers=_auth_header(org_tree["token"]),
    )
    assert response.status_code == 404


def test_tenant_wide_admin_sees_whole_tree(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    token = org_tree["token"]
    groups = org_client.get("/api/org/group-companies", headers=_auth_header(token))
    assert [item["code"] for item in groups.json()] == ["G1", "G2"]
    units = org_client.get(
        "/api/org/operating-units",
        params={"legal_entity_id": org_tree["le1"]},
        headers=_auth_header(token),
    )
    assert len(units.json()) == 2
    countries = org_client.get("/api/org/countries", headers=_auth_header(token))
    assert {item["iso2"] for item in countries.json()} == {"US", "TR", "DE", "GB"}


def test_duplicate_group_code_conflicts(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    response = org_client.post(
        "/api/org/group-companies",
        json={"code": "G1", "name": "Again"},
        headers=_auth_header(org_tree["token"]),
    )
    assert response.status_code == 409


def test_legal_entity_with_unknown_group_is_not_found(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    response = org_client.post(
        "/api/org/legal-entities",
        json={
            "group_company_id": 9999,
            "country_id": org_tree["countries"]["US"],
            "code": "LE-X",
            "name": "Unknown group",
        },
        headers=_auth_header(org_tree["token"]),
    )
    assert response.status_code == 404


def test_org_tree_is_tenant_partitioned(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    tenant_b = _create_tenant(org_client, "tenant-b")
    _bootstrap_admin(org_client, tenant_b, "admin-b", "pass-b")
    token_b = _login(org_client, tenant_b, "admin-b", "pass-b")

    groups = org_client.get("/api/org/group-companies", headers=_auth_header(token_b))
    assert groups.json() == []
    response = org_client.post(
        "/api/org/operating-units",
        json={"legal_entity_id": org_tree["le1"], "code": "OU-B", "name": "Cross tenant"},
        headers=_auth_header(token_b),
    )
    assert response.status_code == 404


def _user_id(client: TestClient, admin_token: str, username: str) -> int:
    users = client.get("/api/identity/users", headers=_auth_header(admin_token)).json()
    return next(item["id"] for item in users if item["username"] == username)


def _create_unit(client: TestClient, token: str, legal_entity_id: int, code: str) -> int:
    return client.post(
        "/api/org/operating-units",
        json={"legal_entity_id": legal_entity_id, "code": code, "name": f"Unit {code}"},
        headers=_auth_header(token),
    ).status_code


def test_legal_entity_deny_hides_entity_under_group_allow(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    le1 = org_tree["le1"]
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "group-minus-le",
        [
            {"scope_type": "GROUP", "scope_id": org_tree["groups"]["G1"]},
            {"scope_type": "LEGAL_ENTITY", "scope_id": le1, "effect": "DENY"},
        ],
    )

    entities = org_client.get("/api/org/legal-entities", headers=_auth_header(token))
    assert entities.status_code == 200
    assert entities.json() == []

    units = org_client.get("/api/org/operating-units", headers=_auth_header(token))
    assert units.json() == []

    filtered = org_client.get(
        "/api/org/operating-units",
        params={"legal_entity_id": le1},
        headers=_auth_header(token),
    )
    assert filtered.status_code == 403

    assert _create_unit(org_client, token, le1, "OU9") == 403

    groups = org_client.get("/api/org/group-companies", headers=_auth_header(token))
    assert [item["code"] for item in groups.json()] == ["G1"]


def test_unit_deny_hides_unit_under_legal_entity_allow(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    units = org_tree["units"]
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "le-minus-unit",
        [
            {"scope_type": "LEGAL_ENTITY", "scope_id": org_tree["le1"]},
            {"scope_type": "OPERATING_UNIT", "scope_id": units["OU1"], "effect": "DENY"},
        ],
    )

    listing = org_client.get("/api/org/operating-units", headers=_auth_header(token))
    assert [item["id"] for item in listing.json()] == [units["OU2"]]

    filtered = org_client.get(
        "/api/org/operating-units",
        params={"legal_entity_id": org_tree["le1"]},
        headers=_auth_header(token),
    )
    assert filtered.status_code == 200
    assert [item["id"] for item in filtered.json()] == [units["OU2"]]


def test_deny_applies_to_tenant_wide_user(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "tenant-minus-group",
        [
            {"scope_type": "TENANT", "scope_id": org_tree["tenant_id"]},
            {"scope_type": "GROUP", "scope_id": org_tree["groups"]["G1"], "effect": "DENY"},
        ],
    )

    groups = org_client.get("/api/org/group-companies", headers=_auth_header(token))
    assert [item["code"] for item in groups.json()] == ["G2"]
    assert org_client.get("/api/org/legal-entities", headers=_auth_header(token)).json() == []
    assert org_client.get("/api/org/operating-units", headers=_auth_header(token)).json() == []
    assert _create_unit(org_client, token, org_tree["le1"], "OU9") == 403


def test_group_grant_can_write_below_its_legal_entities(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    token = _create_scoped_user(
        org_client,
        org_tree["token"],
        org_tree["tenant_id"],
        "group-writer",
        [{"scope_type": "GROUP", "scope_id": org_tree["groups"]["G1"]}],
    )

    assert _create_unit(org_client, token, org_tree["le1"], "OU3") == 201

    listing = org_client.get("/api/org/operating-units", headers=_auth_header(token))
    assert len(listing.json()) == 3


def test_replace_narrows_write_authority(org_client: TestClient, org_tree: dict[str, Any]) -> None:
    admin_token = org_tree["token"]
    groups = org_tree["groups"]
    countries = org_tree["countries"]
    le2 = org_client.post(
        "/api/org/legal-entities",
        json={"group_company_id": groups["G2"], "country_id": countries["TR"], "code": "LE2", "name": "LE two"},
        headers=_auth_header(admin_token),
    ).json()["id"]

    token = _create_scoped_user(
        org_client,
        admin_token,
        org_tree["tenant_id"],
        "narrowed",
        [
            {"scope_type": "GROUP", "scope_id": groups["G1"]},
            {"scope_type": "COUNTRY", "scope_id": countries["US"]},
        ],
    )

    def _create_entity(code: str) -> int:
        return org_client.post(
            "/api/org/legal-entities",
            json={"group_company_id": groups["G1"], "country_id": countries["US"], "code": code, "name": code},
            headers=_auth_header(token),
        ).status_code

    assert _create_entity("LE-WIDE") == 201

    replaced = org_client.put(
        f"/api/security/data-scopes/users/{_user_id(org_client, admin_token, 'narrowed')}/replace",
        json={"scopes": [{"scope_type": "LEGAL_ENTITY", "scope_id": org_tree["le1"]}]},
        headers=_auth_header(admin_token),
    )
    assert replaced.status_code == 200

    assert _create_unit(org_client, token, org_tree["le1"], "OU-LE1") == 201
    assert _create_unit(org_client, token, le2, "OU-LE2") == 403
    assert _create_entity("LE-NARROW") == 403
