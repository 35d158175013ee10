from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass

from sqlmodel import Session, col, select

from orgscope.domain.models import Permission, Role, RolePermission, User, UserRole
from orgscope.domain.permissions import has_permission
from orgscope.infra.db import get_engine
from orgscope.infra.redis_state import bump_tenant_version, get_tenant_version

logger = logging.getLogger(__name__)

RBAC_CACHE_TTL_SECONDS = float(os.getenv("RBAC_CACHE_TTL_SECONDS", "30"))


@dataclass(frozen=True)
class _CatalogEntry:
    version: int
    loaded_at: float
    role_permissions: dict[int, frozenset[str]]


_catalog_cache: dict[int, _CatalogEntry] = {}
_catalog_lock = threading.Lock()


class PermissionGate:
    """Role based capability check, evaluated before any scope logic.

    The role -> permission map of a tenant is a versioned configuration: it is
    loaded once per tenant version and reused until the version is bumped or
    the entry expires. Role membership of the user is read on every check.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _load_role_permissions(self, session: Session, tenant_id: int) -> dict[int, frozenset[str]]:
        rows = session.exec(
            select(RolePermission.role_id, Permission.name)
            .join(Permission, col(Permission.id) == col(RolePermission.permission_id))
            .join(Role, col(Role.id) == col(RolePermission.role_id))
            .where(Role.tenant_id == tenant_id)
        ).all()
        grouped: dict[int, set[str]] = {}
        for role_id, permission_name in rows:
            grouped.setdefault(role_id, set()).add(permission_name)
        return {role_id: frozenset(names) for role_id, names in grouped.items()}

    def _role_permissions(self, session: Session, tenant_id: int) -> dict[int, frozenset[str]]:
        version = get_tenant_version(tenant_id)
        now = time.monotonic()
        with _catalog_lock:
            entry = _catalog_cache.get(tenant_id)
        if entry is not None and entry.version == version and now - entry.loaded_at < RBAC_CACHE_TTL_SECONDS:
            return entry.role_permissions

        role_permissions = self._load_role_permissions(session, tenant_id)
        with _catalog_lock:
            _catalog_cache[tenant_id] = _CatalogEntry(
                version=version,
                loaded_at=now,
                role_permissions=role_permissions,
            )
        return role_permissions

    def invalidate_tenant(self, tenant_id: int) -> None:
        with _catalog_lock:
            _catalog_cache.pop(tenant_id, None)
        bump_tenant_version(tenant_id)

    def permissions_for_user(self, tenant_id: int, user_id: int) -> frozenset[str]:
        with self._session() as session:
            user = session.exec(
                select(User).where(User.tenant_id == tenant_id).where(User.id == user_id)
            ).first()
            if user is None or not user.is_active:
                return frozenset()
            role_ids = list(
                session.exec(
                    select(UserRole.role_id)
                    .where(UserRole.tenant_id == tenant_id)
                    .where(UserRole.user_id == user_id)
                ).all()
            )
            if not role_ids:
                return frozenset()
            role_permissions = self._role_permissions(session, tenant_id)
        granted: set[str] = set()
        for role_id in role_ids:
            granted.update(role_permissions.get(role_id, frozenset()))
        return frozenset(granted)

    def has_permission(self, tenant_id: int, user_id: int, permission_code: str) -> bool:
        allowed = has_permission(self.permissions_for_user(tenant_id, user_id), permission_code)
        if not allowed:
            logger.info("permission %s denied for user %s in tenant %s", permission_code, user_id, tenant_id)
        return allowed
