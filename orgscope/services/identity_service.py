from __future__ import annotations

import hashlib
import logging
import os

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from orgscope.domain.errors import AuthError, ConflictError, NotFoundError, StorageError
from orgscope.domain.models import (
    BootstrapAdminRequest,
    Country,
    Permission,
    Role,
    RoleCreate,
    RolePermission,
    Tenant,
    TenantCreate,
    User,
    UserCreate,
    UserRole,
)
from orgscope.domain.permissions import DEFAULT_PERMISSION_NAMES, PERM_WILDCARD
from orgscope.domain.scope import GrantSpec, ScopeType
from orgscope.infra.audit import AuditRequestMeta, write_audit_log
from orgscope.infra.db import get_engine
from orgscope.services.permission_gate import PermissionGate
from orgscope.services.scope_grant_service import ScopeGrantService

logger = logging.getLogger(__name__)

DEFAULT_COUNTRIES: tuple[tuple[str, str], ...] = (
    ("US", "United States"),
    ("TR", "Turkey"),
    ("DE", "Germany"),
    ("GB", "United Kingdom"),
)


class IdentityService:
    def __init__(
        self,
        permission_gate: PermissionGate | None = None,
        scope_grants: ScopeGrantService | None = None,
    ) -> None:
        self._gate = permission_gate or PermissionGate()
        self._scope_grants = scope_grants or ScopeGrantService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "orgscope-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _ensure_default_permissions(self, session: Session) -> list[Permission]:
        existing = session.exec(select(Permission)).all()
        by_name = {item.name: item for item in existing}
        created: list[Permission] = []
        for name in DEFAULT_PERMISSION_NAMES:
            if name in by_name:
                continue
            perm = Permission(name=name, description=f"default permission {name}")
            session.add(perm)
            created.append(perm)
        if created:
            session.commit()
            for perm in created:
                session.refresh(perm)
        return list(session.exec(select(Permission)).all())

    def _ensure_default_countries(self, session: Session) -> None:
        existing = set(session.exec(select(Country.iso2)).all())
        missing = [Country(iso2=iso2, name=name) for iso2, name in DEFAULT_COUNTRIES if iso2 not in existing]
        if missing:
            session.add_all(missing)
            session.commit()

    def _get_scoped_user(self, session: Session, tenant_id: int, user_id: int) -> User | None:
        statement = select(User).where(User.tenant_id == tenant_id).where(User.id == user_id)
        return session.exec(statement).first()

    def _get_scoped_role(self, session: Session, tenant_id: int, role_id: int) -> Role | None:
        statement = select(Role).where(Role.tenant_id == tenant_id).where(Role.id == role_id)
        return session.exec(statement).first()

    def create_tenant(self, payload: TenantCreate) -> Tenant:
        with self._session() as session:
            tenant = Tenant(name=payload.name)
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant name already exists") from exc
            session.refresh(tenant)
            return tenant

    def get_tenant(self, tenant_id: int) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found")
            return tenant

    def create_user(self, tenant_id: int, payload: UserCreate) -> User:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            user = User(
                tenant_id=tenant_id,
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=payload.is_active,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists in tenant") from exc
            session.refresh(user)
            return user

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        """Create the tenant's first admin with a wildcard role and a TENANT grant.

        Reference data is seeded first; the role, user, membership, grant and
        audit row then commit together, so a failed bootstrap can be retried.
        """
        with self._session() as session:
            tenant = session.get(Tenant, payload.tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found")
            tenant_users = session.exec(select(User).where(User.tenant_id == payload.tenant_id)).all()
            if tenant_users:
                raise ConflictError("tenant already initialized")

            all_permissions = self._ensure_default_permissions(session)
            self._ensure_default_countries(session)

            try:
                admin_role = Role(
                    tenant_id=payload.tenant_id,
                    name="admin",
                    description="bootstrap admin role",
                )
                admin_user = User(
                    tenant_id=payload.tenant_id,
                    username=payload.username,
                    password_hash=self._hash_password(payload.password),
                    is_active=True,
                )
                session.add(admin_role)
                session.add(admin_user)
                session.flush()

                for permission in all_permissions:
                    if permission.name == PERM_WILDCARD:
                        session.add(RolePermission(role_id=admin_role.id, permission_id=permission.id))
                session.add(UserRole(tenant_id=payload.tenant_id, user_id=admin_user.id, role_id=admin_role.id))
                self._scope_grants.stage_replace(
                    session,
                    payload.tenant_id,
                    admin_user.id,
                    [GrantSpec(scope_type=ScopeType.TENANT, scope_id=payload.tenant_id)],
                    actor_user_id=admin_user.id,
                )
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant already initialized") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("bootstrap failed for tenant %s", payload.tenant_id)
                raise StorageError("tenant bootstrap failed; nothing was created") from exc
            session.refresh(admin_user)

        self._gate.invalidate_tenant(payload.tenant_id)
        logger.info("tenant %s bootstrapped with admin user %s", payload.tenant_id, admin_user.id)
        return admin_user

    def list_users(self, tenant_id: int) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).where(User.tenant_id == tenant_id)).all())

    def get_user(self, tenant_id: int, user_id: int) -> User:
        with self._session() as session:
            user = self._get_scoped_user(session, tenant_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def create_role(self, tenant_id: int, payload: RoleCreate) -> Role:
        with self._session() as session:
            role = Role(tenant_id=tenant_id, name=payload.name, description=payload.description)
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists in tenant") from exc
            session.refresh(role)
            return role

    def list_roles(self, tenant_id: int) -> list[Role]:
        with self._session() as session:
            return list(session.exec(select(Role).where(Role.tenant_id == tenant_id)).all())

    def list_permissions(self) -> list[Permission]:
        with self._session() as session:
            return list(session.exec(select(Permission).order_by(Permission.name)).all())

    def bind_user_role(
        self,
        tenant_id: int,
        user_id: int,
        role_id: int,
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> None:
        with self._session() as session:
            user = self._get_scoped_user(session, tenant_id, user_id)
            role = self._get_scoped_role(session, tenant_id, role_id)
            if user is None or role is None:
                raise NotFoundError("user or role not found")
            if session.get(UserRole, (tenant_id, user_id, role_id)) is not None:
                return
            session.add(UserRole(tenant_id=tenant_id, user_id=user_id, role_id=role_id))
            write_audit_log(
                session,
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                target_user_id=user_id,
                action="role.assign",
                resource_type="user_role",
                resource_id=role_id,
                scope_type=ScopeType.TENANT,
                scope_id=tenant_id,
                payload={"user_id": user_id, "role_id": role_id, "role_name": role.name},
                meta=meta,
            )
            session.commit()

    def unbind_user_role(
        self,
        tenant_id: int,
        user_id: int,
        role_id: int,
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> None:
        with self._session() as session:
            user = self._get_scoped_user(session, tenant_id, user_id)
            role = self._get_scoped_role(session, tenant_id, role_id)
            if user is None or role is None:
                raise NotFoundError("user or role not found")
            user_role = session.get(UserRole, (tenant_id, user_id, role_id))
            if user_role is None:
                return
            session.delete(user_role)
            write_audit_log(
                session,
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                target_user_id=user_id,
                action="role.unassign",
                resource_type="user_role",
                resource_id=role_id,
                scope_type=ScopeType.TENANT,
                scope_id=tenant_id,
                payload={"user_id": user_id, "role_id": role_id, "role_name": role.name},
                meta=meta,
            )
            session.commit()

    def bind_role_permission(
        self,
        tenant_id: int,
        role_id: int,
        permission_id: int,
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> None:
        with self._session() as session:
            role = self._get_scoped_role(session, tenant_id, role_id)
            permission = session.get(Permission, permission_id)
            if role is None or permission is None:
                raise NotFoundError("role or permission not found")
            if session.get(RolePermission, (role_id, permission_id)) is not None:
                return
            session.add(RolePermission(role_id=role_id, permission_id=permission_id))
            write_audit_log(
                session,
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="role.permission.grant",
                resource_type="role_permission",
                resource_id=role_id,
                scope_type=ScopeType.TENANT,
                scope_id=tenant_id,
                payload={"role_id": role_id, "permission": permission.name},
                meta=meta,
            )
            session.commit()
        self._gate.invalidate_tenant(tenant_id)

    def unbind_role_permission(
        self,
        tenant_id: int,
        role_id: int,
        permission_id: int,
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> None:
        with self._session() as session:
            role = self._get_scoped_role(session, tenant_id, role_id)
            permission = session.get(Permission, permission_id)
            if role is None or permission is None:
                raise NotFoundError("role or permission not found")
            role_permission = session.get(RolePermission, (role_id, permission_id))
            if role_permission is None:
                return
            session.delete(role_permission)
            write_audit_log(
                session,
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="role.permission.revoke",
                resource_type="role_permission",
                resource_id=role_id,
                scope_type=ScopeType.TENANT,
                scope_id=tenant_id,
                payload={"role_id": role_id, "permission": permission.name},
                meta=meta,
            )
            session.commit()
        self._gate.invalidate_tenant(tenant_id)

    def dev_login(self, tenant_id: int, username: str, password: str) -> tuple[User, list[str]]:
        with self._session() as session:
            statement = select(User).where(User.tenant_id == tenant_id).where(User.username == username)
            user = session.exec(statement).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")

        permissions = sorted(self._gate.permissions_for_user(tenant_id, user.id))
        return user, permissions
