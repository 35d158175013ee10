from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from orgscope.domain.scope import ScopeEffect, ScopeType


def now_utc() -> datetime:
    return datetime.now(UTC)


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
        UniqueConstraint("tenant_id", "id", name="uq_users_tenant_id_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    username: str = Field(index=True)
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
        UniqueConstraint("tenant_id", "id", name="uq_roles_tenant_id_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "user_id"],
            ["users.tenant_id", "users.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["tenant_id", "role_id"],
            ["roles.tenant_id", "roles.id"],
            ondelete="CASCADE",
        ),
        Index("ix_user_roles_tenant_user", "tenant_id", "user_id"),
        Index("ix_user_roles_tenant_role", "tenant_id", "role_id"),
    )

    tenant_id: int = Field(primary_key=True)
    user_id: int = Field(primary_key=True)
    role_id: int = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"

    role_id: int = Field(foreign_key="roles.id", primary_key=True, ondelete="CASCADE")
    permission_id: int = Field(foreign_key="permissions.id", primary_key=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class GroupCompany(SQLModel, table=True):
    __tablename__ = "group_companies"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_group_companies_tenant_code"),
        UniqueConstraint("tenant_id", "id", name="uq_group_companies_tenant_id_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    code: str = Field(index=True)
    name: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Country(SQLModel, table=True):
    __tablename__ = "countries"

    id: int | None = Field(default=None, primary_key=True)
    iso2: str = Field(index=True, unique=True)
    name: str


class LegalEntity(SQLModel, table=True):
    __tablename__ = "legal_entities"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "group_company_id"],
            ["group_companies.tenant_id", "group_companies.id"],
            ondelete="RESTRICT",
        ),
        UniqueConstraint("tenant_id", "code", name="uq_legal_entities_tenant_code"),
        UniqueConstraint("tenant_id", "id", name="uq_legal_entities_tenant_id_id"),
        Index("ix_legal_entities_tenant_group", "tenant_id", "group_company_id"),
        Index("ix_legal_entities_tenant_country", "tenant_id", "country_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    group_company_id: int
    country_id: int = Field(foreign_key="countries.id")
    code: str = Field(index=True)
    name: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class OperatingUnit(SQLModel, table=True):
    __tablename__ = "operating_units"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "legal_entity_id"],
            ["legal_entities.tenant_id", "legal_entities.id"],
            ondelete="RESTRICT",
        ),
        UniqueConstraint("tenant_id", "code", name="uq_operating_units_tenant_code"),
        Index("ix_operating_units_tenant_legal_entity", "tenant_id", "legal_entity_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    legal_entity_id: int
    code: str = Field(index=True)
    name: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ScopeGrant(SQLModel, table=True):
    __tablename__ = "data_scopes"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "user_id"],
            ["users.tenant_id", "users.id"],
            ondelete="CASCADE",
        ),
        UniqueConstraint(
            "tenant_id",
            "user_id",
            "scope_type",
            "scope_id",
            name="uq_data_scopes_tenant_user_scope",
        ),
        Index("ix_data_scopes_tenant_user", "tenant_id", "user_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(index=True)
    user_id: int
    scope_type: ScopeType
    scope_id: int
    effect: ScopeEffect = Field(default=ScopeEffect.ALLOW)
    created_by_user_id: int | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AuditLog(SQLModel, table=True):
    __tablename__ = "rbac_audit_logs"
    __table_args__ = (
        Index("ix_rbac_audit_logs_tenant_created", "tenant_id", "created_at", "id"),
        Index("ix_rbac_audit_logs_tenant_scope", "tenant_id", "scope_type", "scope_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    tenant_id: int = Field(index=True)
    actor_user_id: int | None = Field(default=None, index=True)
    target_user_id: int | None = Field(default=None, index=True)
    action: str = Field(index=True, max_length=120)
    resource_type: str = Field(max_length=80)
    resource_id: str | None = Field(default=None, max_length=120)
    scope_type: str | None = Field(default=None, max_length=32)
    scope_id: int | None = None
    request_id: str | None = Field(default=None, max_length=80)
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=255)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TenantCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=100)


class TenantRead(ORMReadModel):
    id: int
    name: str
    created_at: datetime


class UserCreate(BaseModel):
    username: str = PydanticField(min_length=1, max_length=100)
    password: str = PydanticField(min_length=1, max_length=128)
    is_active: bool = True


class UserRead(ORMReadModel):
    id: int
    tenant_id: int
    username: str
    is_active: bool
    created_at: datetime


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=100)
    description: str | None = None


class RoleRead(ORMReadModel):
    id: int
    tenant_id: int
    name: str
    description: str | None
    created_at: datetime


class PermissionRead(ORMReadModel):
    id: int
    name: str
    description: str | None
    created_at: datetime


class DevLoginRequest(BaseModel):
    tenant_id: int
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    tenant_id: int
    username: str = PydanticField(min_length=1, max_length=100)
    password: str = PydanticField(min_length=1, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str] = PydanticField(default_factory=list)


class ScopeGrantItem(BaseModel):
    scope_type: str
    scope_id: Any
    effect: str = ScopeEffect.ALLOW.value


class ScopeReplaceRequest(BaseModel):
    scopes: list[ScopeGrantItem]


class ScopeGrantRead(ORMReadModel):
    id: int
    tenant_id: int
    user_id: int
    scope_type: ScopeType
    scope_id: int
    effect: ScopeEffect
    created_by_user_id: int | None
    created_at: datetime


class ScopeReplaceRead(BaseModel):
    user_id: int
    scope_count: int
    scopes: list[ScopeGrantRead]


class ScopeContextRead(BaseModel):
    user_id: int
    tenant_wide: bool
    groups: list[int]
    countries: list[int]
    legal_entities: list[int]
    operating_units: list[int]


class AuditLogRead(ORMReadModel):
    id: int
    tenant_id: int
    actor_user_id: int | None
    target_user_id: int | None
    action: str
    resource_type: str
    resource_id: str | None
    scope_type: str | None
    scope_id: int | None
    request_id: str | None
    ip_address: str | None
    user_agent: str | None
    payload: dict[str, Any]
    created_at: datetime


class PaginationRead(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class AuditLogPageRead(BaseModel):
    rows: list[AuditLogRead]
    pagination: PaginationRead


class GroupCompanyCreate(BaseModel):
    code: str = PydanticField(min_length=1, max_length=60)
    name: str = PydanticField(min_length=1, max_length=255)


class GroupCompanyRead(ORMReadModel):
    id: int
    tenant_id: int
    code: str
    name: str
    created_at: datetime


class CountryRead(ORMReadModel):
    id: int
    iso2: str
    name: str


class LegalEntityCreate(BaseModel):
    group_company_id: int
    country_id: int
    code: str = PydanticField(min_length=1, max_length=60)
    name: str = PydanticField(min_length=1, max_length=255)


class LegalEntityRead(ORMReadModel):
    id: int
    tenant_id: int
    group_company_id: int
    country_id: int
    code: str
    name: str
    created_at: datetime


class OperatingUnitCreate(BaseModel):
    legal_entity_id: int
    code: str = PydanticField(min_length=1, max_length=60)
    name: str = PydanticField(min_length=1, max_length=255)


class OperatingUnitRead(ORMReadModel):
    id: int
    tenant_id: int
    legal_entity_id: int
    code: str
    name: str
    created_at: datetime
