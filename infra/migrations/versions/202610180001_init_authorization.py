"""identity, org hierarchy, data scopes and audit tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None

SCOPE_TYPES = ("TENANT", "GROUP", "COUNTRY", "LEGAL_ENTITY", "OPERATING_UNIT")
SCOPE_EFFECTS = ("ALLOW", "DENY")


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_name", "tenants", ["name"], unique=True)
    op.create_index("ix_tenants_created_at", "tenants", ["created_at"])

    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_permissions_name", "permissions", ["name"], unique=True)
    op.create_index("ix_permissions_created_at", "permissions", ["created_at"])

    op.create_table(
        "countries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("iso2", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_countries_iso2", "countries", ["iso2"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_users_tenant_id_id"),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])
    op.create_index("ix_users_username", "users", ["username"])
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_roles_tenant_id_id"),
    )
    op.create_index("ix_roles_tenant_id", "roles", ["tenant_id"])
    op.create_index("ix_roles_name", "roles", ["name"])
    op.create_index("ix_roles_created_at", "roles", ["created_at"])

    op.create_table(
        "user_roles",
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant_id", "user_id"],
            ["users.tenant_id", "users.id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["tenant_id", "role_id"],
            ["roles.tenant_id", "roles.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("tenant_id", "user_id", "role_id"),
    )
    op.create_index("ix_user_roles_tenant_user", "user_roles", ["tenant_id", "user_id"])
    op.create_index("ix_user_roles_tenant_role", "user_roles", ["tenant_id", "role_id"])
    op.create_index("ix_user_roles_created_at", "user_roles", ["created_at"])

    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )
    op.create_index("ix_role_permissions_created_at", "role_permissions", ["created_at"])

    op.create_table(
        "group_companies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_group_companies_tenant_code"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_group_companies_tenant_id_id"),
    )
    op.create_index("ix_group_companies_tenant_id", "group_companies", ["tenant_id"])
    op.create_index("ix_group_companies_code", "group_companies", ["code"])
    op.create_index("ix_group_companies_created_at", "group_companies", ["created_at"])

    op.create_table(
        "legal_entities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("group_company_id", sa.Integer(), nullable=False),
        sa.Column("country_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(["country_id"], ["countries.id"]),
        sa.ForeignKeyConstraint(
            ["tenant_id", "group_company_id"],
            ["group_companies.tenant_id", "group_companies.id"],
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_legal_entities_tenant_code"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_legal_entities_tenant_id_id"),
    )
    op.create_index("ix_legal_entities_tenant_id", "legal_entities", ["tenant_id"])
    op.create_index("ix_legal_entities_code", "legal_entities", ["code"])
    op.create_index("ix_legal_entities_created_at", "legal_entities", ["created_at"])
    op.create_index("ix_legal_entities_tenant_group", "legal_entities", ["tenant_id", "group_company_id"])
    op.create_index("ix_legal_entities_tenant_country", "legal_entities", ["tenant_id", "country_id"])

    op.create_table(
        "operating_units",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("legal_entity_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(
            ["tenant_id", "legal_entity_id"],
            ["legal_entities.tenant_id", "legal_entities.id"],
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_operating_units_tenant_code"),
    )
    op.create_index("ix_operating_units_tenant_id", "operating_units", ["tenant_id"])
    op.create_index("ix_operating_units_code", "operating_units", ["code"])
    op.create_index("ix_operating_units_created_at", "operating_units", ["created_at"])
    op.create_index(
        "ix_operating_units_tenant_legal_entity",
        "operating_units",
        ["tenant_id", "legal_entity_id"],
    )

    op.create_table(
        "data_scopes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("scope_type", sa.Enum(*SCOPE_TYPES, name="scopetype"), nullable=False),
        sa.Column("scope_id", sa.Integer(), nullable=False),
        sa.Column("effect", sa.Enum(*SCOPE_EFFECTS, name="scopeeffect"), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant_id", "user_id"],
            ["users.tenant_id", "users.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "user_id",
            "scope_type",
            "scope_id",
            name="uq_data_scopes_tenant_user_scope",
        ),
    )
    op.create_index("ix_data_scopes_tenant_id", "data_scopes", ["tenant_id"])
    op.create_index("ix_data_scopes_tenant_user", "data_scopes", ["tenant_id", "user_id"])
    op.create_index("ix_data_scopes_created_at", "data_scopes", ["created_at"])

    op.create_table(
        "rbac_audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("target_user_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("resource_type", sa.String(length=80), nullable=False),
        sa.Column("resource_id", sa.String(length=120), nullable=True),
        sa.Column("scope_type", sa.String(length=32), nullable=True),
        sa.Column("scope_id", sa.Integer(), nullable=True),
        sa.Column("request_id", sa.String(length=80), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rbac_audit_logs_tenant_id", "rbac_audit_logs", ["tenant_id"])
    op.create_index("ix_rbac_audit_logs_actor_user_id", "rbac_audit_logs", ["actor_user_id"])
    op.create_index("ix_rbac_audit_logs_target_user_id", "rbac_audit_logs", ["target_user_id"])
    op.create_index("ix_rbac_audit_logs_action", "rbac_audit_logs", ["action"])
    op.create_index("ix_rbac_audit_logs_created_at", "rbac_audit_logs", ["created_at"])
    op.create_index(
        "ix_rbac_audit_logs_tenant_created",
        "rbac_audit_logs",
        ["tenant_id", "created_at", "id"],
    )
    op.create_index(
        "ix_rbac_audit_logs_tenant_scope",
        "rbac_audit_logs",
        ["tenant_id", "scope_type", "scope_id"],
    )


def downgrade() -> None:
    op.drop_table("rbac_audit_logs")
    op.drop_table("data_scopes")
    op.drop_table("operating_units")
    op.drop_table("legal_entities")
    op.drop_table("group_companies")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("roles")
    op.drop_table("users")
    op.drop_table("countries")
    op.drop_table("permissions")
    op.drop_table("tenants")
    sa.Enum(name="scopeeffect").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="scopetype").drop(op.get_bind(), checkfirst=True)
