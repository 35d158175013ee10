from __future__ import annotations

from collections.abc import Iterable

PERM_WILDCARD = "*"
PERM_IDENTITY_READ = "identity.read"
PERM_IDENTITY_WRITE = "identity.write"
PERM_ORG_TREE_READ = "org.tree.read"
PERM_ORG_GROUP_COMPANY_UPSERT = "org.group_company.upsert"
PERM_ORG_LEGAL_ENTITY_UPSERT = "org.legal_entity.upsert"
PERM_ORG_OPERATING_UNIT_UPSERT = "org.operating_unit.upsert"
PERM_DATA_SCOPE_READ = "security.data_scope.read"
PERM_DATA_SCOPE_UPSERT = "security.data_scope.upsert"
PERM_AUDIT_READ = "security.audit.read"

DEFAULT_PERMISSION_NAMES = [
    PERM_WILDCARD,
    PERM_IDENTITY_READ,
    PERM_IDENTITY_WRITE,
    PERM_ORG_TREE_READ,
    PERM_ORG_GROUP_COMPANY_UPSERT,
    PERM_ORG_LEGAL_ENTITY_UPSERT,
    PERM_ORG_OPERATING_UNIT_UPSERT,
    PERM_DATA_SCOPE_READ,
    PERM_DATA_SCOPE_UPSERT,
    PERM_AUDIT_READ,
]


def has_permission(granted: Iterable[str], permission: str) -> bool:
    granted_set = set(granted)
    if not permission or permission not in DEFAULT_PERMISSION_NAMES:
        return False
    return permission in granted_set or PERM_WILDCARD in granted_set
