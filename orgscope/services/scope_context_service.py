from __future__ import annotations

import logging

from orgscope.domain.scope import ScopeContext, ScopeType, build_scope_context
from orgscope.services.org_service import OrgService
from orgscope.services.scope_grant_service import ScopeGrantService

logger = logging.getLogger(__name__)

_HIERARCHY_SCOPE_TYPES = {ScopeType.GROUP.value, ScopeType.COUNTRY.value, ScopeType.LEGAL_ENTITY.value}


class ScopeContextService:
    """Builds the per-request authorization context from the stored grants.

    Contexts are never cached here; grants may change between two requests.
    The tenant's org hierarchy is only loaded when a grant needs to reach the
    nodes below it.
    """

    def __init__(
        self,
        scope_grants: ScopeGrantService | None = None,
        org: OrgService | None = None,
    ) -> None:
        self._scope_grants = scope_grants or ScopeGrantService()
        self._org = org or OrgService()

    def resolve(self, tenant_id: int, user_id: int) -> ScopeContext:
        grants = self._scope_grants.load_grants(tenant_id, user_id)
        hierarchy = None
        types = {str(grant.scope_type).upper() for grant in grants}
        if types & _HIERARCHY_SCOPE_TYPES:
            hierarchy = self._org.load_hierarchy(tenant_id)
        context = build_scope_context(grants, tenant_id=tenant_id, hierarchy=hierarchy)
        logger.debug(
            "resolved scope context for user %s in tenant %s from %s grants: %s",
            user_id,
            tenant_id,
            len(grants),
            context.snapshot(),
        )
        return context
