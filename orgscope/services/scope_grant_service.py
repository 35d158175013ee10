from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from orgscope.domain.errors import NotFoundError, StorageError, ValidationError
from orgscope.domain.models import Country, GroupCompany, LegalEntity, OperatingUnit, ScopeGrant, User
from orgscope.domain.scope import (
    GrantSpec,
    ScopeType,
    normalize_effect,
    normalize_scope_type,
    parse_positive_id,
)
from orgscope.infra.audit import AuditRequestMeta, write_audit_log
from orgscope.infra.db import get_engine

logger = logging.getLogger(__name__)

SCOPE_REPLACE_ACTION = "scopes.replace"
SCOPE_RESOURCE_TYPE = "data_scope"


def _item_value(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _grant_snapshot(grant: ScopeGrant | GrantSpec) -> dict[str, Any]:
    return {
        "scope_type": str(grant.scope_type),
        "scope_id": grant.scope_id,
        "effect": str(grant.effect),
    }


class ScopeGrantService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def normalize_grants(self, tenant_id: int, grants: Iterable[Any]) -> list[GrantSpec]:
        """Validate a full grant set before anything is written.

        One identity may appear only once per set, so a set can never carry
        both ALLOW and DENY for the same scope.
        """
        normalized: list[GrantSpec] = []
        seen: set[tuple[ScopeType, int]] = set()
        for item in grants:
            scope_type = normalize_scope_type(_item_value(item, "scope_type"))
            scope_id = parse_positive_id(_item_value(item, "scope_id"))
            effect = normalize_effect(_item_value(item, "effect"))
            if scope_type == ScopeType.TENANT and scope_id != tenant_id:
                raise ValidationError("TENANT scope_id must match tenant_id")
            key = (scope_type, scope_id)
            if key in seen:
                raise ValidationError(f"duplicate scope is not allowed: {scope_type.value}:{scope_id}")
            seen.add(key)
            normalized.append(GrantSpec(scope_type=scope_type, scope_id=scope_id, effect=effect))
        return normalized

    def _assert_scope_target_exists(self, session: Session, tenant_id: int, grant: GrantSpec) -> None:
        found: object | None
        if grant.scope_type == ScopeType.TENANT:
            return
        if grant.scope_type == ScopeType.GROUP:
            found = session.exec(
                select(GroupCompany.id)
                .where(GroupCompany.tenant_id == tenant_id)
                .where(GroupCompany.id == grant.scope_id)
            ).first()
        elif grant.scope_type == ScopeType.COUNTRY:
            found = session.get(Country, grant.scope_id)
        elif grant.scope_type == ScopeType.LEGAL_ENTITY:
            found = session.exec(
                select(LegalEntity.id)
                .where(LegalEntity.tenant_id == tenant_id)
                .where(LegalEntity.id == grant.scope_id)
            ).first()
        else:
            found = session.exec(
                select(OperatingUnit.id)
                .where(OperatingUnit.tenant_id == tenant_id)
                .where(OperatingUnit.id == grant.scope_id)
            ).first()
        if found is None:
            raise NotFoundError(f"{grant.scope_type.value.lower()} {grant.scope_id} not found")

    def _select_user_grants(self, session: Session, tenant_id: int, user_id: int) -> list[ScopeGrant]:
        return list(
            session.exec(
                select(ScopeGrant)
                .where(ScopeGrant.tenant_id == tenant_id)
                .where(ScopeGrant.user_id == user_id)
                .order_by(col(ScopeGrant.scope_type), col(ScopeGrant.scope_id))
            ).all()
        )

    def load_grants(self, tenant_id: int, user_id: int) -> list[ScopeGrant]:
        with self._session() as session:
            return self._select_user_grants(session, tenant_id, user_id)

    def list_grants(
        self,
        tenant_id: int,
        *,
        user_id: int | None = None,
        scope_type: Any = None,
        scope_id: int | None = None,
    ) -> list[ScopeGrant]:
        statement = select(ScopeGrant).where(ScopeGrant.tenant_id == tenant_id)
        if user_id is not None:
            statement = statement.where(ScopeGrant.user_id == user_id)
        if scope_type is not None:
            statement = statement.where(ScopeGrant.scope_type == normalize_scope_type(scope_type))
        if scope_id is not None:
            statement = statement.where(ScopeGrant.scope_id == scope_id)
        with self._session() as session:
            return list(session.exec(statement.order_by(col(ScopeGrant.id).desc())).all())

    def stage_replace(
        self,
        session: Session,
        tenant_id: int,
        user_id: int,
        grants: list[GrantSpec],
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> tuple[list[ScopeGrant], list[dict[str, Any]]]:
        """Stage the swap and its audit row in ``session`` without committing."""
        before = self._select_user_grants(session, tenant_id, user_id)
        before_snapshot = [_grant_snapshot(item) for item in before]
        for row in before:
            session.delete(row)
        session.flush()

        created = [
            ScopeGrant(
                tenant_id=tenant_id,
                user_id=user_id,
                scope_type=grant.scope_type,
                scope_id=grant.scope_id,
                effect=grant.effect,
                created_by_user_id=actor_user_id,
            )
            for grant in grants
        ]
        session.add_all(created)
        write_audit_log(
            session,
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            target_user_id=user_id,
            action=SCOPE_REPLACE_ACTION,
            resource_type=SCOPE_RESOURCE_TYPE,
            resource_id=user_id,
            scope_type=ScopeType.TENANT,
            scope_id=tenant_id,
            payload={
                "user_id": user_id,
                "before": before_snapshot,
                "after": [_grant_snapshot(item) for item in grants],
            },
            meta=meta,
        )
        session.flush()
        return created, before_snapshot

    def replace_scopes(
        self,
        tenant_id: int,
        user_id: int,
        grants: Iterable[Any],
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> list[ScopeGrant]:
        """Swap the user's whole grant set for ``grants`` in one transaction.

        The prior set, the new set and the audit entry commit together; on any
        failure the prior set stays in place.
        """
        normalized = self.normalize_grants(tenant_id, grants)

        with self._session() as session:
            user = session.exec(
                select(User).where(User.tenant_id == tenant_id).where(User.id == user_id)
            ).first()
            if user is None:
                raise NotFoundError("user not found")
            for grant in normalized:
                self._assert_scope_target_exists(session, tenant_id, grant)

            try:
                created, before_snapshot = self.stage_replace(
                    session,
                    tenant_id,
                    user_id,
                    normalized,
                    actor_user_id=actor_user_id,
                    meta=meta,
                )
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("scope replace failed for user %s in tenant %s", user_id, tenant_id)
                raise StorageError("scope replace failed; previous scopes remain in effect") from exc

            for row in created:
                session.refresh(row)

        logger.info(
            "replaced %s scope grants for user %s in tenant %s (previously %s)",
            len(created),
            user_id,
            tenant_id,
            len(before_snapshot),
        )
        return created
