from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from orgscope.domain.errors import ConflictError, ForbiddenError, NotFoundError
from orgscope.domain.models import (
    Country,
    GroupCompany,
    GroupCompanyCreate,
    LegalEntity,
    LegalEntityCreate,
    OperatingUnit,
    OperatingUnitCreate,
)
from orgscope.domain.scope import (
    OrgHierarchy,
    ScopeContext,
    ScopeType,
    authorize_filter,
    authorize_write,
    visibility_predicate,
)
from orgscope.infra.audit import AuditRequestMeta, record_audit_event, write_audit_log
from orgscope.infra.db import get_engine
from orgscope.infra.scope_sql import render_dimension_columns

logger = logging.getLogger(__name__)


class OrgService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _deny_write(
        self,
        *,
        tenant_id: int,
        actor_user_id: int | None,
        action: str,
        resource_type: str,
        dimensions: Mapping[ScopeType, int],
        meta: AuditRequestMeta | None,
    ) -> ForbiddenError:
        record_audit_event(
            tenant_id=tenant_id,
            actor_user_id=actor_user_id,
            action=f"{action}.denied",
            resource_type=resource_type,
            scope_type=ScopeType.TENANT,
            scope_id=tenant_id,
            payload={
                "reason": "scope",
                "dimensions": {key.value: value for key, value in dimensions.items()},
            },
            meta=meta,
        )
        logger.info("%s denied for user %s: dimensions %s out of scope", action, actor_user_id, dict(dimensions))
        return ForbiddenError(f"Data scope denied for {resource_type}")

    def _get_legal_entity(self, session: Session, tenant_id: int, legal_entity_id: int) -> LegalEntity | None:
        return session.exec(
            select(LegalEntity)
            .where(LegalEntity.tenant_id == tenant_id)
            .where(LegalEntity.id == legal_entity_id)
        ).first()

    def _flush_created(self, session: Session, message: str) -> None:
        try:
            session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(message) from exc

    def load_hierarchy(self, tenant_id: int) -> OrgHierarchy:
        with self._session() as session:
            entities = session.exec(
                select(LegalEntity.id, LegalEntity.group_company_id, LegalEntity.country_id).where(
                    LegalEntity.tenant_id == tenant_id
                )
            ).all()
            units = session.exec(
                select(OperatingUnit.id, OperatingUnit.legal_entity_id).where(OperatingUnit.tenant_id == tenant_id)
            ).all()
        return OrgHierarchy(
            legal_entities={entity_id: (group_id, country_id) for entity_id, group_id, country_id in entities},
            operating_units={unit_id: entity_id for unit_id, entity_id in units},
        )

    def list_countries(self, context: ScopeContext) -> list[Country]:
        predicate = render_dimension_columns(visibility_predicate(context), {ScopeType.COUNTRY: Country.id})
        with self._session() as session:
            return list(session.exec(select(Country).where(predicate).order_by(col(Country.id))).all())

    def create_group_company(
        self,
        tenant_id: int,
        context: ScopeContext,
        payload: GroupCompanyCreate,
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> GroupCompany:
        if not authorize_write(context, {}):
            raise self._deny_write(
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="org.group_company.create",
                resource_type="group_company",
                dimensions={},
                meta=meta,
            )
        with self._session() as session:
            group = GroupCompany(tenant_id=tenant_id, code=payload.code, name=payload.name)
            session.add(group)
            self._flush_created(session, "group company code already exists in tenant")
            write_audit_log(
                session,
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="org.group_company.create",
                resource_type="group_company",
                resource_id=group.id,
                scope_type=ScopeType.GROUP,
                scope_id=group.id,
                payload={"code": group.code, "name": group.name},
                meta=meta,
            )
            session.commit()
            session.refresh(group)
            return group

    def list_group_companies(self, tenant_id: int, context: ScopeContext) -> list[GroupCompany]:
        predicate = render_dimension_columns(
            visibility_predicate(context),
            {ScopeType.GROUP: GroupCompany.id},
        )
        with self._session() as session:
            return list(
                session.exec(
                    select(GroupCompany)
                    .where(GroupCompany.tenant_id == tenant_id)
                    .where(predicate)
                    .order_by(col(GroupCompany.id))
                ).all()
            )

    def create_legal_entity(
        self,
        tenant_id: int,
        context: ScopeContext,
        payload: LegalEntityCreate,
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> LegalEntity:
        dimensions = {
            ScopeType.GROUP: payload.group_company_id,
            ScopeType.COUNTRY: payload.country_id,
        }
        if not authorize_write(context, dimensions):
            raise self._deny_write(
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="org.legal_entity.create",
                resource_type="legal_entity",
                dimensions=dimensions,
                meta=meta,
            )
        with self._session() as session:
            group = session.exec(
                select(GroupCompany)
                .where(GroupCompany.tenant_id == tenant_id)
                .where(GroupCompany.id == payload.group_company_id)
            ).first()
            if group is None:
                raise NotFoundError("group company not found")
            if session.get(Country, payload.country_id) is None:
                raise NotFoundError("country not found")

            entity = LegalEntity(
                tenant_id=tenant_id,
                group_company_id=payload.group_company_id,
                country_id=payload.country_id,
                code=payload.code,
                name=payload.name,
            )
            session.add(entity)
            self._flush_created(session, "legal entity code already exists in tenant")
            write_audit_log(
                session,
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="org.legal_entity.create",
                resource_type="legal_entity",
                resource_id=entity.id,
                scope_type=ScopeType.LEGAL_ENTITY,
                scope_id=entity.id,
                payload={
                    "code": entity.code,
                    "group_company_id": entity.group_company_id,
                    "country_id": entity.country_id,
                },
                meta=meta,
            )
            session.commit()
            session.refresh(entity)
            return entity

    def list_legal_entities(
        self,
        tenant_id: int,
        context: ScopeContext,
        *,
        group_company_id: int | None = None,
        country_id: int | None = None,
    ) -> list[LegalEntity]:
        if group_company_id is not None and not authorize_filter(context, ScopeType.GROUP, group_company_id):
            raise ForbiddenError("Data scope denied for group company filter")
        if country_id is not None and not authorize_filter(context, ScopeType.COUNTRY, country_id):
            raise ForbiddenError("Data scope denied for country filter")

        predicate = render_dimension_columns(
            visibility_predicate(context),
            {
                ScopeType.GROUP: LegalEntity.group_company_id,
                ScopeType.COUNTRY: LegalEntity.country_id,
                ScopeType.LEGAL_ENTITY: LegalEntity.id,
            },
        )
        statement = select(LegalEntity).where(LegalEntity.tenant_id == tenant_id).where(predicate)
        if group_company_id is not None:
            statement = statement.where(LegalEntity.group_company_id == group_company_id)
        if country_id is not None:
            statement = statement.where(LegalEntity.country_id == country_id)
        with self._session() as session:
            return list(session.exec(statement.order_by(col(LegalEntity.id))).all())

    def create_operating_unit(
        self,
        tenant_id: int,
        context: ScopeContext,
        payload: OperatingUnitCreate,
        *,
        actor_user_id: int | None = None,
        meta: AuditRequestMeta | None = None,
    ) -> OperatingUnit:
        dimensions = {ScopeType.LEGAL_ENTITY: payload.legal_entity_id}
        if not authorize_write(context, dimensions):
            raise self._deny_write(
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="org.operating_unit.create",
                resource_type="operating_unit",
                dimensions=dimensions,
                meta=meta,
            )
        with self._session() as session:
            if self._get_legal_entity(session, tenant_id, payload.legal_entity_id) is None:
                raise NotFoundError("legal entity not found")
            unit = OperatingUnit(
                tenant_id=tenant_id,
                legal_entity_id=payload.legal_entity_id,
                code=payload.code,
                name=payload.name,
            )
            session.add(unit)
            self._flush_created(session, "operating unit code already exists in tenant")
            write_audit_log(
                session,
                tenant_id=tenant_id,
                actor_user_id=actor_user_id,
                action="org.operating_unit.create",
                resource_type="operating_unit",
                resource_id=unit.id,
                scope_type=ScopeType.OPERATING_UNIT,
                scope_id=unit.id,
                payload={"code": unit.code, "legal_entity_id": unit.legal_entity_id},
                meta=meta,
            )
            session.commit()
            session.refresh(unit)
            return unit

    def list_operating_units(
        self,
        tenant_id: int,
        context: ScopeContext,
        *,
        legal_entity_id: int | None = None,
    ) -> list[OperatingUnit]:
        with self._session() as session:
            if legal_entity_id is not None:
                entity = self._get_legal_entity(session, tenant_id, legal_entity_id)
                if entity is None:
                    raise NotFoundError("legal entity not found")
                ancestors: dict[ScopeType, Any] = {
                    ScopeType.GROUP: entity.group_company_id,
                    ScopeType.COUNTRY: entity.country_id,
                }
                if not authorize_filter(context, ScopeType.LEGAL_ENTITY, legal_entity_id, ancestors):
                    raise ForbiddenError("Data scope denied for legal entity filter")

            predicate = render_dimension_columns(
                visibility_predicate(context),
                {
                    ScopeType.GROUP: LegalEntity.group_company_id,
                    ScopeType.COUNTRY: LegalEntity.country_id,
                    ScopeType.LEGAL_ENTITY: OperatingUnit.legal_entity_id,
                    ScopeType.OPERATING_UNIT: OperatingUnit.id,
                },
            )
            statement = (
                select(OperatingUnit)
                .join(
                    LegalEntity,
                    (col(LegalEntity.tenant_id) == col(OperatingUnit.tenant_id))
                    & (col(LegalEntity.id) == col(OperatingUnit.legal_entity_id)),
                )
                .where(OperatingUnit.tenant_id == tenant_id)
                .where(predicate)
            )
            if legal_entity_id is not None:
                statement = statement.where(OperatingUnit.legal_entity_id == legal_entity_id)
            return list(session.exec(statement.order_by(col(OperatingUnit.id))).all())
