from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from orgscope.api.deps import AuditMeta, Claims, Scope, handle_service_error, require_perm
from orgscope.domain.errors import AuthorizationEngineError
from orgscope.domain.models import (
    CountryRead,
    GroupCompanyCreate,
    GroupCompanyRead,
    LegalEntityCreate,
    LegalEntityRead,
    OperatingUnitCreate,
    OperatingUnitRead,
)
from orgscope.domain.permissions import (
    PERM_ORG_GROUP_COMPANY_UPSERT,
    PERM_ORG_LEGAL_ENTITY_UPSERT,
    PERM_ORG_OPERATING_UNIT_UPSERT,
    PERM_ORG_TREE_READ,
)
from orgscope.services.org_service import OrgService

router = APIRouter()


def get_org_service() -> OrgService:
    return OrgService()


Service = Annotated[OrgService, Depends(get_org_service)]


@router.post(
    "/group-companies",
    response_model=GroupCompanyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_GROUP_COMPANY_UPSERT))],
)
def create_group_company(
    payload: GroupCompanyCreate,
    claims: Claims,
    context: Scope,
    meta: AuditMeta,
    service: Service,
) -> GroupCompanyRead:
    try:
        group = service.create_group_company(
            claims["tenant_id"],
            context,
            payload,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return GroupCompanyRead.model_validate(group)


@router.get(
    "/group-companies",
    response_model=list[GroupCompanyRead],
    dependencies=[Depends(require_perm(PERM_ORG_TREE_READ))],
)
def list_group_companies(claims: Claims, context: Scope, service: Service) -> list[GroupCompanyRead]:
    rows = service.list_group_companies(claims["tenant_id"], context)
    return [GroupCompanyRead.model_validate(item) for item in rows]


@router.get(
    "/countries",
    response_model=list[CountryRead],
    dependencies=[Depends(require_perm(PERM_ORG_TREE_READ))],
)
def list_countries(context: Scope, service: Service) -> list[CountryRead]:
    return [CountryRead.model_validate(item) for item in service.list_countries(context)]


@router.post(
    "/legal-entities",
    response_model=LegalEntityRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_LEGAL_ENTITY_UPSERT))],
)
def create_legal_entity(
    payload: LegalEntityCreate,
    claims: Claims,
    context: Scope,
    meta: AuditMeta,
    service: Service,
) -> LegalEntityRead:
    try:
        entity = service.create_legal_entity(
            claims["tenant_id"],
            context,
            payload,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return LegalEntityRead.model_validate(entity)


@router.get(
    "/legal-entities",
    response_model=list[LegalEntityRead],
    dependencies=[Depends(require_perm(PERM_ORG_TREE_READ))],
)
def list_legal_entities(
    claims: Claims,
    context: Scope,
    service: Service,
    group_company_id: int | None = None,
    country_id: int | None = None,
) -> list[LegalEntityRead]:
    try:
        rows = service.list_legal_entities(
            claims["tenant_id"],
            context,
            group_company_id=group_company_id,
            country_id=country_id,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return [LegalEntityRead.model_validate(item) for item in rows]


@router.post(
    "/operating-units",
    response_model=OperatingUnitRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_OPERATING_UNIT_UPSERT))],
)
def create_operating_unit(
    payload: OperatingUnitCreate,
    claims: Claims,
    context: Scope,
    meta: AuditMeta,
    service: Service,
) -> OperatingUnitRead:
    try:
        unit = service.create_operating_unit(
            claims["tenant_id"],
            context,
            payload,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return OperatingUnitRead.model_validate(unit)


@router.get(
    "/operating-units",
    response_model=list[OperatingUnitRead],
    dependencies=[Depends(require_perm(PERM_ORG_TREE_READ))],
)
def list_operating_units(
    claims: Claims,
    context: Scope,
    service: Service,
    legal_entity_id: int | None = None,
) -> list[OperatingUnitRead]:
    try:
        rows = service.list_operating_units(claims["tenant_id"], context, legal_entity_id=legal_entity_id)
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return [OperatingUnitRead.model_validate(item) for item in rows]
