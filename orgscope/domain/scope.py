"""Scope model of the authorization engine.

Everything in this module is pure: it folds grant rows into a
:class:`ScopeContext` and answers write, read and filter questions against it.
Persistence lives in ``orgscope.services`` and SQL rendering of the read
predicates in ``orgscope.infra.scope_sql``.

Composition rules:

* writes are conjunctive over the dimensions a resource declares
  (:func:`authorize_write`);
* reads are disjunctive over the dimensions the context holds
  (:func:`visibility_predicate`);
* a parameterized listing filter needs a grant at the filtered level or a
  broader one covering the filtered node (:func:`authorize_filter`);
* a DENY wins on every path: it removes the denied node and everything below
  it, including from a tenant-wide context.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from orgscope.domain.errors import ValidationError


class ScopeType(StrEnum):
    TENANT = "TENANT"
    GROUP = "GROUP"
    COUNTRY = "COUNTRY"
    LEGAL_ENTITY = "LEGAL_ENTITY"
    OPERATING_UNIT = "OPERATING_UNIT"


class ScopeEffect(StrEnum):
    ALLOW = "ALLOW"
    DENY = "DENY"


SCOPE_LEVELS: dict[ScopeType, int] = {
    ScopeType.TENANT: 0,
    ScopeType.GROUP: 1,
    ScopeType.COUNTRY: 2,
    ScopeType.LEGAL_ENTITY: 3,
    ScopeType.OPERATING_UNIT: 4,
}

NARROW_SCOPE_TYPES: tuple[ScopeType, ...] = (
    ScopeType.GROUP,
    ScopeType.COUNTRY,
    ScopeType.LEGAL_ENTITY,
    ScopeType.OPERATING_UNIT,
)


class GrantLike(Protocol):
    scope_type: Any
    scope_id: Any
    effect: Any


@dataclass(frozen=True)
class GrantSpec:
    scope_type: ScopeType
    scope_id: int
    effect: ScopeEffect = ScopeEffect.ALLOW


def normalize_scope_type(value: Any, field_name: str = "scope_type") -> ScopeType:
    normalized = str(value or "").strip().upper()
    try:
        return ScopeType(normalized)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in ScopeType)
        raise ValidationError(f"{field_name} must be one of {allowed}") from exc


def normalize_effect(value: Any) -> ScopeEffect:
    normalized = str(value or ScopeEffect.ALLOW).strip().upper()
    try:
        return ScopeEffect(normalized)
    except ValueError as exc:
        raise ValidationError("effect must be ALLOW or DENY") from exc


def parse_positive_id(value: Any, field_name: str = "scope_id") -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a positive integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a positive integer") from exc
    if parsed <= 0 or str(parsed) != str(value).strip():
        raise ValidationError(f"{field_name} must be a positive integer")
    return parsed


@dataclass(frozen=True)
class OrgHierarchy:
    """Parent links of a tenant's legal entities and operating units."""

    legal_entities: Mapping[int, tuple[int, int]] = field(default_factory=dict)
    operating_units: Mapping[int, int] = field(default_factory=dict)

    def legal_entities_under(self, scope_type: ScopeType, ids: Iterable[int]) -> set[int]:
        wanted = set(ids)
        if not wanted:
            return set()
        position = 0 if scope_type == ScopeType.GROUP else 1
        return {entity_id for entity_id, parents in self.legal_entities.items() if parents[position] in wanted}

    def units_under(self, legal_entity_ids: Iterable[int]) -> set[int]:
        wanted = set(legal_entity_ids)
        if not wanted:
            return set()
        return {unit_id for unit_id, entity_id in self.operating_units.items() if entity_id in wanted}


@dataclass(frozen=True)
class ScopeContext:
    tenant_id: int | None = None
    tenant_wide: bool = False
    groups: frozenset[int] = frozenset()
    countries: frozenset[int] = frozenset()
    legal_entities: frozenset[int] = frozenset()
    operating_units: frozenset[int] = frozenset()
    # explicit denies plus every node below them
    denied_groups: frozenset[int] = frozenset()
    denied_countries: frozenset[int] = frozenset()
    denied_legal_entities: frozenset[int] = frozenset()
    denied_operating_units: frozenset[int] = frozenset()

    def ids_for(self, scope_type: ScopeType) -> frozenset[int]:
        if scope_type == ScopeType.GROUP:
            return self.groups
        if scope_type == ScopeType.COUNTRY:
            return self.countries
        if scope_type == ScopeType.LEGAL_ENTITY:
            return self.legal_entities
        if scope_type == ScopeType.OPERATING_UNIT:
            return self.operating_units
        return frozenset()

    def denied_ids_for(self, scope_type: ScopeType) -> frozenset[int]:
        if scope_type == ScopeType.GROUP:
            return self.denied_groups
        if scope_type == ScopeType.COUNTRY:
            return self.denied_countries
        if scope_type == ScopeType.LEGAL_ENTITY:
            return self.denied_legal_entities
        if scope_type == ScopeType.OPERATING_UNIT:
            return self.denied_operating_units
        return frozenset()

    def is_denied(self, scope_type: Any, scope_id: int | None) -> bool:
        if scope_id is None:
            return False
        return scope_id in self.denied_ids_for(ScopeType(str(scope_type).upper()))

    def has_denies(self) -> bool:
        return any(self.denied_ids_for(item) for item in NARROW_SCOPE_TYPES)

    def is_empty(self) -> bool:
        return not self.tenant_wide and not any(self.ids_for(item) for item in NARROW_SCOPE_TYPES)

    def snapshot(self) -> dict[str, Any]:
        return {
            "tenant_wide": self.tenant_wide,
            "groups": sorted(self.groups),
            "countries": sorted(self.countries),
            "legal_entities": sorted(self.legal_entities),
            "operating_units": sorted(self.operating_units),
        }


def build_scope_context(
    grants: Iterable[GrantLike],
    tenant_id: int | None = None,
    hierarchy: OrgHierarchy | None = None,
) -> ScopeContext:
    """Fold grant rows into a context.

    A DENY removes its identity whatever order the rows come in, so an ALLOW
    for the same identity can never bring it back. A TENANT DENY empties the
    whole context; a TENANT ALLOW without one makes it tenant wide. Rows with
    an unknown type or effect, or a TENANT row for another tenant, are ignored.

    With a ``hierarchy`` the fold also works downward: a GROUP or COUNTRY
    ALLOW covers the legal entities below it and a legal entity covers its
    operating units. A DENY removes the denied node and everything below it.
    Ancestors are never added back, so a legal entity grant does not widen
    the group or country sets.
    """
    hierarchy = hierarchy or OrgHierarchy()
    allowed: dict[ScopeType, set[int]] = {item: set() for item in ScopeType}
    denied: dict[ScopeType, set[int]] = {item: set() for item in ScopeType}

    for grant in grants:
        try:
            scope_type = ScopeType(str(grant.scope_type).upper())
            effect = ScopeEffect(str(grant.effect).upper())
            scope_id = int(grant.scope_id)
        except (TypeError, ValueError):
            continue
        if scope_id <= 0:
            continue
        if scope_type == ScopeType.TENANT and tenant_id is not None and scope_id != tenant_id:
            continue
        target = allowed if effect == ScopeEffect.ALLOW else denied
        target[scope_type].add(scope_id)

    if denied[ScopeType.TENANT]:
        return ScopeContext(tenant_id=tenant_id)

    denied_entities = (
        denied[ScopeType.LEGAL_ENTITY]
        | hierarchy.legal_entities_under(ScopeType.GROUP, denied[ScopeType.GROUP])
        | hierarchy.legal_entities_under(ScopeType.COUNTRY, denied[ScopeType.COUNTRY])
    )
    denied_units = denied[ScopeType.OPERATING_UNIT] | hierarchy.units_under(denied_entities)
    exclusions = {
        "denied_groups": frozenset(denied[ScopeType.GROUP]),
        "denied_countries": frozenset(denied[ScopeType.COUNTRY]),
        "denied_legal_entities": frozenset(denied_entities),
        "denied_operating_units": frozenset(denied_units),
    }

    if allowed[ScopeType.TENANT]:
        return ScopeContext(tenant_id=tenant_id, tenant_wide=True, **exclusions)

    entities = (
        allowed[ScopeType.LEGAL_ENTITY]
        | hierarchy.legal_entities_under(ScopeType.GROUP, allowed[ScopeType.GROUP])
        | hierarchy.legal_entities_under(ScopeType.COUNTRY, allowed[ScopeType.COUNTRY])
    )
    units = allowed[ScopeType.OPERATING_UNIT] | hierarchy.units_under(entities)

    return ScopeContext(
        tenant_id=tenant_id,
        groups=frozenset(allowed[ScopeType.GROUP] - denied[ScopeType.GROUP]),
        countries=frozenset(allowed[ScopeType.COUNTRY] - denied[ScopeType.COUNTRY]),
        legal_entities=frozenset(entities - denied_entities),
        operating_units=frozenset(units - denied_units),
        **exclusions,
    )


def authorize_write(context: ScopeContext, resource_dimensions: Mapping[Any, int | None]) -> bool:
    """Every dimension declared by the resource must be covered by the context.

    Undeclared dimensions are not checked. A resource declaring no dimension is
    a tenant-level resource and needs tenant-wide authority. A denied dimension
    refuses the write even for a tenant-wide context.
    """
    for raw_type, scope_id in resource_dimensions.items():
        scope_type = ScopeType(str(raw_type).upper())
        if scope_type != ScopeType.TENANT and context.is_denied(scope_type, scope_id):
            return False
    if context.tenant_wide:
        return True
    if not resource_dimensions:
        return False
    for raw_type, scope_id in resource_dimensions.items():
        scope_type = ScopeType(str(raw_type).upper())
        if scope_type == ScopeType.TENANT:
            return False
        if scope_id is None or scope_id not in context.ids_for(scope_type):
            return False
    return True


# ---- read-path predicates ----------------------------------------------------------------


@dataclass(frozen=True)
class MatchAll:
    def matches(self, scope_type: Any, scope_id: int | None) -> bool:
        return True

    def matches_dimensions(self, dimensions: Mapping[Any, int | None]) -> bool:
        return True


@dataclass(frozen=True)
class MatchNone:
    def matches(self, scope_type: Any, scope_id: int | None) -> bool:
        return False

    def matches_dimensions(self, dimensions: Mapping[Any, int | None]) -> bool:
        return False


@dataclass(frozen=True)
class ScopeMatch:
    scope_type: ScopeType
    ids: frozenset[int]

    def matches(self, scope_type: Any, scope_id: int | None) -> bool:
        if scope_type is None or scope_id is None:
            return False
        return str(scope_type).upper() == self.scope_type.value and scope_id in self.ids

    def matches_dimensions(self, dimensions: Mapping[Any, int | None]) -> bool:
        for raw_type, scope_id in dimensions.items():
            if self.matches(raw_type, scope_id):
                return True
        return False


@dataclass(frozen=True)
class AnyOf:
    clauses: tuple[ScopeMatch, ...]

    def matches(self, scope_type: Any, scope_id: int | None) -> bool:
        return any(clause.matches(scope_type, scope_id) for clause in self.clauses)

    def matches_dimensions(self, dimensions: Mapping[Any, int | None]) -> bool:
        return any(clause.matches_dimensions(dimensions) for clause in self.clauses)


@dataclass(frozen=True)
class Excluding:
    """``base`` minus anything an exclusion clause matches."""

    base: MatchAll | ScopeMatch | AnyOf
    exclusions: tuple[ScopeMatch, ...]

    def matches(self, scope_type: Any, scope_id: int | None) -> bool:
        if not self.base.matches(scope_type, scope_id):
            return False
        return not any(clause.matches(scope_type, scope_id) for clause in self.exclusions)

    def matches_dimensions(self, dimensions: Mapping[Any, int | None]) -> bool:
        if not self.base.matches_dimensions(dimensions):
            return False
        return not any(clause.matches_dimensions(dimensions) for clause in self.exclusions)


ScopePredicate = MatchAll | MatchNone | ScopeMatch | AnyOf | Excluding


def visibility_predicate(context: ScopeContext) -> ScopePredicate:
    exclusions = tuple(
        ScopeMatch(scope_type=scope_type, ids=context.denied_ids_for(scope_type))
        for scope_type in NARROW_SCOPE_TYPES
        if context.denied_ids_for(scope_type)
    )
    base: ScopePredicate
    if context.tenant_wide:
        base = MatchAll()
    else:
        clauses = tuple(
            ScopeMatch(scope_type=scope_type, ids=context.ids_for(scope_type))
            for scope_type in NARROW_SCOPE_TYPES
            if context.ids_for(scope_type)
        )
        if not clauses:
            return MatchNone()
        base = AnyOf(clauses=clauses)
    if exclusions:
        return Excluding(base=base, exclusions=exclusions)
    return base


def authorize_filter(
    context: ScopeContext,
    scope_type: ScopeType,
    scope_id: int,
    ancestors: Mapping[ScopeType, int | None] | None = None,
) -> bool:
    """Can the caller list *everything* under ``scope_type``/``scope_id``?

    ``ancestors`` are the dimensions the filtered node itself belongs to; only
    the ones strictly broader than ``scope_type`` count. Grants below the
    filtered level never qualify, even if they happen to cover every child.
    A node that is denied, or sits under a denied ancestor, is refused.
    """
    if scope_type != ScopeType.TENANT and context.is_denied(scope_type, scope_id):
        return False
    for ancestor_type, ancestor_id in (ancestors or {}).items():
        if ancestor_type != ScopeType.TENANT and context.is_denied(ancestor_type, ancestor_id):
            return False
    if context.tenant_wide:
        return True
    if scope_type == ScopeType.TENANT:
        return False
    if scope_id in context.ids_for(scope_type):
        return True
    level = SCOPE_LEVELS[scope_type]
    for ancestor_type, ancestor_id in (ancestors or {}).items():
        if ancestor_type == ScopeType.TENANT or SCOPE_LEVELS[ancestor_type] >= level:
            continue
        if ancestor_id is not None and ancestor_id in context.ids_for(ancestor_type):
            return True
    return False
