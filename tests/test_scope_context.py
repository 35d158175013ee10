from __future__ import annotations

from dataclasses import dataclass
from itertools import permutations

import pytest

from orgscope.domain.errors import ValidationError
from orgscope.domain.scope import (
    GrantSpec,
    OrgHierarchy,
    ScopeContext,
    ScopeEffect,
    ScopeType,
    build_scope_context,
    normalize_effect,
    normalize_scope_type,
    parse_positive_id,
)


@dataclass
class _Row:
    scope_type: str
    scope_id: object
    effect: str = "ALLOW"


def _allow(scope_type: ScopeType, scope_id: int) -> GrantSpec:
    return GrantSpec(scope_type=scope_type, scope_id=scope_id)


def _deny(scope_type: ScopeType, scope_id: int) -> GrantSpec:
    return GrantSpec(scope_type=scope_type, scope_id=scope_id, effect=ScopeEffect.DENY)


def test_no_grants_is_default_deny() -> None:
    context = build_scope_context([], tenant_id=1)
    assert context == ScopeContext(tenant_id=1)
    assert context.is_empty()
    assert not context.tenant_wide


def test_tenant_allow_is_tenant_wide() -> None:
    context = build_scope_context([_allow(ScopeType.TENANT, 1), _allow(ScopeType.GROUP, 5)], tenant_id=1)
    assert context.tenant_wide
    assert context.groups == frozenset()


def test_narrow_grants_fold_per_dimension() -> None:
    context = build_scope_context(
        [
            _allow(ScopeType.GROUP, 1),
            _allow(ScopeType.COUNTRY, 2),
            _allow(ScopeType.LEGAL_ENTITY, 3),
            _allow(ScopeType.OPERATING_UNIT, 4),
        ],
        tenant_id=1,
    )
    assert context.snapshot() == {
        "tenant_wide": False,
        "groups": [1],
        "countries": [2],
        "legal_entities": [3],
        "operating_units": [4],
    }


def test_deny_is_never_resurrected_by_allow() -> None:
    grants = [_allow(ScopeType.GROUP, 1), _deny(ScopeType.GROUP, 1), _allow(ScopeType.GROUP, 2)]
    contexts = {build_scope_context(list(order), tenant_id=1) for order in permutations(grants)}
    assert len(contexts) == 1
    context = contexts.pop()
    assert context.groups == frozenset({2})


def test_tenant_deny_empties_context() -> None:
    context = build_scope_context(
        [_allow(ScopeType.TENANT, 1), _allow(ScopeType.GROUP, 3), _deny(ScopeType.TENANT, 1)],
        tenant_id=1,
    )
    assert context.is_empty()


def test_tenant_grant_for_other_tenant_is_ignored() -> None:
    context = build_scope_context([_allow(ScopeType.TENANT, 2)], tenant_id=1)
    assert not context.tenant_wide
    assert context.is_empty()


def test_unknown_rows_are_skipped() -> None:
    context = build_scope_context(
        [
            _Row(scope_type="REGION", scope_id=1),
            _Row(scope_type="GROUP", scope_id="x"),
            _Row(scope_type="GROUP", scope_id=0),
            _Row(scope_type="GROUP", scope_id=7, effect="MAYBE"),
            _Row(scope_type="group", scope_id=9, effect="allow"),
        ],
        tenant_id=1,
    )
    assert context.groups == frozenset({9})


def test_fold_is_deterministic() -> None:
    grants = [
        _allow(ScopeType.GROUP, 1),
        _allow(ScopeType.COUNTRY, 4),
        _deny(ScopeType.COUNTRY, 4),
        _allow(ScopeType.OPERATING_UNIT, 10),
    ]
    first = build_scope_context(grants, tenant_id=1)
    second = build_scope_context(list(reversed(grants)), tenant_id=1)
    assert first == second
    assert first.countries == frozenset()


HIERARCHY = OrgHierarchy(
    legal_entities={100: (1, 10), 101: (1, 20), 102: (2, 20)},
    operating_units={1000: 100, 1001: 100, 1002: 101, 1003: 102},
)


def test_group_allow_reaches_descendants() -> None:
    context = build_scope_context([_allow(ScopeType.GROUP, 1)], tenant_id=1, hierarchy=HIERARCHY)
    assert context.groups == frozenset({1})
    assert context.legal_entities == frozenset({100, 101})
    assert context.operating_units == frozenset({1000, 1001, 1002})
    assert context.countries == frozenset()


def test_country_allow_reaches_descendants_without_widening_groups() -> None:
    context = build_scope_context([_allow(ScopeType.COUNTRY, 20)], tenant_id=1, hierarchy=HIERARCHY)
    assert context.legal_entities == frozenset({101, 102})
    assert context.operating_units == frozenset({1002, 1003})
    assert context.groups == frozenset()


def test_legal_entity_deny_cascades_below_group_allow() -> None:
    context = build_scope_context(
        [_allow(ScopeType.GROUP, 1), _deny(ScopeType.LEGAL_ENTITY, 100)],
        tenant_id=1,
        hierarchy=HIERARCHY,
    )
    assert context.legal_entities == frozenset({101})
    assert context.operating_units == frozenset({1002})
    assert context.denied_legal_entities == frozenset({100})
    assert context.denied_operating_units == frozenset({1000, 1001})


def test_country_deny_cascades_to_entities_and_units() -> None:
    context = build_scope_context(
        [_allow(ScopeType.GROUP, 1), _allow(ScopeType.GROUP, 2), _deny(ScopeType.COUNTRY, 20)],
        tenant_id=1,
        hierarchy=HIERARCHY,
    )
    assert context.groups == frozenset({1, 2})
    assert context.legal_entities == frozenset({100})
    assert context.operating_units == frozenset({1000, 1001})
    assert context.is_denied(ScopeType.LEGAL_ENTITY, 102)


def test_tenant_allow_keeps_narrow_denies() -> None:
    context = build_scope_context(
        [_allow(ScopeType.TENANT, 1), _deny(ScopeType.GROUP, 2)],
        tenant_id=1,
        hierarchy=HIERARCHY,
    )
    assert context.tenant_wide
    assert context.denied_groups == frozenset({2})
    assert context.denied_legal_entities == frozenset({102})
    assert context.denied_operating_units == frozenset({1003})


@pytest.mark.parametrize("value", ["group", " Group ", ScopeType.GROUP])
def test_normalize_scope_type_accepts_case_variants(value: object) -> None:
    assert normalize_scope_type(value) == ScopeType.GROUP


@pytest.mark.parametrize("value", [None, "", "REGION"])
def test_normalize_scope_type_rejects_unknown(value: object) -> None:
    with pytest.raises(ValidationError):
        normalize_scope_type(value)


def test_normalize_effect_defaults_to_allow() -> None:
    assert normalize_effect(None) == ScopeEffect.ALLOW
    assert normalize_effect("deny") == ScopeEffect.DENY
    with pytest.raises(ValidationError):
        normalize_effect("MAYBE")


@pytest.mark.parametrize("value", [0, -1, "abc", "1.5", 2.5, True, None])
def test_parse_positive_id_rejects_invalid(value: object) -> None:
    with pytest.raises(ValidationError):
        parse_positive_id(value)


def test_parse_positive_id_accepts_digit_strings() -> None:
    assert parse_positive_id(12) == 12
    assert parse_positive_id("12") == 12
