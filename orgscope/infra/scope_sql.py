from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import and_, false, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from orgscope.domain.scope import AnyOf, Excluding, MatchAll, MatchNone, ScopeMatch, ScopePredicate, ScopeType


def render_scope_columns(
    predicate: ScopePredicate,
    type_column: Any,
    id_column: Any,
) -> ColumnElement[bool]:
    """Render against rows tagged with a ``(scope_type, scope_id)`` pair."""
    if isinstance(predicate, MatchAll):
        return true()
    if isinstance(predicate, MatchNone):
        return false()
    if isinstance(predicate, ScopeMatch):
        return and_(
            type_column == predicate.scope_type.value,
            id_column.in_(sorted(predicate.ids)),
        )
    if isinstance(predicate, AnyOf):
        return or_(*(render_scope_columns(clause, type_column, id_column) for clause in predicate.clauses))
    if isinstance(predicate, Excluding):
        # untagged rows are never excluded
        kept = [
            or_(
                type_column.is_(None),
                id_column.is_(None),
                not_(render_scope_columns(clause, type_column, id_column)),
            )
            for clause in predicate.exclusions
        ]
        return and_(render_scope_columns(predicate.base, type_column, id_column), *kept)
    raise TypeError(f"unsupported scope predicate: {predicate!r}")


def render_dimension_columns(
    predicate: ScopePredicate,
    columns: Mapping[ScopeType, Any],
) -> ColumnElement[bool]:
    """Render against a resource carrying one column per dimension.

    A clause for a dimension the resource has no column for matches nothing;
    an exclusion for such a dimension removes nothing.
    """
    if isinstance(predicate, MatchAll):
        return true()
    if isinstance(predicate, MatchNone):
        return false()
    if isinstance(predicate, ScopeMatch):
        column = columns.get(predicate.scope_type)
        if column is None:
            return false()
        return column.in_(sorted(predicate.ids))
    if isinstance(predicate, AnyOf):
        return or_(*(render_dimension_columns(clause, columns) for clause in predicate.clauses))
    if isinstance(predicate, Excluding):
        kept = [
            not_(columns[clause.scope_type].in_(sorted(clause.ids)))
            for clause in predicate.exclusions
            if columns.get(clause.scope_type) is not None
        ]
        return and_(render_dimension_columns(predicate.base, columns), *kept)
    raise TypeError(f"unsupported scope predicate: {predicate!r}")
