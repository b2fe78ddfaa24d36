"""The one visibility predicate shared by every retrieval query.

Renders an :class:`AccessScope` as a parameterized SQL fragment over the
``artifacts`` table.  Document-only, article-only, combined and lexical
queries all call :func:`scope_predicate`; none of them build scope filters
by hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from kbrag.models.artifact import ArtifactKind
from kbrag.models.identity import AccessScope


@dataclass(frozen=True)
class SqlFragment:
    """A ``WHERE`` fragment and its positional parameters."""

    sql: str
    params: list[Any] = field(default_factory=list)

    def __and__(self, other: SqlFragment) -> SqlFragment:
        return SqlFragment(f"({self.sql}) AND ({other.sql})", [*self.params, *other.params])


def scope_predicate(scope: AccessScope, alias: str = "a") -> SqlFragment:
    """Visibility filter for *scope* against the ``artifacts`` table aliased *alias*.

    Always: same organization and processed.  Division-scoped callers
    additionally see only their own division plus organization-wide rows
    (``division_id IS NULL``); a division-scoped caller without a division
    sees organization-wide rows only.
    """
    clauses = [f"{alias}.organization_id = ?", f"{alias}.is_processed = 1"]
    params: list[Any] = [scope.organization_id]
    if scope.division_scoped:
        if scope.division_id:
            clauses.append(f"({alias}.division_id = ? OR {alias}.division_id IS NULL)")
            params.append(scope.division_id)
        else:
            clauses.append(f"{alias}.division_id IS NULL")
    return SqlFragment(" AND ".join(clauses), params)


def kind_predicate(kinds: tuple[ArtifactKind, ...], alias: str = "a") -> SqlFragment:
    """Restrict to the given artifact kinds."""
    if not kinds:
        return SqlFragment("0")
    placeholders = ", ".join("?" for _ in kinds)
    return SqlFragment(f"{alias}.kind IN ({placeholders})", [k.value for k in kinds])
