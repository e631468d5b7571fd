"""Immutable SQL query description rendered for asyncpg.

Filters never touch SQL strings directly: they add clauses to a ``QuerySpec``,
and the query is rendered once into SQL with ``$n`` placeholders plus the
matching parameter list.
"""

from dataclasses import dataclass, replace
from typing import Any

from app.filters import QueryCompositionError

PLACEHOLDER = "?"


@dataclass(frozen=True)
class Clause:
    """SQL fragment using ``?`` markers for its bound parameters."""

    sql: str
    params: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        markers = self.sql.count(PLACEHOLDER)
        if markers != len(self.params):
            raise QueryCompositionError(
                f"clause '{self.sql}' has {markers} placeholders but {len(self.params)} parameters"
            )


@dataclass(frozen=True)
class QuerySpec:
    """Everything needed to build one SELECT statement."""

    select: str
    source: str
    where_clauses: tuple[Clause, ...] = ()
    group_by: str | None = None
    having_clauses: tuple[Clause, ...] = ()
    order_by: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None

    def where(self, sql: str, *params: Any) -> "QuerySpec":
        """Add a row predicate, AND-composed with the existing ones."""
        return replace(self, where_clauses=self.where_clauses + (Clause(sql, params),))

    def having(self, sql: str, *params: Any) -> "QuerySpec":
        """Add an aggregate condition; only valid on grouped queries."""
        if not self.group_by:
            raise QueryCompositionError("aggregate filter requires a grouped query")
        return replace(self, having_clauses=self.having_clauses + (Clause(sql, params),))

    def order(self, expression: str, desc: bool = False) -> "QuerySpec":
        """Append an ordering column, nulls sorted last in both directions."""
        direction = "DESC" if desc else "ASC"
        return replace(self, order_by=self.order_by + (f"{expression} {direction} NULLS LAST",))

    def with_limit(self, limit: int) -> "QuerySpec":
        return replace(self, limit=limit)

    def with_offset(self, offset: int) -> "QuerySpec":
        return replace(self, offset=offset)

    def _render_body(self, params: list[Any]) -> str:
        sql = f"SELECT {self.select} FROM {self.source}"
        if self.where_clauses:
            sql += " WHERE " + " AND ".join(f"({_bind(c, params)})" for c in self.where_clauses)
        if self.group_by:
            sql += f" GROUP BY {self.group_by}"
        if self.having_clauses:
            sql += " HAVING " + " AND ".join(f"({_bind(c, params)})" for c in self.having_clauses)
        return sql

    def render(self) -> tuple[str, list[Any]]:
        """Render the full statement. Returns (sql, params)."""
        params: list[Any] = []
        sql = self._render_body(params)
        if self.order_by:
            sql += " ORDER BY " + ", ".join(self.order_by)
        if self.limit is not None:
            params.append(self.limit)
            sql += f" LIMIT ${len(params)}"
        if self.offset is not None:
            params.append(self.offset)
            sql += f" OFFSET ${len(params)}"
        return sql, params

    def render_count(self) -> tuple[str, list[Any]]:
        """Render a COUNT(*) over the filtered rows, ignoring order and paging."""
        params: list[Any] = []
        body = self._render_body(params)
        return f"SELECT COUNT(*) FROM ({body}) sub", params


def _bind(clause: Clause, params: list[Any]) -> str:
    """Replace the clause's ``?`` markers with numbered placeholders."""
    pieces = clause.sql.split(PLACEHOLDER)
    out = [pieces[0]]
    for value, piece in zip(clause.params, pieces[1:]):
        params.append(value)
        out.append(f"${len(params)}")
        out.append(piece)
    return "".join(out)
