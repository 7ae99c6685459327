"""
Typed Store Statements

DESIGN DECISION: Repositories describe what they want with small
immutable objects instead of SQL strings. Each condition knows how to
render itself as a parameterized SQL fragment AND how to test a row in
memory, so the SQLite backend and the document backend share one
definition of what a filter means.

Values are always bound as parameters. Table and column names are
checked against the schema before anything runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence, Union


def _plain(value: Any) -> Any:
    """Booleans are stored as 0/1."""
    if isinstance(value, bool):
        return int(value)
    return value


# =============================================================================
# CONDITIONS
# =============================================================================

class Condition(ABC):
    """A WHERE clause building block."""

    @abstractmethod
    def to_sql(self) -> tuple[str, list]:
        """Render as a SQL fragment with '?' placeholders and its parameters."""
        pass

    @abstractmethod
    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate against an in-memory row with SQL semantics."""
        pass

    @abstractmethod
    def fields(self) -> Iterable[str]:
        """Column names referenced by this condition."""
        pass

    def __and__(self, other: "Condition") -> "Condition":
        return And(self, other)

    def __or__(self, other: "Condition") -> "Condition":
        return Or(self, other)


@dataclass(frozen=True)
class Eq(Condition):
    field: str
    value: Any

    def to_sql(self) -> tuple[str, list]:
        if self.value is None:
            return f"{self.field} IS NULL", []
        return f"{self.field} = ?", [_plain(self.value)]

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = _plain(row.get(self.field))
        if self.value is None:
            return current is None
        return current is not None and current == _plain(self.value)

    def fields(self) -> Iterable[str]:
        return (self.field,)


@dataclass(frozen=True)
class In(Condition):
    field: str
    values: tuple

    def __init__(self, field: str, values: Iterable[Any]):
        object.__setattr__(self, "field", field)
        object.__setattr__(self, "values", tuple(_plain(v) for v in values))

    def to_sql(self) -> tuple[str, list]:
        if not self.values:
            return "1 = 0", []
        placeholders = ", ".join("?" for _ in self.values)
        return f"{self.field} IN ({placeholders})", list(self.values)

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = _plain(row.get(self.field))
        return current is not None and current in self.values

    def fields(self) -> Iterable[str]:
        return (self.field,)


@dataclass(frozen=True)
class _Comparison(Condition):
    field: str
    value: Any

    operator = "="

    def to_sql(self) -> tuple[str, list]:
        return f"{self.field} {self.operator} ?", [_plain(self.value)]

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = _plain(row.get(self.field))
        if current is None or self.value is None:
            return False
        return self._compare(current, _plain(self.value))

    @abstractmethod
    def _compare(self, left: Any, right: Any) -> bool:
        """Order two non-null values."""
        pass

    def fields(self) -> Iterable[str]:
        return (self.field,)


class Gt(_Comparison):
    operator = ">"

    def _compare(self, left: Any, right: Any) -> bool:
        return left > right


class Gte(_Comparison):
    operator = ">="

    def _compare(self, left: Any, right: Any) -> bool:
        return left >= right


class Lt(_Comparison):
    operator = "<"

    def _compare(self, left: Any, right: Any) -> bool:
        return left < right


class Lte(_Comparison):
    operator = "<="

    def _compare(self, left: Any, right: Any) -> bool:
        return left <= right


@dataclass(frozen=True)
class Contains(Condition):
    """Case-insensitive substring match."""

    field: str
    text: str

    def to_sql(self) -> tuple[str, list]:
        escaped = (
            self.text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        return f"{self.field} LIKE ? ESCAPE '\\'", [f"%{escaped}%"]

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.field)
        if current is None:
            return False
        return self.text.lower() in str(current).lower()

    def fields(self) -> Iterable[str]:
        return (self.field,)


@dataclass(frozen=True)
class _Combinator(Condition):
    conditions: tuple

    joiner = "AND"

    def __init__(self, *conditions: Condition):
        object.__setattr__(self, "conditions", tuple(c for c in conditions if c is not None))

    def to_sql(self) -> tuple[str, list]:
        if not self.conditions:
            return ("1 = 1" if self.joiner == "AND" else "1 = 0"), []
        parts, params = [], []
        for condition in self.conditions:
            sql, values = condition.to_sql()
            parts.append(f"({sql})")
            params.extend(values)
        return f" {self.joiner} ".join(parts), params

    def fields(self) -> Iterable[str]:
        for condition in self.conditions:
            yield from condition.fields()


class And(_Combinator):
    joiner = "AND"

    def matches(self, row: Mapping[str, Any]) -> bool:
        return all(c.matches(row) for c in self.conditions)


class Or(_Combinator):
    joiner = "OR"

    def matches(self, row: Mapping[str, Any]) -> bool:
        return any(c.matches(row) for c in self.conditions)


# =============================================================================
# STATEMENTS
# =============================================================================

@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Select:
    """Read rows from one table."""

    table: str
    where: Optional[Condition] = None
    order_by: tuple[OrderBy, ...] = ()
    limit: Optional[int] = None

    def fields(self) -> Iterable[str]:
        if self.where is not None:
            yield from self.where.fields()
        for order in self.order_by:
            yield order.field


@dataclass(frozen=True)
class Insert:
    """
    Insert one row.

    With replace=True, rows that collide on the primary key or any
    unique constraint are removed first (SQLite INSERT OR REPLACE).
    """

    table: str
    values: Mapping[str, Any]
    replace: bool = False

    def fields(self) -> Iterable[str]:
        return self.values.keys()


@dataclass(frozen=True)
class Update:
    table: str
    values: Mapping[str, Any]
    where: Condition

    def fields(self) -> Iterable[str]:
        yield from self.values.keys()
        yield from self.where.fields()


@dataclass(frozen=True)
class Delete:
    table: str
    where: Condition

    def fields(self) -> Iterable[str]:
        return self.where.fields()


@dataclass(frozen=True)
class Ensure:
    """
    Transaction guard.

    Aborts the surrounding transaction (raising EnsureFailedError) unless
    the select finds rows (exists=True) or finds none (exists=False).
    Only valid inside run_transaction.
    """

    query: Select
    exists: bool = False
    message: str = "Transaction precondition failed"

    @property
    def table(self) -> str:
        return self.query.table

    def fields(self) -> Iterable[str]:
        return self.query.fields()


Statement = Union[Insert, Update, Delete, Ensure]


def order(*specs: str) -> tuple[OrderBy, ...]:
    """
    Shorthand for ORDER BY clauses.

    order("display_order", "name") or order("-updated_at") for descending.
    """
    return tuple(
        OrderBy(spec[1:], descending=True) if spec.startswith("-") else OrderBy(spec)
        for spec in specs
    )


def all_of(conditions: Sequence[Optional[Condition]]) -> Optional[Condition]:
    """AND together the non-empty conditions; None when there are none."""
    present = [c for c in conditions if c is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return And(*present)
