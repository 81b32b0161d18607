import datetime as dt
import re
from enum import Enum
from typing import Any
from uuid import UUID

_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "ilike", "is")

Condition = tuple[str, str, Any]


def encode_value(value: Any) -> str:
    """Render a Python value the way PostgREST expects it in a filter."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return str(value)


def _compact_columns(columns: str) -> str:
    return re.sub(r"\s+", "", columns)


def _render(column: str, op: str, value: Any, *, nested: bool) -> str:
    if op == "in":
        rendered = "(" + ",".join(encode_value(v) for v in value) + ")"
    else:
        rendered = encode_value(value)
    sep = "." if nested else "="
    return f"{column}{sep}{op}.{rendered}"


class Query:
    """A PostgREST read/filter description.

    Filter methods return ``self`` so calls chain the way the Supabase
    client builders do::

        Query("id, start_time").eq("staff_id", staff_id).order("start_time")

    The same object renders to query parameters for the REST adapter and
    evaluates itself against plain dict rows for the in-memory adapter.
    """

    def __init__(self, columns: str = "*") -> None:
        self.columns = _compact_columns(columns) or "*"
        self.filters: list[Condition] = []
        self.or_groups: list[list[Condition]] = []
        self.orders: list[tuple[str, bool]] = []
        self.limit_count: int | None = None

    def _add(self, column: str, op: str, value: Any) -> "Query":
        self.filters.append((column, op, value))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        return self._add(column, "eq", value)

    def neq(self, column: str, value: Any) -> "Query":
        return self._add(column, "neq", value)

    def gt(self, column: str, value: Any) -> "Query":
        return self._add(column, "gt", value)

    def gte(self, column: str, value: Any) -> "Query":
        return self._add(column, "gte", value)

    def lt(self, column: str, value: Any) -> "Query":
        return self._add(column, "lt", value)

    def lte(self, column: str, value: Any) -> "Query":
        return self._add(column, "lte", value)

    def in_(self, column: str, values: list[Any]) -> "Query":
        return self._add(column, "in", list(values))

    def ilike(self, column: str, pattern: str) -> "Query":
        return self._add(column, "ilike", pattern)

    def is_(self, column: str, value: bool | None) -> "Query":
        return self._add(column, "is", value)

    def or_(self, *conditions: Condition) -> "Query":
        for _, op, _ in conditions:
            if op not in _OPERATORS:
                raise ValueError(f"Unsupported operator: {op}")
        self.or_groups.append(list(conditions))
        return self

    def order(self, column: str, *, ascending: bool = True) -> "Query":
        self.orders.append((column, ascending))
        return self

    def limit(self, count: int) -> "Query":
        self.limit_count = count
        return self

    def filter_params(self) -> list[tuple[str, str]]:
        """Filters only, for writes (PATCH/DELETE) that take no select list."""
        params: list[tuple[str, str]] = []
        for column, op, value in self.filters:
            key, rendered = _render(column, op, value, nested=False).split("=", 1)
            params.append((key, rendered))
        for group in self.or_groups:
            inner = ",".join(_render(c, op, v, nested=True) for c, op, v in group)
            params.append(("or", f"({inner})"))
        return params

    def to_params(self) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = [("select", self.columns)]
        params.extend(self.filter_params())
        if self.orders:
            params.append(
                ("order", ",".join(f"{c}.{'asc' if asc else 'desc'}" for c, asc in self.orders))
            )
        if self.limit_count is not None:
            params.append(("limit", str(self.limit_count)))
        return params

    # In-memory evaluation

    def matches(self, row: dict[str, Any]) -> bool:
        if not all(_condition_holds(row, c) for c in self.filters):
            return False
        return all(any(_condition_holds(row, c) for c in group) for group in self.or_groups)

    def apply(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        result = [row for row in rows if self.matches(row)]
        for column, ascending in reversed(self.orders):
            present = [r for r in result if r.get(column) is not None]
            missing = [r for r in result if r.get(column) is None]
            present.sort(key=lambda r: _sort_key(r[column]), reverse=not ascending)
            result = present + missing
        if self.limit_count is not None:
            result = result[: self.limit_count]
        return result


def _sort_key(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value, "")
    return (1, 0, encode_value(value))


def _coerce(actual: Any, expected: Any) -> tuple[Any, Any]:
    if isinstance(actual, bool):
        return actual, encode_value(expected) == "true"
    if isinstance(actual, (int, float)):
        try:
            return actual, float(encode_value(expected))
        except ValueError:
            return encode_value(actual), encode_value(expected)
    return encode_value(actual), encode_value(expected)


def _condition_holds(row: dict[str, Any], condition: Condition) -> bool:
    column, op, expected = condition
    actual = row.get(column)
    if op == "is":
        return actual is expected or encode_value(actual) == encode_value(expected)
    if op == "in":
        return encode_value(actual) in {encode_value(v) for v in expected}
    if actual is None:
        # SQL comparison with NULL is never true
        return False
    if op == "ilike":
        regex = re.escape(str(expected)).replace("%", ".*").replace("_", ".")
        return re.fullmatch(regex, str(actual), flags=re.IGNORECASE) is not None
    left, right = _coerce(actual, expected)
    if op == "eq":
        return left == right
    if op == "neq":
        return left != right
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    if op == "lte":
        return left <= right
    raise ValueError(f"Unsupported operator: {op}")
