"""Filter expressions for catalog queries and the interpreter that compiles them.

A filter names a logical field; the caller supplies the whitelist mapping
logical fields to SQL expressions, so user input never reaches the SQL text.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Equals(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["equals"] = "equals"
    field: str
    value: Any


class Range(BaseModel):
    """Inclusive bounds; either side may be omitted."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["range"] = "range"
    field: str
    low: Optional[Any] = None
    high: Optional[Any] = None


class InSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["in_set"] = "in_set"
    field: str
    values: tuple[Any, ...]


class Like(BaseModel):
    """Case-insensitive substring match across one or more fields."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["like"] = "like"
    fields: tuple[str, ...]
    term: str


FilterExpr = Annotated[Union[Equals, Range, InSet, Like], Field(discriminator="kind")]


class UnknownFilterField(ValueError):
    pass


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _column(columns: dict[str, str], name: str) -> str:
    try:
        return columns[name]
    except KeyError:
        raise UnknownFilterField(name) from None


def compile_filters(
    filters: list[FilterExpr],
    columns: dict[str, str],
    prefix: str = "f",
) -> tuple[list[str], dict[str, Any]]:
    """Compile filters into ``WHERE`` clauses and bound parameters.

    Returns ``(clauses, params)``; callers join the clauses with ``AND``.
    Raises UnknownFilterField when a filter names a field outside ``columns``.
    """
    clauses: list[str] = []
    params: dict[str, Any] = {}

    for i, expr in enumerate(filters):
        p = f"{prefix}{i}"
        if isinstance(expr, Equals):
            clauses.append(f"{_column(columns, expr.field)} = :{p}")
            params[p] = expr.value
        elif isinstance(expr, Range):
            col = _column(columns, expr.field)
            if expr.low is not None:
                clauses.append(f"{col} >= :{p}_lo")
                params[f"{p}_lo"] = expr.low
            if expr.high is not None:
                clauses.append(f"{col} <= :{p}_hi")
                params[f"{p}_hi"] = expr.high
        elif isinstance(expr, InSet):
            col = _column(columns, expr.field)
            if not expr.values:
                clauses.append("FALSE")
                continue
            names = []
            for j, value in enumerate(expr.values):
                names.append(f":{p}_{j}")
                params[f"{p}_{j}"] = value
            clauses.append(f"{col} IN ({', '.join(names)})")
        elif isinstance(expr, Like):
            cols = [_column(columns, f) for f in expr.fields]
            params[p] = f"%{_escape_like(expr.term)}%"
            ors = " OR ".join(f"{c} ILIKE :{p}" for c in cols)
            clauses.append(f"({ors})")
        else:
            raise TypeError(f"Unsupported filter expression: {expr!r}")

    return clauses, params
