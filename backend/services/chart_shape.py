"""
Chart shape inference.

Turns an arbitrary tabular result (column names unknown ahead of time) plus
the request text into a chart type with parallel label/value sequences.
Rules are tried in order and the first one that applies wins.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from backend.services.errors import NoChartableData
from backend.services.query_validator import is_time_series_request

CHART_TYPES = ("bar", "line", "pie", "doughnut")

_NUMERIC_STRING = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


class ScalarKind(Enum):
    NUMBER = "number"
    STRING = "string"
    NULL = "null"


def scalar_kind(value: Any) -> ScalarKind:
    if value is None:
        return ScalarKind.NULL
    if isinstance(value, (int, float)):
        return ScalarKind.NUMBER
    return ScalarKind.STRING


def as_number(value: Any) -> Optional[float]:
    """Locale-independent numeric view of a cell, or None if it has none."""
    kind = scalar_kind(value)
    if kind is ScalarKind.NUMBER:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    if kind is ScalarKind.STRING:
        text = str(value).strip()
        if _NUMERIC_STRING.match(text):
            return int(text) if re.fullmatch(r"[+-]?\d+", text) else float(text)
    return None


@dataclass
class QueryResult:
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_rows(cls, rows: Sequence[Dict[str, Any]]) -> "QueryResult":
        rows = [dict(r) for r in rows]
        columns = list(rows[0].keys()) if rows else []
        return cls(columns=columns, rows=rows)

    def __len__(self) -> int:
        return len(self.rows)

    def column_values(self, column: str) -> List[Any]:
        return [row.get(column) for row in self.rows]

    def first_value(self, column: str) -> Any:
        # first non-null value decides what a column holds
        for value in self.column_values(column):
            if value is not None:
                return value
        return None

    def is_string_column(self, column: str) -> bool:
        return scalar_kind(self.first_value(column)) is ScalarKind.STRING

    def is_numeric_column(self, column: str) -> bool:
        return as_number(self.first_value(column)) is not None


@dataclass
class ChartShape:
    chart_type: str
    labels: List[str]
    data: List[float]
    title: str = ""


class ChartShapeInferrer:
    def __init__(self, strict_numeric: bool = False):
        self.strict_numeric = strict_numeric
        self._rules: List[Tuple[str, Callable[[QueryResult, str, str], Optional[ChartShape]]]] = [
            ("time_series", self._time_series),
            ("single_row_multi_column", self._single_row_multi_column),
            ("single_count", self._single_count),
            ("listing", self._listing),
        ]

    # -- helpers ---------------------------------------------------------

    def _coerce(self, value: Any, column: str) -> float:
        number = as_number(value)
        if number is not None:
            return number
        if self.strict_numeric:
            raise NoChartableData(f"Non-numeric value {value!r} in column '{column}'")
        return 0

    @staticmethod
    def _label(value: Any) -> str:
        return "null" if value is None else str(value)

    @staticmethod
    def _fallback_value_column(result: QueryResult) -> str:
        return result.columns[1] if len(result.columns) > 1 else result.columns[0]

    def _value_column(self, result: QueryResult, exclude: Optional[str]) -> str:
        for col in result.columns:
            if col != exclude and result.is_numeric_column(col):
                return col
        return self._fallback_value_column(result)

    def _series(self, result: QueryResult, label_col: str, value_col: str) -> Tuple[List[str], List[float]]:
        labels = [self._label(v) for v in result.column_values(label_col)]
        data = [self._coerce(v, value_col) for v in result.column_values(value_col)]
        return labels, data

    # -- rules -----------------------------------------------------------

    def _time_series(self, result: QueryResult, request_text: str, sql: str) -> Optional[ChartShape]:
        if not is_time_series_request(request_text):
            return None
        label_col = next(
            (c for c in result.columns if "date" in c.lower() or "time" in c.lower()),
            None,
        )
        if label_col is None:
            label_col = next((c for c in result.columns if result.is_string_column(c)), result.columns[0])
        labels, data = self._series(result, label_col, self._value_column(result, exclude=label_col))
        return ChartShape("line", labels, data)

    def _single_row_multi_column(self, result: QueryResult, request_text: str, sql: str) -> Optional[ChartShape]:
        if len(result) != 1 or len(result.columns) <= 1:
            return None
        row = result.rows[0]
        numeric = [c for c in result.columns if as_number(row.get(c)) is not None]
        return ChartShape("doughnut", list(numeric), [as_number(row[c]) for c in numeric])

    def _single_count(self, result: QueryResult, request_text: str, sql: str) -> Optional[ChartShape]:
        if len(result) != 1 or len(result.columns) != 1 or "COUNT" not in (sql or "").upper():
            return None
        column = result.columns[0]
        return ChartShape("pie", [column], [self._coerce(result.rows[0].get(column), column)])

    def _listing(self, result: QueryResult, request_text: str, sql: str) -> Optional[ChartShape]:
        label_col = next((c for c in result.columns if result.is_string_column(c)), result.columns[0])
        labels, data = self._series(result, label_col, self._value_column(result, exclude=label_col))
        return ChartShape("bar", labels, data)

    # -- entry point -----------------------------------------------------

    def infer(self, result: QueryResult, request_text: str, sql: str = "") -> ChartShape:
        if not result.rows or not result.columns:
            raise NoChartableData("No valid data found for chart generation")

        shape: Optional[ChartShape] = None
        for _name, rule in self._rules:
            shape = rule(result, request_text, sql)
            if shape is not None:
                break

        if shape is None or not shape.labels or not shape.data:
            raise NoChartableData("No valid data found for chart generation")
        if len(shape.labels) != len(shape.data):
            raise NoChartableData("Mismatch between labels and data arrays")
        shape.title = request_text
        return shape


def infer(result: QueryResult, request_text: str, sql: str = "", strict_numeric: bool = False) -> ChartShape:
    return ChartShapeInferrer(strict_numeric=strict_numeric).infer(result, request_text, sql)
