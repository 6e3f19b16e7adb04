"""
Spreadsheet analysis: chart + short summary for the first sheet of an Excel file.
"""
from __future__ import annotations

import datetime
import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from backend.services.chart_pipeline import ChartPayload
from backend.services.chart_shape import ChartShape, as_number
from backend.services.completion_client import CompletionClient
from backend.services.errors import InvalidRequest, NoChartableData
from backend.services.prompts import build_summary_prompt
from backend.services.query_validator import is_time_series_request
from backend.services.runtime import log_event

logger = logging.getLogger("spreadsheet")

ALLOWED_EXTENSIONS = {".xlsx", ".xls"}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
SUMMARY_TEMPERATURE = 0.5
SUMMARY_MAX_TOKENS = 100

_TOTAL_PATTERN = re.compile(r"total|count|sum", re.IGNORECASE)


def _to_jsonable(x: Any) -> Any:
    if isinstance(x, (pd.Timestamp, datetime.datetime, datetime.date)):
        return x.isoformat()
    if isinstance(x, np.integer):
        return int(x)
    if isinstance(x, np.floating):
        return None if np.isnan(x) else float(x)
    if isinstance(x, np.bool_):
        return bool(x)
    return x


def read_sheet(content: bytes, filename: str) -> pd.DataFrame:
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidRequest("Only Excel files (.xlsx, .xls) are allowed")
    if len(content) > MAX_UPLOAD_BYTES:
        raise InvalidRequest("Excel file exceeds the 10 MB limit")
    try:
        return pd.read_excel(io.BytesIO(content), sheet_name=0)
    except Exception as exc:
        raise InvalidRequest(f"Failed to read Excel file: {exc}") from exc


def sheet_records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    frame = frame.astype(object).where(pd.notna(frame), None)
    return [
        {str(k): _to_jsonable(v) for k, v in row.items()}
        for row in frame.to_dict(orient="records")
    ]


def _looks_like_date(value: Any) -> bool:
    if not isinstance(value, str) or as_number(value) is not None:
        return False
    return not pd.isna(pd.to_datetime(value, errors="coerce"))


def extract_sheet_chart(rows: List[Dict[str, Any]], user_request: str) -> ChartShape:
    keys = list(rows[0].keys())

    numeric_columns = [k for k in keys if any(as_number(r.get(k)) is not None for r in rows)]
    string_columns = [
        k for k in keys
        if "date" not in k.lower() and any(isinstance(r.get(k), str) for r in rows)
    ]
    date_columns = [
        k for k in keys
        if "date" in k.lower() or "time" in k.lower() or any(_looks_like_date(r.get(k)) for r in rows)
    ]

    def _values(column: str) -> List[float]:
        return [as_number(r.get(column)) or 0 for r in rows]

    if _TOTAL_PATTERN.search(user_request or ""):
        if not numeric_columns:
            raise InvalidRequest("No numeric column found for total analysis")
        column = numeric_columns[0]
        shape = ChartShape("pie", [column], [sum(_values(column))])
    elif is_time_series_request(user_request):
        if not date_columns or not numeric_columns:
            raise InvalidRequest("Date or numeric column missing for time analysis")
        shape = ChartShape(
            "line",
            [str(r.get(date_columns[0])) for r in rows],
            _values(numeric_columns[0]),
        )
    else:
        if not string_columns or not numeric_columns:
            raise InvalidRequest("String or numeric column missing for analysis")
        shape = ChartShape(
            "bar",
            [str(r.get(string_columns[0])) for r in rows],
            _values(numeric_columns[0]),
        )

    if not shape.labels or not shape.data:
        raise NoChartableData("No valid data extracted from Excel")
    if len(shape.labels) != len(shape.data):
        raise NoChartableData("Data consistency error in Excel analysis")
    shape.title = user_request
    return shape


def analyze_sheet(frame: pd.DataFrame, user_request: str, completion: CompletionClient) -> Dict[str, Any]:
    if not (user_request or "").strip():
        raise InvalidRequest("Prompt is required")
    rows = sheet_records(frame)
    if not rows:
        raise InvalidRequest("Excel file is empty or invalid")

    shape = extract_sheet_chart(rows, user_request)
    summary = completion.complete(
        build_summary_prompt(user_request, list(rows[0].keys()), rows),
        temperature=SUMMARY_TEMPERATURE,
        max_tokens=SUMMARY_MAX_TOKENS,
    ).strip()
    log_event(logger, logging.INFO, "sheet_analyzed", rows=len(rows), chart_type=shape.chart_type)
    return {
        "chartData": ChartPayload.from_shape(shape, prompt=user_request, query=None),
        "summary": summary,
    }
