"""
Extraction and structural validation of model-generated SQL.

Checks run in a fixed order and the first failure wins:
1) a SELECT line exists and starts with SELECT
2) read-only whitelist (no DDL/DML, single statement)
3) intent-shape rules keyed off the user's request text
4) alias consistency for the known table aliases
5) only known tables in FROM/JOIN
"""

from __future__ import annotations

import logging
import re
from typing import Set

from backend.services.errors import InvalidGeneratedQuery
from backend.services.prompts import KNOWN_TABLES, TABLE_ALIASES

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "drop", "delete", "update", "insert", "alter", "truncate",
    "create", "grant", "revoke",
)

TIME_SERIES_PATTERN = re.compile(
    r"per month|over time|by date|monthly|daily|weekly|yearly|trend",
    re.IGNORECASE,
)
COUNT_INTENT_PATTERN = re.compile(r"\b(total|count|many)\b", re.IGNORECASE)
CONDITIONAL_PATTERN = re.compile(r"greater than|less than", re.IGNORECASE)

DATE_FUNCTION_PATTERN = re.compile(
    r"\b(DATE_FORMAT|STRFTIME|TO_CHAR|DATE_TRUNC|EXTRACT|YEAR|MONTH|DATE|DAY|WEEK)\s*\(",
    re.IGNORECASE,
)
COUNT_ALIAS_PATTERN = re.compile(r"\bCOUNT\s*\([^)]*\)\s+AS\s+[`\"]?count[`\"]?(?![A-Za-z0-9_])", re.IGNORECASE)

_SELECT_LINE = re.compile(r"^\s*SELECT\s+.*$", re.IGNORECASE | re.MULTILINE)


def is_time_series_request(text: str) -> bool:
    return TIME_SERIES_PATTERN.search(text or "") is not None


def is_count_request(text: str) -> bool:
    q = (text or "").lower()
    if "total price" in q or is_time_series_request(q):
        return False
    return COUNT_INTENT_PATTERN.search(q) is not None


def _strip_fence(text: str) -> str:
    raw = (text or "").strip()
    m = re.search(r"```(?:sql)?\s*(.*?)```", raw, flags=re.IGNORECASE | re.DOTALL)
    return m.group(1).strip() if m else raw


def _strip_literals(sql: str) -> str:
    # Quoted values must not be mistaken for aliases, tables or keywords.
    cleaned = re.sub(r"(?is)/\*.*?\*/", " ", sql or "")
    cleaned = re.sub(r"(?im)--.*?$", " ", cleaned)
    cleaned = re.sub(r"(?s)'(?:''|\\.|[^'\\])*'", "''", cleaned)
    cleaned = re.sub(r'(?s)"(?:""|[^"])*"', '""', cleaned)
    return cleaned


def extract_select(raw_text: str) -> str:
    m = _SELECT_LINE.search(_strip_fence(raw_text))
    if not m:
        raise InvalidGeneratedQuery("No valid SELECT query found")
    return m.group(0).strip().strip("`").strip().rstrip(";").strip()


def extract_sql_tables(sql: str) -> Set[str]:
    out = set()
    # FROM inside EXTRACT(MONTH FROM col), TRIM(...) or SUBSTRING(...) is not a table.
    cleaned = re.sub(r"(?i)\b(EXTRACT|TRIM|SUBSTRING)\s*\([^)]*\)", r"\1()", _strip_literals(sql))
    # schema-qualified names stay qualified so they never pass as a known table
    for m in re.finditer(r"(?i)\b(?:FROM|JOIN)\s+([`A-Za-z0-9_\.]+)", cleaned):
        name = m.group(1).replace("`", "").strip(".").lower()
        if name:
            out.add(name)
    return out


def check_read_only(sql: str) -> None:
    """Reject anything that is not a single SELECT statement."""
    text = (sql or "").strip()
    if not text.upper().startswith("SELECT"):
        raise InvalidGeneratedQuery("Only SELECT queries are allowed")
    cleaned = _strip_literals(text)
    for kw in FORBIDDEN_KEYWORDS:
        if re.search(rf"(?i)\b{kw}\b", cleaned):
            raise InvalidGeneratedQuery(f"Only SELECT queries are allowed (found {kw.upper()})")
    parts = [p for p in cleaned.split(";") if p.strip()]
    if len(parts) > 1:
        raise InvalidGeneratedQuery("Only a single SELECT statement is allowed")


def check_intent_shape(sql: str, user_request: str) -> None:
    upper = sql.upper()
    if is_count_request(user_request):
        if "COUNT" not in upper:
            raise InvalidGeneratedQuery("Expected COUNT query for total request")
        if not COUNT_ALIAS_PATTERN.search(sql):
            raise InvalidGeneratedQuery('COUNT query must have alias "count"')

    if is_time_series_request(user_request):
        if not re.search(r"\bGROUP\s+BY\b", upper):
            raise InvalidGeneratedQuery("Expected GROUP BY clause for time-series request")
        if not DATE_FUNCTION_PATTERN.search(sql):
            raise InvalidGeneratedQuery("Expected date formatting function for time-series request")

    if CONDITIONAL_PATTERN.search(user_request or "") and not re.search(r"\bWHERE\b", upper):
        raise InvalidGeneratedQuery("Expected WHERE clause for conditional request")


def check_table_aliases(sql: str) -> None:
    cleaned = _strip_literals(sql)
    for table, alias in TABLE_ALIASES.items():
        used = re.search(rf"(?i)(?<![A-Za-z0-9_\.]){alias}\.", cleaned)
        if not used:
            continue
        bound = re.search(rf"(?i)\b{table}\s+(?:AS\s+)?{alias}\b", cleaned)
        if not bound:
            raise InvalidGeneratedQuery(
                f"Query uses alias without proper table reference: {table.upper()} {alias.upper()}"
            )


def check_known_tables(sql: str) -> None:
    tables = extract_sql_tables(sql)
    unknown = sorted(t for t in tables if t not in KNOWN_TABLES)
    if unknown:
        raise InvalidGeneratedQuery(f"Query references unknown table: {', '.join(unknown)}")
    if not tables:
        raise InvalidGeneratedQuery("Query must reference products, users, orders, or order_products")


def validate(raw_text: str, user_request: str) -> str:
    query = extract_select(raw_text)
    if not query.upper().startswith("SELECT"):
        raise InvalidGeneratedQuery("Response is not a valid SELECT query")
    check_read_only(query)
    check_intent_shape(query, user_request)
    check_table_aliases(query)
    check_known_tables(query)
    logger.debug("validated_sql: %s", query)
    return query
