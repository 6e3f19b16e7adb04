import datetime
import time
from decimal import Decimal

import pytest

from backend.services.errors import EmptyResult, InvalidGeneratedQuery, QueryExecutionFailed
from datastore.db_utils import QueryExecutor, create_engine_for, normalize_value


def test_execute_returns_named_rows(executor):
    result = executor.execute("SELECT p.name, p.price FROM products p ORDER BY p.id")
    assert result.columns == ["name", "price"]
    assert result.rows[0] == {"name": "Keyboard", "price": 49.99}
    assert len(result) == 3


def test_date_grouping_query_runs_with_percent_literals(executor):
    result = executor.execute(
        "SELECT strftime('%Y-%m', o.created_at) AS month, COUNT(*) AS count "
        "FROM orders o GROUP BY month ORDER BY month"
    )
    assert result.rows == [{"month": "2025-01", "count": 2}, {"month": "2025-02", "count": 3}]


def test_colon_in_literal_is_not_a_bind_parameter(executor):
    result = executor.execute("SELECT o.id FROM orders o WHERE o.created_at > '2025-02-14 12:00:00'")
    assert [r["id"] for r in result.rows] == [4, 5]


def test_zero_rows_is_empty_result(executor):
    with pytest.raises(EmptyResult) as exc:
        executor.execute("SELECT p.name FROM products p WHERE p.price > 10000")
    assert exc.value.message == "Query returned no results"


def test_zero_rows_allowed_when_requested(executor):
    result = executor.execute("SELECT p.name FROM products p WHERE p.price > 10000", allow_empty=True)
    assert result.rows == []
    assert result.columns == ["name"]


def test_database_error_is_wrapped(executor):
    with pytest.raises(QueryExecutionFailed) as exc:
        executor.execute("SELECT x.nope FROM missing_table x")
    assert exc.value.message.startswith("Database query failed:")
    assert "missing_table" in exc.value.message


def test_failure_does_not_poison_next_query(executor):
    with pytest.raises(QueryExecutionFailed):
        executor.execute("SELECT bogus syntax here FROM")
    assert len(executor.execute("SELECT u.username FROM users u")) == 2


def test_write_statement_never_reaches_database(executor):
    with pytest.raises(InvalidGeneratedQuery):
        executor.execute("DELETE FROM products")
    assert len(executor.execute("SELECT p.id FROM products p")) == 3


def test_slow_query_times_out(executor, monkeypatch):
    def slow_fetch(sql):
        time.sleep(0.5)
        return None

    monkeypatch.setattr(executor, "fetch", slow_fetch)
    with pytest.raises(QueryExecutionFailed) as exc:
        executor.execute("SELECT p.id FROM products p", timeout_s=0.1)
    assert "timed out" in exc.value.message


def test_max_rows_caps_result(database_url):
    capped = QueryExecutor(create_engine_for(database_url, read_only=True), timeout_s=5.0, max_rows=2)
    assert len(capped.execute("SELECT o.id FROM orders o")) == 2


def test_engines_are_cached_per_mode(database_url):
    assert create_engine_for(database_url) is create_engine_for(database_url)
    assert create_engine_for(database_url, read_only=True) is not create_engine_for(database_url)


def test_normalize_value():
    assert normalize_value(Decimal("12.00")) == 12
    assert isinstance(normalize_value(Decimal("12.00")), int)
    assert normalize_value(Decimal("12.50")) == 12.5
    assert normalize_value(datetime.date(2025, 1, 5)) == "2025-01-05"
    assert normalize_value(datetime.datetime(2025, 1, 5, 10, 0)) == "2025-01-05T10:00:00"
    assert normalize_value(b"abc") == "abc"
    assert normalize_value(None) is None
    assert normalize_value("x") == "x"
