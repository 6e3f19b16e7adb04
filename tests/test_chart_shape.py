import pytest

from backend.services.chart_shape import (
    ChartShapeInferrer,
    QueryResult,
    ScalarKind,
    as_number,
    infer,
    scalar_kind,
)
from backend.services.errors import NoChartableData


def _result(*rows):
    return QueryResult.from_rows(list(rows))


def test_single_count_row_is_a_pie():
    shape = infer(_result({"count": 42}), "total products", "SELECT COUNT(*) AS count FROM products p")
    assert shape.chart_type == "pie"
    assert shape.labels == ["count"]
    assert shape.data == [42]
    assert shape.title == "total products"


def test_time_series_request_is_a_line():
    result = _result({"month": "2025-01", "count": 5}, {"month": "2025-02", "count": 8})
    shape = infer(result, "show orders per month in 2025", "SELECT DATE_FORMAT(...) AS month, COUNT(*) AS count")
    assert shape.chart_type == "line"
    assert shape.labels == ["2025-01", "2025-02"]
    assert shape.data == [5, 8]


def test_time_series_wins_over_single_row():
    shape = infer(_result({"month": "2025-01", "count": 5}), "orders per month", "SELECT COUNT(*) ...")
    assert shape.chart_type == "line"
    assert shape.labels == ["2025-01"]


def test_time_series_prefers_date_named_column():
    result = _result(
        {"status": "paid", "order_date": "2025-01-01", "total": 3},
        {"status": "open", "order_date": "2025-01-02", "total": 4},
    )
    shape = infer(result, "orders by date", "")
    assert shape.labels == ["2025-01-01", "2025-01-02"]
    assert shape.data == [3, 4]


def test_time_series_value_column_skips_numeric_label_column():
    result = _result({"year": 2024, "orders": 10}, {"year": 2025, "orders": 12})
    shape = infer(result, "yearly orders", "")
    assert shape.labels == ["2024", "2025"]
    assert shape.data == [10, 12]


def test_single_row_with_several_columns_is_a_doughnut():
    row = {"avg_price": 120.5, "min_price": 10, "max_price": 500}
    shape = infer(_result(row), "average, min, max price of products", "SELECT AVG(p.price) AS avg_price ...")
    assert shape.chart_type == "doughnut"
    assert shape.labels == ["avg_price", "min_price", "max_price"]
    assert shape.data == [120.5, 10, 500]


def test_doughnut_keeps_only_numeric_columns():
    shape = infer(_result({"name": "Keyboard", "price": "49.99", "stock": 3}), "keyboard details", "")
    assert shape.labels == ["price", "stock"]
    assert shape.data == [49.99, 3]


def test_doughnut_without_numeric_columns_is_not_chartable():
    with pytest.raises(NoChartableData):
        infer(_result({"username": "alice", "email": "alice@example.com"}), "user alice", "")


def test_listing_is_a_bar():
    result = _result({"name": "Keyboard", "price": 49.99}, {"name": "Monitor", "price": 199.0})
    shape = infer(result, "get all products", "SELECT p.name, p.price FROM products p")
    assert shape.chart_type == "bar"
    assert shape.labels == ["Keyboard", "Monitor"]
    assert shape.data == [49.99, 199.0]


def test_listing_value_column_excludes_label_column():
    result = _result({"id": 1, "name": "Keyboard", "qty": "7"}, {"id": 2, "name": "Mouse", "qty": "3"})
    shape = infer(result, "list products", "")
    assert shape.labels == ["Keyboard", "Mouse"]
    # id is the first numeric column that is not the label
    assert shape.data == [1, 2]


def test_single_value_without_count_falls_through_to_bar():
    shape = infer(_result({"avg_price": 120.5}), "average product price", "SELECT AVG(p.price) AS avg_price")
    assert shape.chart_type == "bar"
    assert shape.labels == ["120.5"]
    assert shape.data == [120.5]


def test_lenient_mode_coerces_missing_values_to_zero():
    result = _result({"name": "a", "price": 10}, {"name": "b", "price": None}, {"name": "c", "price": "n/a"})
    shape = infer(result, "list products", "")
    assert shape.data == [10, 0, 0]


def test_strict_mode_rejects_non_numeric_values():
    result = _result({"name": "a", "price": 10}, {"name": "b", "price": None})
    with pytest.raises(NoChartableData):
        ChartShapeInferrer(strict_numeric=True).infer(result, "list products", "")


def test_empty_result_is_not_chartable():
    with pytest.raises(NoChartableData):
        infer(QueryResult(columns=[], rows=[]), "anything", "")


def test_inference_is_deterministic():
    result = _result({"name": "Keyboard", "price": 49.99}, {"name": "Mouse", "price": 19.5})
    inferrer = ChartShapeInferrer()
    first = inferrer.infer(result, "get all products", "")
    second = inferrer.infer(result, "get all products", "")
    assert first == second


@pytest.mark.parametrize(
    "rows,request_text,sql",
    [
        ([{"count": 3}], "how many users", "SELECT COUNT(*) AS count FROM users u"),
        ([{"month": "2025-01", "count": 1}, {"month": "2025-02", "count": 0}], "monthly orders", ""),
        ([{"a": 1, "b": 2.5}], "stats", ""),
        ([{"name": "x", "v": 1}, {"name": "y", "v": 2}, {"name": "z", "v": 3}], "list", ""),
        ([{"only": "text"}, {"only": "more"}], "list", ""),
    ],
)
def test_labels_and_data_are_parallel_and_non_empty(rows, request_text, sql):
    shape = infer(QueryResult.from_rows(rows), request_text, sql)
    assert shape.labels
    assert len(shape.labels) == len(shape.data)


def test_scalar_classification():
    assert scalar_kind(None) is ScalarKind.NULL
    assert scalar_kind(3) is ScalarKind.NUMBER
    assert scalar_kind(2.5) is ScalarKind.NUMBER
    assert scalar_kind("2025-01") is ScalarKind.STRING


def test_numeric_parsing_is_locale_independent():
    assert as_number("42") == 42
    assert as_number(" -3.5 ") == -3.5
    assert as_number("1e3") == 1000.0
    assert as_number("1,5") is None
    assert as_number("") is None
    assert as_number("2025-01") is None
    assert as_number(float("nan")) is None
    assert as_number(True) == 1
