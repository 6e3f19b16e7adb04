import dataclasses
import sys
from pathlib import Path
from typing import List, Optional

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from backend.services.chart_pipeline import ChartService
from backend.services.settings import Settings
from datastore.db_utils import QueryExecutor, create_engine_for
from datastore.pinned_store import PinnedChartStore

SEED_STATEMENTS = [
    """CREATE TABLE products (
        id INTEGER PRIMARY KEY, name VARCHAR(100), description TEXT, price DECIMAL(10,2),
        created_at TIMESTAMP, updated_at TIMESTAMP)""",
    """CREATE TABLE users (
        id INTEGER PRIMARY KEY, username VARCHAR(50), email VARCHAR(100), password VARCHAR(100),
        created_at TIMESTAMP)""",
    """CREATE TABLE orders (
        id INTEGER PRIMARY KEY, user_id INTEGER, subtotal DECIMAL(10,2), discount DECIMAL(10,2),
        total_price DECIMAL(10,2), created_at TIMESTAMP)""",
    "CREATE TABLE order_products (order_id INTEGER, product_id INTEGER)",
    """INSERT INTO products (id, name, description, price, created_at, updated_at) VALUES
        (1, 'Keyboard', 'Mechanical keyboard', 49.99, '2024-12-01 09:00:00', '2024-12-01 09:00:00'),
        (2, 'Mouse', 'Wireless mouse', 19.5, '2024-12-02 09:00:00', '2024-12-02 09:00:00'),
        (3, 'Monitor', '27 inch monitor', 199.0, '2024-12-03 09:00:00', '2024-12-03 09:00:00')""",
    """INSERT INTO users (id, username, email, password, created_at) VALUES
        (1, 'alice', 'alice@example.com', 'x', '2024-11-01 08:00:00'),
        (2, 'bob', 'bob@example.com', 'x', '2024-11-02 08:00:00')""",
    """INSERT INTO orders (id, user_id, subtotal, discount, total_price, created_at) VALUES
        (1, 1, 100, 0, 100, '2025-01-05 10:00:00'),
        (2, 1, 50, 5, 45, '2025-01-20 12:00:00'),
        (3, 2, 200, 10, 190, '2025-02-03 09:30:00'),
        (4, 2, 80, 0, 80, '2025-02-14 16:45:00'),
        (5, 1, 60, 0, 60, '2025-02-28 08:15:00')""",
    """INSERT INTO order_products (order_id, product_id) VALUES
        (1, 1), (1, 2), (2, 3), (3, 1), (4, 2), (5, 3)""",
]


class FakeCompletion:
    """Stands in for the completion client; replays canned responses in order."""

    def __init__(self, *responses):
        self.responses: List = list(responses)
        self.calls: List[dict] = []

    @property
    def prompts(self) -> List[str]:
        return [c["prompt"] for c in self.calls]

    def complete(self, prompt: str, *, temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> str:
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        pass


@pytest.fixture
def database_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'shop.db'}"
    engine = create_engine_for(url)
    with engine.begin() as conn:
        for statement in SEED_STATEMENTS:
            conn.exec_driver_sql(statement)
    return url


@pytest.fixture
def settings(database_url):
    return Settings(
        database_url=database_url,
        completion_backoff_base_s=0.0,
        db_query_timeout_s=5.0,
        pinned_replay_timeout_s=5.0,
    )


@pytest.fixture
def executor(database_url):
    return QueryExecutor(create_engine_for(database_url, read_only=True), timeout_s=5.0, max_rows=1000)


@pytest.fixture
def pinned_store(database_url):
    store = PinnedChartStore(create_engine_for(database_url))
    store.create_schema()
    return store


@pytest.fixture
def make_service(settings, executor, pinned_store):
    def _make(*responses, **overrides):
        service_settings = dataclasses.replace(settings, **overrides)
        return ChartService(service_settings, FakeCompletion(*responses), executor, pinned_store=pinned_store)

    return _make


@pytest.fixture
def fake_completion():
    return FakeCompletion
