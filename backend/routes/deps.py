"""Service wiring shared by the routers."""
import threading
from typing import Optional

from backend.services.chart_pipeline import ChartService
from backend.services.completion_client import CompletionClient
from backend.services.settings import Settings
from datastore.db_utils import QueryExecutor, create_engine_for
from datastore.pinned_store import PinnedChartStore

_LOCK = threading.Lock()
_SERVICE: Optional[ChartService] = None


def build_chart_service(settings: Optional[Settings] = None) -> ChartService:
    settings = settings or Settings.from_env()
    store = PinnedChartStore(create_engine_for(settings.database_url))
    store.create_schema()
    executor = QueryExecutor(
        create_engine_for(settings.database_url, read_only=True),
        timeout_s=settings.db_query_timeout_s,
        max_rows=settings.db_max_rows,
    )
    return ChartService(settings, CompletionClient(settings), executor, pinned_store=store)


def get_chart_service() -> ChartService:
    global _SERVICE
    if _SERVICE is not None:
        return _SERVICE
    with _LOCK:
        if _SERVICE is None:
            _SERVICE = build_chart_service()
        return _SERVICE


def get_pinned_store() -> PinnedChartStore:
    return get_chart_service()._store()


def close_services() -> None:
    global _SERVICE
    with _LOCK:
        if _SERVICE is not None:
            _SERVICE.completion.close()
            _SERVICE = None
