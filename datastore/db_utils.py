"""
Database Utilities - Engine setup, read-only sessions and safe query execution
"""
import datetime
import logging
import os
import threading
from concurrent.futures import TimeoutError as FuturesTimeoutError
from decimal import Decimal
from typing import Any, Dict, List, Optional

import sqlalchemy
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from backend.services.chart_shape import QueryResult
from backend.services.errors import EmptyResult, QueryExecutionFailed
from backend.services.query_validator import check_read_only
from backend.services.runtime import log_event, run_with_timeout

logger = logging.getLogger("db_utils")

_ENGINE_CACHE: Dict[str, Engine] = {}
_ENGINE_CACHE_LOCK = threading.RLock()
_DB_MAX_OVERFLOW = max(10, int(os.getenv("DB_MAX_OVERFLOW", "60")))
_IN_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}

# Session statements that make every pooled connection read-only.
_READ_ONLY_SESSION_SQL = {
    "mysql": "SET SESSION TRANSACTION READ ONLY",
    "mariadb": "SET SESSION TRANSACTION READ ONLY",
    "postgresql": "SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY",
}


def create_engine_for(database_url: str, read_only: bool = False) -> Engine:
    """
    Create (or reuse) a SQLAlchemy engine for ``database_url``.

    Engines are cached per (url, read_only) so the read path and the pinned
    chart store never share sessions.
    """
    cache_key = f"{'ro' if read_only else 'rw'}:{database_url}"
    with _ENGINE_CACHE_LOCK:
        engine = _ENGINE_CACHE.get(cache_key)
        if engine is not None:
            return engine

        connect_args: Dict[str, Any] = {}
        pool_args: Dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            # worker threads from the shared pools reuse pooled connections
            connect_args["check_same_thread"] = False
        if database_url not in _IN_MEMORY_URLS:
            # pinned replay runs every saved query at once
            pool_args = {"pool_size": 5, "max_overflow": _DB_MAX_OVERFLOW}
        engine = create_engine(
            database_url,
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=300,    # Remote DBs drop idle connections
            connect_args=connect_args,
            **pool_args,
        )

        if read_only:
            statement = _READ_ONLY_SESSION_SQL.get(engine.dialect.name)
            if statement:
                @event.listens_for(engine, "connect")
                def _set_read_only(dbapi_conn, connection_record):
                    cursor = dbapi_conn.cursor()
                    try:
                        cursor.execute(statement)
                    finally:
                        cursor.close()

        _ENGINE_CACHE[cache_key] = engine
        log_event(logger, logging.INFO, "engine_created", dialect=engine.dialect.name, read_only=read_only)
        return engine


def dispose_engines() -> None:
    with _ENGINE_CACHE_LOCK:
        for engine in _ENGINE_CACHE.values():
            engine.dispose()
        _ENGINE_CACHE.clear()


def normalize_value(value: Any) -> Any:
    """Map driver types onto the scalars chart inference understands."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


class QueryExecutor:
    """Runs validated SELECT statements against the relational store."""

    def __init__(self, engine: Engine, timeout_s: float = 20.0, max_rows: int = 1000):
        self.engine = engine
        self.timeout_s = timeout_s
        self.max_rows = max_rows

    def fetch(self, sql: str) -> QueryResult:
        """Run ``sql`` on the calling thread with no timeout of its own."""
        check_read_only(sql)
        statement = sql.strip().rstrip(";")
        try:
            with self.engine.connect() as conn:
                result_proxy = conn.execution_options(no_parameters=True).exec_driver_sql(statement)
                columns = list(result_proxy.keys())
                # fetchmany in chunks keeps peak memory bounded
                rows: List[tuple] = []
                while True:
                    chunk = result_proxy.fetchmany(500)
                    if not chunk:
                        break
                    rows.extend(chunk)
                    if len(rows) >= self.max_rows:
                        rows = rows[:self.max_rows]
                        break
                # never commit on the read path
                conn.rollback()
        except sqlalchemy.exc.SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc).split("\n")[0]
            log_event(logger, logging.WARNING, "query_execution_failed", error=message[:180])
            raise QueryExecutionFailed(f"Database query failed: {message}") from exc

        return QueryResult(
            columns=columns,
            rows=[{col: normalize_value(val) for col, val in zip(columns, row)} for row in rows],
        )

    def execute(self, sql: str, timeout_s: Optional[float] = None, allow_empty: bool = False) -> QueryResult:
        """Run ``sql`` with the execution timeout; zero rows is an error unless ``allow_empty``."""
        budget = self.timeout_s if timeout_s is None else timeout_s
        check_read_only(sql)
        try:
            result = run_with_timeout(lambda: self.fetch(sql), budget)
        except FuturesTimeoutError as exc:
            log_event(logger, logging.WARNING, "query_timeout", timeout_s=budget)
            raise QueryExecutionFailed(f"Query timed out after {budget:g} seconds") from exc
        if not result.rows and not allow_empty:
            raise EmptyResult("Query returned no results")
        log_event(logger, logging.INFO, "query_executed", rows=len(result.rows), columns=len(result.columns))
        return result
