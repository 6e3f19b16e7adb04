"""
Runtime utilities:
- shared thread pools with safe shutdown
- request context for structured logs
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from concurrent.futures import wait as wait_futures
from contextvars import ContextVar, copy_context
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Tuple

_LOGGER = logging.getLogger("runtime")

_REQUEST_ID: ContextVar[str] = ContextVar("request_id", default="-")

_FG_EXECUTOR: Optional[ThreadPoolExecutor] = None
_EXECUTOR_LOCK = threading.Lock()
_PENDING_LOCK = threading.Lock()
_PENDING_FUTURES: set[Future] = set()
_FOREGROUND_WORKERS = max(2, int(os.getenv("APP_FOREGROUND_MAX_WORKERS", "4")))
_BATCH_WORKERS = max(4, int(os.getenv("APP_BATCH_MAX_WORKERS", "64")))


def get_request_id() -> str:
    return _REQUEST_ID.get() or "-"


def set_request_id(request_id: Optional[str]) -> str:
    rid = (request_id or "").strip() or str(uuid.uuid4())
    _REQUEST_ID.set(rid)
    return rid


def clear_context() -> None:
    _REQUEST_ID.set("-")


def structured_fields(**extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"request_id": get_request_id()}
    payload.update(extra)
    return payload


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    payload = structured_fields(event=event, **fields)
    logger.log(level, json.dumps(payload, default=str, ensure_ascii=True))


def _get_fg_executor() -> ThreadPoolExecutor:
    global _FG_EXECUTOR
    if _FG_EXECUTOR is not None:
        return _FG_EXECUTOR
    with _EXECUTOR_LOCK:
        if _FG_EXECUTOR is None:
            _FG_EXECUTOR = ThreadPoolExecutor(max_workers=_FOREGROUND_WORKERS, thread_name_prefix="charts-fg")
        return _FG_EXECUTOR


def _track(future: Future) -> Future:
    with _PENDING_LOCK:
        _PENDING_FUTURES.add(future)

    def _done(fut: Future) -> None:
        with _PENDING_LOCK:
            _PENDING_FUTURES.discard(fut)

    future.add_done_callback(_done)
    return future


def run_with_timeout(fn: Callable[[], Any], timeout_s: float) -> Any:
    # Worker threads inherit the caller's context so log lines keep the request id.
    ctx = copy_context()
    future = _track(_get_fg_executor().submit(ctx.run, fn))
    try:
        return future.result(timeout=max(0.05, float(timeout_s)))
    except FuturesTimeoutError:
        future.cancel()
        raise


def run_concurrently(
    fn: Callable[[Any], Any],
    items: Iterable[Any],
    timeout_s: float,
) -> Iterator[Tuple[Any, Optional[Any], Optional[BaseException]]]:
    """Run ``fn(item)`` for every item at once on a pool sized to the batch.

    Yields ``(item, result, error)`` in completion order. Each item gets its own
    ``timeout_s`` measured from when a worker starts it; items still running
    past that are yielded with a ``FuturesTimeoutError``.
    """
    items = list(items)
    if not items:
        return
    budget = max(0.05, float(timeout_s))
    started: Dict[int, float] = {}

    def _timed(index: int, item: Any) -> Any:
        started[index] = time.perf_counter()
        return fn(item)

    executor = ThreadPoolExecutor(
        max_workers=max(1, min(len(items), _BATCH_WORKERS)),
        thread_name_prefix="charts-batch",
    )
    futures: Dict[Future, Tuple[int, Any]] = {}
    try:
        for index, item in enumerate(items):
            ctx = copy_context()
            futures[_track(executor.submit(ctx.run, _timed, index, item))] = (index, item)

        pending = set(futures)
        while pending:
            deadlines = [started[futures[f][0]] + budget for f in pending if futures[f][0] in started]
            wait_s = max(0.0, min(deadlines) - time.perf_counter()) if deadlines else budget
            done, pending = wait_futures(pending, timeout=wait_s, return_when=FIRST_COMPLETED)
            for fut in done:
                item = futures[fut][1]
                exc = fut.exception()
                if exc is not None:
                    yield item, None, exc
                else:
                    yield item, fut.result(), None

            now = time.perf_counter()
            expired = {
                f for f in pending
                if futures[f][0] in started and now - started[futures[f][0]] >= budget
            }
            for fut in expired:
                fut.cancel()
                yield futures[fut][1], None, FuturesTimeoutError(f"timed out after {budget:g}s")
            pending -= expired
    finally:
        # running workers finish on their own; nothing waits for them
        executor.shutdown(wait=False, cancel_futures=True)


def shutdown_shared_executor(wait: bool = False) -> None:
    global _FG_EXECUTOR
    with _EXECUTOR_LOCK:
        if _FG_EXECUTOR is None:
            return
        with _PENDING_LOCK:
            pending = list(_PENDING_FUTURES)
            _PENDING_FUTURES.clear()
        for fut in pending:
            fut.cancel()
        if _FG_EXECUTOR is not None:
            _FG_EXECUTOR.shutdown(wait=wait, cancel_futures=True)
            _FG_EXECUTOR = None
        _LOGGER.info("shared_executor_shutdown")
