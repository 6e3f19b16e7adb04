"""
Prompt-to-chart pipeline.

Interactive flow (strictly sequential):
1) build prompt from the schema descriptor
2) completion service -> raw text
3) extract + validate a single SELECT
4) execute read-only with a time limit
5) infer chart shape

Pinned replay skips 1-3: saved queries already passed validation once.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from backend.services import prompts, query_validator
from backend.services.chart_shape import ChartShape, ChartShapeInferrer, QueryResult
from backend.services.completion_client import CompletionClient
from backend.services.errors import EmptyResult, InvalidGeneratedQuery, InvalidRequest
from backend.services.runtime import log_event, run_concurrently
from backend.services.settings import Settings
from datastore.db_utils import QueryExecutor
from datastore.pinned_store import PinnedChartStore, PinnedQuery

logger = logging.getLogger(__name__)


class ChartPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chart_type: str = Field(alias="chartType")
    labels: List[str]
    data: List[Union[int, float]]
    title: str
    prompt: str
    query: Optional[str] = None
    pinned_chart_id: Optional[int] = Field(default=None, alias="pinnedChartId")

    @classmethod
    def from_shape(
        cls,
        shape: ChartShape,
        prompt: str,
        query: Optional[str],
        pinned_chart_id: Optional[int] = None,
    ) -> "ChartPayload":
        return cls(
            chart_type=shape.chart_type,
            labels=shape.labels,
            data=shape.data,
            title=shape.title,
            prompt=prompt,
            query=query,
            pinned_chart_id=pinned_chart_id,
        )


def _elapsed_ms(start_ts: float) -> int:
    return int((time.perf_counter() - start_ts) * 1000)


class ChartService:
    def __init__(
        self,
        settings: Settings,
        completion: CompletionClient,
        executor: QueryExecutor,
        pinned_store: Optional[PinnedChartStore] = None,
        schema: str = prompts.SCHEMA_DESCRIPTION,
    ):
        self.settings = settings
        self.completion = completion
        self.executor = executor
        self.pinned_store = pinned_store
        self.schema = schema
        self.inferrer = ChartShapeInferrer(strict_numeric=settings.strict_numeric)

    # -- SQL generation ----------------------------------------------------

    def _complete_sql(self, prompt: str) -> str:
        return self.completion.complete(
            prompt,
            temperature=self.settings.sql_temperature,
            max_tokens=self.settings.sql_max_tokens,
        )

    def generate_sql(self, user_request: str) -> str:
        raw = self._complete_sql(prompts.build_prompt(self.schema, user_request))
        retries_left = self.settings.validation_feedback_retries
        while True:
            try:
                return query_validator.validate(raw, user_request)
            except InvalidGeneratedQuery as exc:
                if retries_left <= 0:
                    raise
                retries_left -= 1
                log_event(logger, logging.INFO, "sql_rejected_retrying", reason=exc.message)
                rejected = raw.strip().splitlines()[0] if raw.strip() else ""
                raw = self._complete_sql(
                    prompts.build_feedback_prompt(self.schema, user_request, rejected, exc.message)
                )

    # -- entry points ------------------------------------------------------

    def generate_chart(self, user_request: str) -> ChartPayload:
        if not (user_request or "").strip():
            raise InvalidRequest("Prompt is required")
        start_ts = time.perf_counter()
        log_event(logger, logging.INFO, "chart_request_start", request_chars=len(user_request))

        sql = self.generate_sql(user_request)
        log_event(logger, logging.INFO, "sql_validated", sql=sql, elapsed_ms=_elapsed_ms(start_ts))

        result = self.executor.execute(sql)
        shape = self.inferrer.infer(result, user_request, sql)
        log_event(
            logger,
            logging.INFO,
            "chart_request_complete",
            chart_type=shape.chart_type,
            points=len(shape.data),
            elapsed_ms=_elapsed_ms(start_ts),
        )
        return ChartPayload.from_shape(shape, prompt=user_request, query=sql)

    def _replay_one(self, pinned: PinnedQuery) -> ChartPayload:
        result: QueryResult = self.executor.fetch(pinned.query)
        if not result.rows:
            raise EmptyResult("Query returned no results")
        shape = self.inferrer.infer(result, pinned.prompt, pinned.query)
        return ChartPayload.from_shape(shape, prompt=pinned.prompt, query=pinned.query, pinned_chart_id=pinned.id)

    def replay_all(self, pinned_queries: Sequence[PinnedQuery]) -> List[ChartPayload]:
        """Re-run saved queries concurrently; failing items are logged and dropped."""
        if not pinned_queries:
            return []
        start_ts = time.perf_counter()
        charts: List[ChartPayload] = []
        for pinned, chart, error in run_concurrently(
            self._replay_one, pinned_queries, self.settings.pinned_replay_timeout_s
        ):
            if error is not None:
                log_event(
                    logger,
                    logging.WARNING,
                    "pinned_chart_skipped",
                    pinned_chart_id=pinned.id,
                    error_type=type(error).__name__,
                    error=str(error)[:180],
                )
                continue
            charts.append(chart)
        log_event(
            logger,
            logging.INFO,
            "pinned_replay_complete",
            requested=len(pinned_queries),
            returned=len(charts),
            elapsed_ms=_elapsed_ms(start_ts),
        )
        return charts

    def list_pinned_charts(self) -> List[ChartPayload]:
        return self.replay_all(self._store().list_pinned())

    def pinned_chart_data(self, pinned_chart_id: int) -> Dict[str, Any]:
        pinned = self._store().get(pinned_chart_id, pinned_only=True)
        result = self.executor.execute(pinned.query, allow_empty=True)
        return {"prompt": pinned.prompt, "data": result.rows}

    def _store(self) -> PinnedChartStore:
        if self.pinned_store is None:
            raise RuntimeError("pinned chart store is not configured")
        return self.pinned_store
