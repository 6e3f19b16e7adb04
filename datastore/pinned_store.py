"""Persistence for pinned (prompt, query) pairs."""
import datetime
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, MetaData, Table, Text, insert, select, update
from sqlalchemy.engine import Engine

from backend.services.errors import PinnedChartNotFound
from backend.services.runtime import log_event

logger = logging.getLogger("pinned_store")

metadata = MetaData()

pinned_charts = Table(
    "pinned_charts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("prompt", Text, nullable=False),
    Column("query", Text, nullable=False),
    Column("is_pinned", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


@dataclass
class PinnedQuery:
    id: int
    prompt: str
    query: str
    is_pinned: bool
    created_at: datetime.datetime
    updated_at: datetime.datetime


class PinnedChartStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    @staticmethod
    def _to_entity(row) -> PinnedQuery:
        return PinnedQuery(
            id=row.id,
            prompt=row.prompt,
            query=row.query,
            is_pinned=bool(row.is_pinned),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def pin(self, prompt: str, query: str, is_pinned: bool = True) -> PinnedQuery:
        now = _utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(pinned_charts).values(
                    prompt=prompt, query=query, is_pinned=is_pinned, created_at=now, updated_at=now,
                )
            )
            new_id = result.inserted_primary_key[0]
        log_event(logger, logging.INFO, "chart_pinned", pinned_chart_id=new_id)
        return self.get(new_id)

    def get(self, pinned_chart_id: int, pinned_only: bool = False) -> PinnedQuery:
        stmt = select(pinned_charts).where(pinned_charts.c.id == pinned_chart_id)
        if pinned_only:
            stmt = stmt.where(pinned_charts.c.is_pinned.is_(True))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            raise PinnedChartNotFound("Pinned chart not found")
        return self._to_entity(row)

    def list_pinned(self) -> List[PinnedQuery]:
        stmt = (
            select(pinned_charts)
            .where(pinned_charts.c.is_pinned.is_(True))
            .order_by(pinned_charts.c.created_at.desc(), pinned_charts.c.id.desc())
        )
        with self.engine.connect() as conn:
            return [self._to_entity(row) for row in conn.execute(stmt)]

    def find_pinned(self, prompt: str, query: str) -> Optional[PinnedQuery]:
        stmt = select(pinned_charts).where(
            pinned_charts.c.prompt == prompt,
            pinned_charts.c.query == query,
            pinned_charts.c.is_pinned.is_(True),
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        return self._to_entity(row) if row is not None else None

    def unpin(self, pinned_chart_id: int) -> None:
        self.get(pinned_chart_id)
        with self.engine.begin() as conn:
            conn.execute(
                update(pinned_charts)
                .where(pinned_charts.c.id == pinned_chart_id)
                .values(is_pinned=False, updated_at=_utcnow())
            )
        log_event(logger, logging.INFO, "chart_unpinned", pinned_chart_id=pinned_chart_id)
