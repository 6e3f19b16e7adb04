"""Pinned chart bookkeeping routes."""
import datetime
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, Field

from backend.routes.charts import run_mapped
from backend.routes.deps import get_chart_service, get_pinned_store
from backend.services.chart_pipeline import ChartService
from backend.services.query_validator import check_read_only
from datastore.pinned_store import PinnedChartStore, PinnedQuery

router = APIRouter(prefix="/api/pinned-charts", tags=["pinned-charts"])
logger = logging.getLogger("pinned_route")


class PinRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=1)
    query: str = Field(min_length=1)
    is_pinned: bool = Field(default=True, alias="isPinned")


class CheckRequest(BaseModel):
    prompt: str
    query: str


class PinnedChartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    prompt: str
    query: str
    is_pinned: bool = Field(alias="isPinned")
    created_at: datetime.datetime = Field(alias="createdAt")
    updated_at: datetime.datetime = Field(alias="updatedAt")

    @classmethod
    def from_entity(cls, pinned: PinnedQuery) -> "PinnedChartResponse":
        return cls(
            id=pinned.id,
            prompt=pinned.prompt,
            query=pinned.query,
            is_pinned=pinned.is_pinned,
            created_at=pinned.created_at,
            updated_at=pinned.updated_at,
        )


@router.post("/pin", response_model=PinnedChartResponse)
def pin_chart(req: PinRequest, store: PinnedChartStore = Depends(get_pinned_store)):
    # replay skips validation, so only read-only statements may be saved
    check_read_only(req.query)
    pinned = run_mapped(store.pin, req.prompt, req.query, req.is_pinned)
    return PinnedChartResponse.from_entity(pinned)


@router.get("", response_model=list[PinnedChartResponse])
def get_pinned_charts(store: PinnedChartStore = Depends(get_pinned_store)):
    return [PinnedChartResponse.from_entity(p) for p in run_mapped(store.list_pinned)]


@router.post("/check", response_model=Optional[PinnedChartResponse])
def is_chart_pinned(req: CheckRequest, store: PinnedChartStore = Depends(get_pinned_store)):
    pinned = run_mapped(store.find_pinned, req.prompt, req.query)
    return PinnedChartResponse.from_entity(pinned) if pinned else None


@router.get("/{pinned_chart_id}/data")
def get_chart_data(pinned_chart_id: int, service: ChartService = Depends(get_chart_service)):
    return run_mapped(service.pinned_chart_data, pinned_chart_id)


@router.post("/{pinned_chart_id}/unpin", status_code=204)
def unpin_chart(pinned_chart_id: int, store: PinnedChartStore = Depends(get_pinned_store)):
    run_mapped(store.unpin, pinned_chart_id)
    return Response(status_code=204)
