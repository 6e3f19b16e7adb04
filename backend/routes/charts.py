"""Chart routes: prompt-to-chart, pinned replay and spreadsheet analysis."""
import logging
from typing import Any, Callable, List

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel

from backend.routes.deps import get_chart_service
from backend.services.chart_pipeline import ChartPayload, ChartService
from backend.services.errors import ChartPipelineError, InvalidRequest
from backend.services.runtime import log_event
from backend.services.spreadsheet import analyze_sheet, read_sheet

router = APIRouter(prefix="/api/charts", tags=["charts"])
logger = logging.getLogger("charts_route")


class PromptRequest(BaseModel):
    prompt: str = ""


class SheetAnalysisResponse(BaseModel):
    chartData: ChartPayload
    summary: str


def run_mapped(fn: Callable[..., Any], *args: Any) -> Any:
    """Let pipeline errors through; anything else becomes a mapped 500."""
    try:
        return fn(*args)
    except ChartPipelineError:
        raise
    except Exception as exc:
        logger.exception("chart_route_unhandled_error")
        raise ChartPipelineError(f"Failed to process request: {exc}") from exc


@router.post("/prompt", response_model=ChartPayload)
def generate_chart(req: PromptRequest, service: ChartService = Depends(get_chart_service)):
    return run_mapped(service.generate_chart, req.prompt)


@router.get("/pinned", response_model=List[ChartPayload])
def list_pinned_charts(service: ChartService = Depends(get_chart_service)):
    return run_mapped(service.list_pinned_charts)


@router.post("/analyze-sheet", response_model=SheetAnalysisResponse)
def analyze_uploaded_sheet(
    file: UploadFile = File(None),
    prompt: str = Form(""),
    service: ChartService = Depends(get_chart_service),
):
    if file is None:
        raise InvalidRequest("Excel file is required")
    if not prompt.strip():
        raise InvalidRequest("Prompt is required")
    content = file.file.read()
    log_event(logger, logging.INFO, "sheet_upload", filename=file.filename, size=len(content))
    frame = read_sheet(content, file.filename or "")
    return run_mapped(analyze_sheet, frame, prompt, service.completion)
