"""
FastAPI backend for the prompt-to-chart dashboard.
Run with: uvicorn backend.main:app --reload --port 3001
"""
import logging
import os
import uuid
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.routes.charts import router as charts_router
from backend.routes.deps import close_services
from backend.routes.pinned import router as pinned_router
from backend.services.errors import ChartPipelineError
from backend.services.runtime import clear_context, log_event, set_request_id, shutdown_shared_executor
from datastore.db_utils import dispose_engines

app = FastAPI(title="Prompt Chart Dashboard API", version="1.0.0")
logger = logging.getLogger("backend")

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.on_event("shutdown")
def shutdown_workers():
    close_services()
    dispose_engines()
    shutdown_shared_executor(wait=False)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id") or str(uuid.uuid4()))
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed request_id=%s path=%s", request_id, request.url.path)
        raise
    finally:
        clear_context()
    response.headers["x-request-id"] = request_id
    return response


@app.exception_handler(ChartPipelineError)
async def chart_pipeline_error_handler(request: Request, exc: ChartPipelineError):
    log_event(
        logger,
        logging.WARNING if exc.status_code < 500 else logging.ERROR,
        "chart_pipeline_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        status=exc.status_code,
        error=exc.message[:180],
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# CORS for the Next.js dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000", "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(charts_router)
app.include_router(pinned_router)


@app.get("/api/health")
def health():
    return {"status": "ok"}
