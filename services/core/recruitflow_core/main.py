"""Recruitflow Core API.

Serves follow-up rules and actions, profile submissions, sync scheduling
and the posting pipeline. Periodic work runs in the worker; this app only
enqueues it.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from recruitflow_core.api.deps import http_error
from recruitflow_core.api.middleware.request_context import RequestContextMiddleware
from recruitflow_core.api.routes import followups as followups_routes
from recruitflow_core.api.routes import metrics as metrics_routes
from recruitflow_core.api.routes import pipeline as pipeline_routes
from recruitflow_core.api.routes import profile_submissions as profile_submissions_routes
from recruitflow_core.api.routes import rules as rules_routes
from recruitflow_core.api.routes import scheduler as scheduler_routes
from recruitflow_core.config import get_settings
from recruitflow_core.domain.errors import FollowupError
from recruitflow_core.infra.db import dispose_engine
from recruitflow_core.observability.logging import configure_logging

SERVICE_NAME = "recruitflow-core"
VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name=SERVICE_NAME,
    )
    app.state.settings = settings
    try:
        yield
    finally:
        dispose_engine(close=True)


app = FastAPI(
    title="Recruitflow Core API",
    description="Follow-up rules, follow-up actions and recurring sync scheduling",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Added last so it wraps CORS and sees every response
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(FollowupError)
async def followup_error_handler(request: Request, exc: FollowupError) -> JSONResponse:
    """Domain errors raised outside a route's own mapping."""
    error = http_error(exc)
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


for router in (
    followups_routes.router,
    metrics_routes.router,
    pipeline_routes.router,
    profile_submissions_routes.router,
    rules_routes.router,
    scheduler_routes.router,
):
    app.include_router(router)


@app.get("/healthz")
async def healthz() -> dict:
    """Liveness check; touches neither the database nor the broker."""
    return {"ok": True, "service": SERVICE_NAME}


@app.get("/")
async def root() -> dict:
    return {"name": "Recruitflow Core API", "version": VERSION, "status": "running"}
