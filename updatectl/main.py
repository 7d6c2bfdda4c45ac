"""FastAPI application entry-point for the webhook server."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from updatectl import __version__
from updatectl.routers import health, webhook
from updatectl.services.dispatcher import get_dispatcher
from updatectl.utils.logging import get_logger, setup_logging

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    setup_logging()
    dispatcher = get_dispatcher()
    log.info("webhook.startup", servers=dispatcher.registry.names(), version=__version__)
    yield
    # Let accepted jobs finish so their notifications go out
    await dispatcher.drain()


app = FastAPI(
    title="updatectl webhook",
    description="Trigger OS/Docker updates and Docker cleanup on managed servers",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    structlog.contextvars.bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("request_id")
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(StarletteHTTPException)
async def plain_text_errors(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
    return PlainTextResponse(
        str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None),
    )


app.include_router(health.router)
app.include_router(webhook.router)
