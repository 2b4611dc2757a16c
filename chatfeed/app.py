"""FastAPI application entry point for the dice-roll chat feed."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

import aiosqlite
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatfeed.config import settings
from chatfeed.db import close_db, get_db, init_db
from quickroll.errors import (
    GenerationError,
    MessageNotFoundError,
    QuickRollError,
    RollValidationError,
    StaleMessageError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting chat feed server")
    await init_db(settings.db_path)
    logger.info("Server ready (db: %s)", settings.db_path)
    yield
    logger.info("Shutting down server")
    await close_db()
    logger.info("Server stopped")


app = FastAPI(
    title="Chat Feed",
    description="Dice-roll chat messages with merged cards, retro rolls and rerolls",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Field paths relative to the request body, e.g. "rolls.0.formula".
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    logger.info("Rejected %s %s: %d invalid field(s)", request.method, request.url.path, len(errors))
    return JSONResponse(status_code=422, content={"detail": errors})


def _status_for(exc: QuickRollError) -> int:
    if isinstance(exc, MessageNotFoundError):
        return 404
    if isinstance(exc, StaleMessageError):
        return 409
    if isinstance(exc, RollValidationError):
        return 422
    if isinstance(exc, GenerationError):
        return 502
    return 500


@app.exception_handler(QuickRollError)
async def quickroll_exception_handler(request: Request, exc: QuickRollError):
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "notice": exc.notice},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    start = time.monotonic()
    response = await call_next(request)
    duration_ms = (time.monotonic() - start) * 1000
    level = logging.DEBUG if request.url.path == "/health" else logging.INFO
    logger.log(
        level,
        "%s %s → %d (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)

# Include routes
from chatfeed.routes.actors import router as actors_router  # noqa: E402
from chatfeed.routes.commands import router as commands_router  # noqa: E402
from chatfeed.routes.messages import router as messages_router  # noqa: E402

app.include_router(messages_router, tags=["messages"])
app.include_router(commands_router, tags=["commands"])
app.include_router(actors_router, tags=["actors"])


@app.get("/health", tags=["ops"])
async def health_check():
    """Report whether the message database answers, and how many messages it holds."""
    try:
        db = await get_db()
        cursor = await db.execute("SELECT COUNT(*) FROM messages")
        (count,) = await cursor.fetchone()
    except (RuntimeError, aiosqlite.Error):
        logger.warning("Health check: message database unavailable", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok", "version": app.version, "feed": settings.feed_name, "messages": count}
