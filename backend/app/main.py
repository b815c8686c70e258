"""FastAPI application for the UCR rule lifecycle API."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.routes import audit, deployments, health, rules, templates
from app.schemas.common import ErrorResponse
from config import Settings, get_settings
from db.connection import init_database
from ucr.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StateError,
    StorageError,
    UCRError,
    ValidationError,
)

logger: logging.Logger = logging.getLogger(__name__)

# first match wins; unlisted UCRError subclasses are 400
ERROR_STATUS: tuple[tuple[type[UCRError], int], ...] = (
    (ValidationError, 422),
    (ConflictError, 409),
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (StorageError, 503),
    (StateError, 409),
)


def status_for(exc: UCRError) -> int:
    return next((code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)), 400)


def error_body(exc: Exception) -> dict[str, object]:
    return ErrorResponse(
        detail=str(exc),
        type=type(exc).__name__,
        errors=list(getattr(exc, "errors", [])),
    ).model_dump()


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = get_settings()
    logger.info(
        "Starting UCR API (%s) on %s", settings.environment, settings.database.describe()
    )
    init_database()
    yield


def create_app() -> FastAPI:
    settings: Settings = get_settings()
    app: FastAPI = FastAPI(
        title="HERA UCR Orchestrator",
        version="0.1.0",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UCRError)
    async def _on_ucr_error(request: Request, exc: UCRError) -> JSONResponse:
        status_code: int = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed in storage: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=error_body(exc))

    @app.exception_handler(Exception)
    async def _on_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body(exc))

    for module in (health, templates, rules, deployments, audit):
        app.include_router(module.router)

    return app


app: FastAPI = create_app()


def start() -> None:
    """Entry point for hera-ucr-api."""
    backend_root: Path = Path(__file__).resolve().parent.parent
    os.chdir(backend_root)
    load_dotenv(backend_root / ".env", override=False)

    uvicorn.run(
        "app.main:app",
        host=os.environ.get("HERA_HOST", "0.0.0.0"),
        port=int(os.environ.get("HERA_PORT", "8000")),
        reload=os.environ.get("HERA_RELOAD", "false").lower() in ("1", "true", "yes"),
    )
