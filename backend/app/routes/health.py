"""Liveness and database readiness endpoints."""

import logging
import os

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from app.dependencies import get_api_key
from app.schemas.common import HealthResponse
from config import DatabaseSettings, get_settings
from db.connection import REQUIRED_TABLES, get_engine, missing_tables
from db.enums import DeploymentStatus
from db.models import UcrActiveRules, UcrDeployments
from ucr.services._types import DbInfoDict

logger: logging.Logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def get_db_info() -> DbInfoDict:
    """Storage backend, schema state and lifecycle counters. Never raises."""
    db: DatabaseSettings = get_settings().database
    info = DbInfoDict(
        backend="sqlite" if db.is_sqlite else "server",
        location=db.describe(),
        tables_missing=list(REQUIRED_TABLES),
        schema_initialized=False,
        pid=os.getpid(),
    )
    try:
        engine: Engine = get_engine()
        missing: list[str] = missing_tables(engine)
        info["tables_missing"] = missing
        info["schema_initialized"] = not missing
        if not missing:
            with engine.connect() as conn:
                info["active_families"] = conn.execute(
                    select(func.count()).select_from(UcrActiveRules)
                ).scalar_one()
                info["scheduled_deployments"] = conn.execute(
                    select(func.count())
                    .select_from(UcrDeployments)
                    .where(UcrDeployments.status == DeploymentStatus.PENDING.value)
                ).scalar_one()
    except Exception as e:
        logger.exception("Database health check failed: %s", e)
        info["error"] = str(e)
    return info


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/health/db", dependencies=[Depends(get_api_key)])
def health_db() -> DbInfoDict:
    return get_db_info()
