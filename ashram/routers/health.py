# ashram/routers/health.py
import time
from enum import Enum
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, security
from ..config import get_settings
from ..database import get_db
from ..monitoring import performance_monitor, system_snapshot
from ..timeutils import utcnow

import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["System"],
    responses={404: {"description": "Not found"}},
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class MetricsType(str, Enum):
    all = "all"
    system = "system"
    health = "health"
    performance = "performance"


def run_health_checks(db: Session) -> Dict[str, Any]:
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
        database = {"status": "healthy", "responseTime": round((time.perf_counter() - started) * 1000, 2)}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        database = {"status": "unhealthy", "error": "Database unreachable"}

    healthy = database["status"] == "healthy"
    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat(),
        "version": get_settings().app_version,
        "checks": {
            "database": database,
            "api": {"status": "healthy"},
        },
    }


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    report = run_health_checks(db)
    code = status.HTTP_200_OK if report["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=report, headers=NO_CACHE_HEADERS)


@router.get("/metrics")
def read_metrics(
    type: MetricsType = Query(MetricsType.all),
    minutes: int = Query(15, ge=1, le=1440),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(security.require_capability(security.Capability.VIEW_SYSTEM_METRICS)),
):
    body: Dict[str, Any] = {"success": True, "timestamp": utcnow().isoformat(), "type": type.value}
    if type in (MetricsType.all, MetricsType.system):
        body["system"] = system_snapshot()
    if type in (MetricsType.all, MetricsType.health):
        body["health"] = run_health_checks(db)
    if type in (MetricsType.all, MetricsType.performance):
        body["performance"] = performance_monitor.summary(minutes)
    return JSONResponse(content=body, headers=NO_CACHE_HEADERS)


@router.get("/docs")
def read_api_docs(
    request: Request,
    current_user: models.User = Depends(security.require_capability(security.Capability.VIEW_API_DOCS)),
):
    """OpenAPI document for the API; the framework's public docs routes are disabled."""
    return JSONResponse(content=request.app.openapi())
