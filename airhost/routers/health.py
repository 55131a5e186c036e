"""
Health Check Endpoints

- /health - simple status
- /health/live - liveness (is the process running)
- /health/ready - readiness (database reachable)
- /health/detailed - component checks (service key)
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import text
from datetime import datetime, timezone
import time

from ..database import get_db
from ..config import settings
from ..services.fcm_client import get_push_client
from ..services.scheduler import get_scheduler_status
from ..utils.dependencies import Caller, require_service

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": db.bind.dialect.name
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


@router.get("/live")
async def liveness_check():
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
async def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe - is the service ready to accept traffic?
    Checks database connectivity.
    """
    db_health = get_db_health(db)

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "not_ready",
            "reason": "database_unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


@router.get("/detailed")
async def detailed_health_check(
    db: Session = Depends(get_db),
    _service: Caller = Depends(require_service)
):
    db_health = get_db_health(db)
    push_client = get_push_client()

    checks = {
        "database": db_health,
        "push": {"status": "configured" if push_client.configured else "not_configured"},
        "emergency_analysis": {
            "status": "configured" if settings.openai_api_key else "not_configured",
            "enabled": settings.emergency_analysis_enabled
        },
        "scheduler": get_scheduler_status(),
    }

    return {
        "status": "unhealthy" if db_health["status"] == "down" else "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "environment": settings.environment,
        "checks": checks
    }


@router.get("")
@router.get("/")
async def simple_health_check(db: Session = Depends(get_db)):
    db_health = get_db_health(db)
    return {
        "status": "healthy" if db_health["status"] == "up" else "degraded",
        "database": db_health["status"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION
    }
