"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text

from splitlab.database import get_db
from splitlab.models import Experiment

router = APIRouter()


@router.get("/health")
@router.head("/health")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": "splitlab"}


@router.get("/health/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """
    Detailed health check: database connectivity and how many experiments
    are currently assigning visitors.
    """
    checks = {
        "api": "healthy",
        "database": "unknown"
    }
    running_experiments = None

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
        running_experiments = db.query(Experiment).filter(
            Experiment.status == "running"
        ).count()
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    overall_status = "healthy" if all(
        v == "healthy" for v in checks.values()
    ) else "degraded"

    return {
        "status": overall_status,
        "checks": checks,
        "running_experiments": running_experiments
    }
