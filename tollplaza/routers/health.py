# tollplaza/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + detection source reachability.
"""

import requests
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from tollplaza.database import get_db
from tollplaza.config import settings
from datetime import datetime

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Detection source reachability
    """
    result = {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "detection_source": "unknown",
        "fare_policy": settings.FARE_POLICY,
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    try:
        resp = requests.get(settings.DETECTION_SOURCE_URL, timeout=3)
        result["detection_source"] = "ok" if resp.status_code < 500 else f"http_{resp.status_code}"
    except requests.exceptions.ConnectionError:
        result["detection_source"] = "unreachable"
        result["status"] = "degraded"
    except requests.exceptions.Timeout:
        result["detection_source"] = "timeout"
        result["status"] = "degraded"

    return result
