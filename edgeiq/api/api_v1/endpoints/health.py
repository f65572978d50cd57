from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edgeiq.core.cache import AnalyticsCache, get_cache
from edgeiq.core.config import settings
from edgeiq.core.database import get_db

router = APIRouter()


@router.get("/")
async def health_check(
    db: Session = Depends(get_db),
    cache: AnalyticsCache = Depends(get_cache)
):
    try:
        db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError as e:
        database = f"unhealthy: {str(e)}"

    if not cache.enabled:
        cache_status = "disabled"
    else:
        cache_status = "healthy" if cache.ping() else "unavailable"

    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "timestamp": datetime.now().isoformat(),
        "service": settings.app_name,
        "database": database,
        "cache": cache_status,
        "narrative": "configured" if settings.anthropic_api_key else "not_configured"
    }
