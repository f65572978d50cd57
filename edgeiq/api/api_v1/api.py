from fastapi import APIRouter
from edgeiq.api.api_v1.endpoints import health, trades, analytics, behavior, reports

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(trades.router, prefix="/trades", tags=["trades"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
api_router.include_router(behavior.router, prefix="/behavior", tags=["behavior"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
