from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from edgeiq.api.deps import get_current_user_id, json_safe, internal_error
from edgeiq.core.cache import AnalyticsCache, get_cache
from edgeiq.core.config import settings
from edgeiq.core.database import get_db
from edgeiq.services.analytics_service import AnalyticsService
from edgeiq.services.metrics_engine import EquityGranularity
from edgeiq.services.trade_records import RANGE_PRESETS

router = APIRouter()
logger = logging.getLogger(__name__)

RANGE_PATTERN = f"^({'|'.join(RANGE_PRESETS)})$"


def get_analytics_service(
    db: Session = Depends(get_db),
    cache: AnalyticsCache = Depends(get_cache)
) -> AnalyticsService:
    return AnalyticsService(db=db, cache=cache)


@router.get("/summary")
async def get_summary(
    range_key: str = Query(settings.default_range, alias="range", pattern=RANGE_PATTERN),
    user_id: int = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service)
):
    """パフォーマンスサマリー"""
    try:
        return json_safe(service.get_summary(user_id, range_key))
    except Exception as e:
        logger.error(f"サマリー取得エラー: {str(e)}")
        raise internal_error("サマリー取得エラー", e)


@router.get("/equity-curve")
async def get_equity_curve(
    range_key: str = Query(settings.default_range, alias="range", pattern=RANGE_PATTERN),
    group_by: EquityGranularity = EquityGranularity.TRADE,
    user_id: int = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service)
):
    """エクイティカーブ"""
    try:
        return service.get_equity_curve(user_id, range_key, group_by.value)
    except Exception as e:
        logger.error(f"エクイティカーブ取得エラー: {str(e)}")
        raise internal_error("エクイティカーブ取得エラー", e)


@router.get("/sessions")
async def get_session_performance(
    user_id: int = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service)
):
    """セッション別成績"""
    try:
        return service.get_session_performance(user_id)
    except Exception as e:
        logger.error(f"セッション別成績取得エラー: {str(e)}")
        raise internal_error("セッション別成績取得エラー", e)


@router.get("/strategies")
async def get_strategy_performance(
    user_id: int = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service)
):
    """戦略別成績"""
    try:
        return service.get_strategy_performance(user_id)
    except Exception as e:
        logger.error(f"戦略別成績取得エラー: {str(e)}")
        raise internal_error("戦略別成績取得エラー", e)


@router.get("/daily-pnl")
async def get_daily_pnl(
    year: Optional[int] = Query(None, ge=1970, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    user_id: int = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service)
):
    """日次損益（カレンダー用）"""
    try:
        return service.get_daily_pnl(user_id, year or datetime.now().year, month)
    except Exception as e:
        logger.error(f"日次損益取得エラー: {str(e)}")
        raise internal_error("日次損益取得エラー", e)


@router.get("/mistakes")
async def get_mistake_breakdown(
    user_id: int = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service)
):
    try:
        return service.get_mistake_breakdown(user_id)
    except Exception as e:
        logger.error(f"ミス集計エラー: {str(e)}")
        raise internal_error("ミス集計エラー", e)


@router.get("/emotions")
async def get_emotion_performance(
    user_id: int = Depends(get_current_user_id),
    service: AnalyticsService = Depends(get_analytics_service)
):
    try:
        return service.get_emotion_performance(user_id)
    except Exception as e:
        logger.error(f"感情別成績取得エラー: {str(e)}")
        raise internal_error("感情別成績取得エラー", e)
