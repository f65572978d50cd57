from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from edgeiq.core.cache import AnalyticsCache
from edgeiq.core.config import settings
from edgeiq.services import metrics_engine
from edgeiq.services.metrics_engine import EquityGranularity
from edgeiq.services.trade_records import resolve_date_range
from edgeiq.services.trade_repository import TradeRepository

logger = logging.getLogger(__name__)


class AnalyticsService:
    """メトリクスエンジンのキャッシュ付きファサード"""

    def __init__(self, db: Session, cache: Optional[AnalyticsCache] = None):
        self.repository = TradeRepository(db)
        self.cache = cache or AnalyticsCache(None)

    def _cached(self, key: str, ttl: int, compute):
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"キャッシュヒット: {key}")
            return cached
        result = compute()
        self.cache.set(key, result, ttl)
        return result

    def get_summary(self, user_id: int, range_key: str = "30d", now: Optional[datetime] = None) -> Dict[str, Any]:
        """サマリー取得"""
        def compute():
            date_range = resolve_date_range(range_key, now)
            trades = self.repository.find_records(user_id, date_range=date_range, sort="trade_date")
            return metrics_engine.compute_summary(trades, date_range).to_dict()

        return self._cached(f"analytics:{user_id}:summary:{range_key}", settings.summary_cache_ttl, compute)

    def get_equity_curve(self,
                         user_id: int,
                         range_key: str = "30d",
                         group_by: str = EquityGranularity.TRADE.value,
                         now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """エクイティカーブ取得"""
        granularity = EquityGranularity(group_by)

        def compute():
            date_range = resolve_date_range(range_key, now)
            trades = self.repository.find_records(
                user_id, closed_only=True, date_range=date_range, sort="trade_date"
            )
            curve = metrics_engine.compute_equity_curve(trades, date_range, granularity)
            return [point.to_dict() for point in curve]

        return self._cached(
            f"analytics:{user_id}:equity:{range_key}:{granularity.value}", settings.equity_cache_ttl, compute
        )

    def get_session_performance(self, user_id: int) -> List[Dict[str, Any]]:
        def compute():
            trades = self.repository.find_records(user_id, closed_only=True)
            return metrics_engine.compute_grouped_performance(trades, "session")

        return self._cached(f"analytics:{user_id}:sessions", settings.breakdown_cache_ttl, compute)

    def get_strategy_performance(self, user_id: int) -> List[Dict[str, Any]]:
        def compute():
            trades = self.repository.find_records(user_id, closed_only=True)
            return metrics_engine.compute_grouped_performance(trades, "strategy")

        return self._cached(f"analytics:{user_id}:strategies", settings.breakdown_cache_ttl, compute)

    def get_daily_pnl(self, user_id: int, year: int, month: Optional[int] = None) -> List[Dict[str, Any]]:
        trades = self.repository.find_records(user_id, closed_only=True, sort="trade_date")
        return metrics_engine.compute_daily_pnl(trades, year, month)

    def get_mistake_breakdown(self, user_id: int) -> List[Dict[str, Any]]:
        trades = self.repository.find_records(user_id, with_mistake=True)
        return metrics_engine.compute_mistake_breakdown(trades)

    def get_emotion_performance(self, user_id: int) -> List[Dict[str, Any]]:
        trades = self.repository.find_records(user_id, closed_only=True)
        return metrics_engine.compute_emotion_performance(trades)
