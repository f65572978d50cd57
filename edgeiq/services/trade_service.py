from datetime import datetime
from typing import Any, Dict, List, Optional
import json
import logging

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edgeiq.core.cache import AnalyticsCache
from edgeiq.core.config import settings
from edgeiq.core.exceptions import TradeNotFoundError
from edgeiq.models.trades import Trade, PRICE_FIELDS
from edgeiq.schemas.trades import TradeCreate, TradeUpdate, TradeResponse
from edgeiq.services.task_runner import AnalysisTaskRunner
from edgeiq.services.trade_records import DateRange
from edgeiq.services.trade_repository import TradeRepository

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "trade_date", "symbol", "direction", "entry_price", "exit_price", "position_size",
    "pnl", "status", "strategy", "session", "emotion_before", "emotion_after", "notes",
]


class TradeService:
    """トレード書き込み（派生項目再計算・キャッシュ破棄・分析トリガー）"""

    def __init__(self,
                 db: Session,
                 cache: Optional[AnalyticsCache] = None,
                 task_runner: Optional[AnalysisTaskRunner] = None):
        self.db = db
        self.repository = TradeRepository(db)
        self.cache = cache or AnalyticsCache(None)
        self.task_runner = task_runner

    def _after_write(self, user_id: int, analyze: bool = True) -> None:
        self.cache.invalidate_user(user_id)
        if analyze and self.task_runner is not None:
            # 分析失敗は書き込み結果に影響させない
            self.task_runner.submit(user_id)

    def _build_trade(self, user_id: int, data: TradeCreate) -> Trade:
        values = data.model_dump()
        provisional_pnl = values.pop("pnl", None)
        if values.get("trade_date") is None:
            values["trade_date"] = datetime.now()

        trade = Trade(user_id=user_id, **values)
        trade.pnl = provisional_pnl or 0.0
        trade.recompute_derived_fields()
        return trade

    def create_trade(self, user_id: int, data: TradeCreate) -> Trade:
        """トレード作成"""
        trade = self._build_trade(user_id, data)
        self.db.add(trade)
        self.db.commit()
        self.db.refresh(trade)

        logger.info(f"トレード作成: id={trade.id} user={user_id} {trade.symbol} status={trade.status.value}")
        self._after_write(user_id)
        return trade

    def bulk_import(self, user_id: int, items: List[TradeCreate]) -> int:
        """一括インポート"""
        trades = [self._build_trade(user_id, item) for item in items]
        self.db.add_all(trades)
        self.db.commit()

        logger.info(f"トレード一括インポート: user={user_id} {len(trades)}件")
        self._after_write(user_id)
        return len(trades)

    def get_trade(self, user_id: int, trade_id: int) -> Trade:
        trade = self.repository.get(user_id, trade_id)
        if trade is None:
            raise TradeNotFoundError(f"トレードが見つかりません: {trade_id}")
        return trade

    def update_trade(self, user_id: int, trade_id: int, data: TradeUpdate) -> Trade:
        """トレード更新（価格関連の変更時は派生項目を再計算）"""
        trade = self.get_trade(user_id, trade_id)
        changes = data.model_dump(exclude_unset=True)

        try:
            for field_name, value in changes.items():
                setattr(trade, field_name, value)
            if any(name in changes for name in PRICE_FIELDS):
                trade.recompute_derived_fields()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"トレード更新保存エラー id={trade_id} user={user_id}: {str(e)}")
            raise
        self.db.refresh(trade)

        logger.info(f"トレード更新: id={trade.id} user={user_id} fields={sorted(changes)}")
        self._after_write(user_id)
        return trade

    def delete_trade(self, user_id: int, trade_id: int) -> None:
        trade = self.get_trade(user_id, trade_id)
        self.db.delete(trade)
        self.db.commit()

        logger.info(f"トレード削除: id={trade_id} user={user_id}")
        self._after_write(user_id, analyze=False)

    def list_trades(self,
                    user_id: int,
                    page: int = 1,
                    limit: int = 20,
                    sort: str = "-trade_date",
                    status: Optional[str] = None,
                    strategy: Optional[str] = None,
                    session: Optional[str] = None,
                    symbol: Optional[str] = None,
                    date_from: Optional[datetime] = None,
                    date_to: Optional[datetime] = None) -> Dict[str, Any]:
        """トレード一覧（キャッシュ付き）"""
        query_params = {
            "page": page, "limit": limit, "sort": sort, "status": status, "strategy": strategy,
            "session": session, "symbol": symbol,
            "date_from": date_from.isoformat() if date_from else None,
            "date_to": date_to.isoformat() if date_to else None,
        }
        cache_key = f"trades:{user_id}:{json.dumps(query_params, sort_keys=True)}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        filters = {
            "status": status,
            "strategy": strategy,
            "session": session,
            "symbol": symbol,
        }
        if date_from or date_to:
            filters["date_range"] = DateRange(start=date_from, end=date_to)

        trades = self.repository.find(
            user_id, sort=sort, skip=(page - 1) * limit, limit=limit, **filters
        )
        total = self.repository.count(user_id, **filters)

        result = {
            "trades": [TradeResponse.model_validate(t).model_dump(mode="json") for t in trades],
            "total": total,
            "page": page,
            "limit": limit,
        }
        self.cache.set(cache_key, result, settings.trades_cache_ttl)
        return result

    def export_rows(self, user_id: int) -> List[Dict[str, Any]]:
        """エクスポート用の行（trade_date降順、日付はYYYY-MM-DD）"""
        rows = []
        for trade in self.repository.find(user_id, sort="-trade_date"):
            data = TradeResponse.model_validate(trade).model_dump(mode="json")
            row = {column: data.get(column) for column in EXPORT_COLUMNS}
            row["trade_date"] = row["trade_date"][:10]
            rows.append(row)
        return rows

    def export_trades(self, user_id: int, export_format: str = "csv"):
        """CSV文字列またはJSON行リストを返す"""
        rows = self.export_rows(user_id)
        logger.info(f"トレードエクスポート: user={user_id} {len(rows)}件 format={export_format}")
        if export_format == "json":
            return rows
        return pd.DataFrame(rows, columns=EXPORT_COLUMNS).to_csv(index=False)
