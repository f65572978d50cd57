from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from edgeiq.models.trades import Trade, TradeStatus, Strategy, TradingSession
from edgeiq.services.trade_records import DateRange, TradeRecord

SORTABLE_FIELDS = {
    "trade_date": Trade.trade_date,
    "created_at": Trade.created_at,
    "pnl": Trade.pnl,
    "symbol": Trade.symbol,
}


class TradeRepository:
    """トレード検索（オーナー + フィルタ + ソート/スキップ/リミット）"""

    def __init__(self, db: Session):
        self.db = db

    def _query(
        self,
        user_id: int,
        status: Optional[str] = None,
        closed_only: bool = False,
        strategy: Optional[str] = None,
        session: Optional[str] = None,
        symbol: Optional[str] = None,
        date_range: Optional[DateRange] = None,
        created_since: Optional[datetime] = None,
        with_mistake: bool = False,
    ):
        query = self.db.query(Trade).filter(Trade.user_id == user_id)

        if status:
            query = query.filter(Trade.status == TradeStatus(status))
        if closed_only:
            query = query.filter(Trade.status != TradeStatus.OPEN)
        if strategy:
            query = query.filter(Trade.strategy == Strategy(strategy))
        if session:
            query = query.filter(Trade.session == TradingSession(session))
        if symbol:
            query = query.filter(Trade.symbol.ilike(f"%{symbol}%"))
        if date_range is not None:
            if date_range.start is not None:
                query = query.filter(Trade.trade_date >= date_range.start)
            if date_range.end is not None:
                query = query.filter(Trade.trade_date <= date_range.end)
        if created_since is not None:
            query = query.filter(Trade.created_at >= created_since)
        if with_mistake:
            query = query.filter(Trade.mistake_tag.isnot(None))
        return query

    def find(
        self,
        user_id: int,
        sort: str = "-trade_date",
        skip: int = 0,
        limit: Optional[int] = None,
        **filters,
    ) -> List[Trade]:
        query = self._query(user_id, **filters)

        descending = sort.startswith("-")
        column = SORTABLE_FIELDS.get(sort.lstrip("-"), Trade.trade_date)
        query = query.order_by(column.desc() if descending else column.asc(), Trade.id.desc() if descending else Trade.id.asc())

        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def find_records(self, user_id: int, **kwargs) -> List[TradeRecord]:
        """スナップショットとして取得"""
        return [TradeRecord.from_model(t) for t in self.find(user_id, **kwargs)]

    def count(self, user_id: int, **filters) -> int:
        return self._query(user_id, **filters).count()

    def get(self, user_id: int, trade_id: int) -> Optional[Trade]:
        return self.db.query(Trade).filter(
            Trade.id == trade_id,
            Trade.user_id == user_id
        ).first()
