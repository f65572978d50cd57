from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from edgeiq.models.trades import Trade, TradeStatus


@dataclass(frozen=True)
class TradeRecord:
    """分析用のトレードスナップショット（読み取り専用）"""
    id: Optional[int]
    user_id: int
    symbol: str
    direction: str
    entry_price: float
    position_size: float
    trade_date: datetime
    created_at: datetime
    pnl: float = 0.0
    status: str = TradeStatus.OPEN.value
    exit_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    r_multiple: Optional[float] = None
    risk_reward: Optional[float] = None
    strategy: str = "Other"
    session: str = "London"
    emotion_before: str = "Neutral"
    emotion_after: str = "Neutral"
    mistake_tag: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN.value

    @property
    def is_win(self) -> bool:
        return self.status == TradeStatus.WIN.value

    @property
    def is_loss(self) -> bool:
        return self.status == TradeStatus.LOSS.value

    @classmethod
    def from_model(cls, trade: Trade) -> "TradeRecord":
        return cls(
            id=trade.id,
            user_id=trade.user_id,
            symbol=trade.symbol,
            direction=_value(trade.direction),
            entry_price=trade.entry_price,
            position_size=trade.position_size,
            trade_date=trade.trade_date,
            created_at=trade.created_at,
            pnl=trade.pnl or 0.0,
            status=_value(trade.status),
            exit_price=trade.exit_price,
            stop_loss=trade.stop_loss,
            take_profit=trade.take_profit,
            r_multiple=trade.r_multiple,
            risk_reward=trade.risk_reward,
            strategy=_value(trade.strategy),
            session=_value(trade.session),
            emotion_before=_value(trade.emotion_before),
            emotion_after=_value(trade.emotion_after),
            mistake_tag=_value(trade.mistake_tag),
        )


def _value(member):
    return member.value if hasattr(member, "value") else member


@dataclass(frozen=True)
class DateRange:
    """両端を含む期間（Noneは無制限）"""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


RANGE_PRESETS = ("7d", "30d", "90d", "1y", "all")


def resolve_date_range(range_key: str, now: Optional[datetime] = None) -> DateRange:
    """期間キー(7d/30d/90d/1y/all)をDateRangeに変換

    未知のキーは30dとして扱う。
    """
    now = now or datetime.now()
    if range_key == "all":
        return DateRange()
    if range_key == "7d":
        start = now - timedelta(days=7)
    elif range_key == "90d":
        start = now - timedelta(days=90)
    elif range_key == "1y":
        try:
            start = now.replace(year=now.year - 1)
        except ValueError:
            # 2/29
            start = now.replace(year=now.year - 1, day=28)
    else:
        start = now - timedelta(days=30)
    return DateRange(start=start, end=now)
