from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Index, Enum as SQLEnum

from edgeiq.core.database import Base


class Direction(str, Enum):
    """売買方向"""
    LONG = "LONG"
    SHORT = "SHORT"


class TradeStatus(str, Enum):
    """トレード状態"""
    OPEN = "open"
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


class Market(str, Enum):
    FOREX = "forex"
    CRYPTO = "crypto"
    STOCKS = "stocks"
    INDICES = "indices"
    COMMODITIES = "commodities"
    FUTURES = "futures"


class Strategy(str, Enum):
    """戦略タグ"""
    BREAKOUT = "Breakout"
    REVERSAL = "Reversal"
    TREND_FOLLOW = "Trend Follow"
    HTF_REJECTION = "HTF Rejection"
    MOMENTUM = "Momentum"
    SCALP = "Scalp"
    NEWS = "News"
    OTHER = "Other"


class TradingSession(str, Enum):
    """取引セッション"""
    LONDON = "London"
    NEW_YORK = "New York"
    ASIA = "Asia"
    OVERLAP = "Overlap"
    OFF_HOURS = "Off-Hours"


class EmotionBefore(str, Enum):
    """エントリー前の感情"""
    CONFIDENT = "Confident"
    NEUTRAL = "Neutral"
    ANXIOUS = "Anxious"
    FOMO = "FOMO"
    REVENGE = "Revenge"
    EXCITED = "Excited"
    BORED = "Bored"
    FEARFUL = "Fearful"


class EmotionAfter(str, Enum):
    """決済後の感情"""
    SATISFIED = "Satisfied"
    NEUTRAL = "Neutral"
    FRUSTRATED = "Frustrated"
    RELIEVED = "Relieved"
    REGRETFUL = "Regretful"
    EUPHORIC = "Euphoric"
    DISAPPOINTED = "Disappointed"


class MistakeTag(str, Enum):
    """ミスタグ"""
    FOMO_ENTRY = "FOMO Entry"
    REVENGE_TRADE = "Revenge Trade"
    OVERTRADING = "Overtrading"
    MOVED_STOP = "Moved Stop"
    EARLY_EXIT = "Early Exit"
    LATE_ENTRY = "Late Entry"
    NO_SETUP = "No Setup"
    SIZED_TOO_BIG = "Sized Too Big"


# 派生フィールドの再計算が必要になる入力項目
PRICE_FIELDS = ("direction", "entry_price", "exit_price", "position_size", "stop_loss", "take_profit")


def calculate_derived_fields(
    direction: Direction,
    entry_price: float,
    exit_price: Optional[float],
    position_size: float,
    stop_loss: Optional[float] = None,
    take_profit: Optional[float] = None,
    current_pnl: float = 0.0,
) -> Dict[str, Any]:
    """pnl・status・リスクリワード・Rマルチプルを算出

    exit_priceが未設定の間はオープン扱いとし、pnlは現在値を維持する。
    """
    if exit_price is None:
        return {
            "pnl": current_pnl or 0.0,
            "pnl_percent": 0.0,
            "risk_reward": None,
            "r_multiple": None,
            "status": TradeStatus.OPEN,
        }

    if Direction(direction) == Direction.LONG:
        diff = exit_price - entry_price
    else:
        diff = entry_price - exit_price

    pnl = round(diff * position_size, 2)
    pnl_percent = round(diff / entry_price * 100, 2) if entry_price else 0.0

    risk_reward = None
    r_multiple = None
    if stop_loss is not None:
        risk_per_unit = abs(entry_price - stop_loss)
        if risk_per_unit > 0:
            r_multiple = round(diff / risk_per_unit, 2)
            if take_profit is not None:
                risk_reward = round(abs(take_profit - entry_price) / risk_per_unit, 2)

    if pnl > 0:
        status = TradeStatus.WIN
    elif pnl < 0:
        status = TradeStatus.LOSS
    else:
        status = TradeStatus.BREAKEVEN

    return {
        "pnl": pnl,
        "pnl_percent": pnl_percent,
        "risk_reward": risk_reward,
        "r_multiple": r_multiple,
        "status": status,
    }


class Trade(Base):
    """トレード記録テーブル"""
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)

    # 銘柄
    symbol = Column(String(20), nullable=False)
    market = Column(SQLEnum(Market), default=Market.FOREX, nullable=False)
    direction = Column(SQLEnum(Direction), nullable=False)

    # 価格
    entry_price = Column(Float, nullable=False)
    exit_price = Column(Float, nullable=True)
    stop_loss = Column(Float, nullable=True)
    take_profit = Column(Float, nullable=True)
    position_size = Column(Float, nullable=False)

    # 派生フィールド（recompute_derived_fieldsでのみ更新）
    pnl = Column(Float, default=0.0, nullable=False)
    pnl_percent = Column(Float, default=0.0)
    risk_reward = Column(Float, nullable=True)
    r_multiple = Column(Float, nullable=True)
    status = Column(SQLEnum(TradeStatus), default=TradeStatus.OPEN, nullable=False, index=True)

    # コンテキスト
    strategy = Column(SQLEnum(Strategy), default=Strategy.OTHER, nullable=False)
    session = Column(SQLEnum(TradingSession), default=TradingSession.LONDON, nullable=False)
    trade_date = Column(DateTime, default=datetime.now, nullable=False)
    duration = Column(Integer, nullable=True)  # 分

    # 心理
    emotion_before = Column(SQLEnum(EmotionBefore), default=EmotionBefore.NEUTRAL, nullable=False)
    emotion_after = Column(SQLEnum(EmotionAfter), default=EmotionAfter.NEUTRAL, nullable=False)
    mistake_tag = Column(SQLEnum(MistakeTag), nullable=True)

    notes = Column(Text, default="")

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index('idx_trades_user_trade_date', 'user_id', 'trade_date'),
        Index('idx_trades_user_created_at', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f"<Trade(id={self.id}, user={self.user_id}, symbol={self.symbol}, status={self.status})>"

    def recompute_derived_fields(self) -> None:
        """価格関連の変更後に派生フィールドを再計算"""
        derived = calculate_derived_fields(
            direction=self.direction,
            entry_price=self.entry_price,
            exit_price=self.exit_price,
            position_size=self.position_size,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            current_pnl=self.pnl or 0.0,
        )
        for field_name, value in derived.items():
            setattr(self, field_name, value)

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN
