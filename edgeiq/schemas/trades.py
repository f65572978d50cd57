from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from edgeiq.models.trades import (
    Direction, TradeStatus, Market, Strategy, TradingSession,
    EmotionBefore, EmotionAfter, MistakeTag
)


class TradeBase(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    market: Market = Market.FOREX
    direction: Direction
    entry_price: float = Field(..., ge=0)
    exit_price: Optional[float] = Field(None, ge=0)
    stop_loss: Optional[float] = Field(None, ge=0)
    take_profit: Optional[float] = Field(None, ge=0)
    position_size: float = Field(..., gt=0)
    strategy: Strategy = Strategy.OTHER
    session: TradingSession = TradingSession.LONDON
    trade_date: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=0)
    emotion_before: EmotionBefore = EmotionBefore.NEUTRAL
    emotion_after: EmotionAfter = EmotionAfter.NEUTRAL
    mistake_tag: Optional[MistakeTag] = None
    notes: str = Field("", max_length=2000)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        return value.strip().upper()


class TradeCreate(TradeBase):
    # オープントレードの暫定損益（決済済みなら再計算で上書き）
    pnl: Optional[float] = None


# NOT NULL列（部分更新でもnullで上書き不可）
NON_NULLABLE_FIELDS = (
    "symbol", "market", "direction", "entry_price", "position_size", "strategy",
    "session", "trade_date", "emotion_before", "emotion_after", "notes",
)


class TradeUpdate(BaseModel):
    symbol: Optional[str] = Field(None, min_length=1, max_length=20)
    market: Optional[Market] = None
    direction: Optional[Direction] = None
    entry_price: Optional[float] = Field(None, ge=0)
    exit_price: Optional[float] = Field(None, ge=0)
    stop_loss: Optional[float] = Field(None, ge=0)
    take_profit: Optional[float] = Field(None, ge=0)
    position_size: Optional[float] = Field(None, gt=0)
    strategy: Optional[Strategy] = None
    session: Optional[TradingSession] = None
    trade_date: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=0)
    emotion_before: Optional[EmotionBefore] = None
    emotion_after: Optional[EmotionAfter] = None
    mistake_tag: Optional[MistakeTag] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().upper() if value else value

    @model_validator(mode="after")
    def reject_explicit_nulls(self):
        null_fields = [
            name for name in NON_NULLABLE_FIELDS
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if null_fields:
            raise ValueError(f"nullを指定できない項目です: {', '.join(null_fields)}")
        return self


class TradeResponse(TradeBase):
    id: int
    user_id: int
    pnl: float
    pnl_percent: Optional[float] = None
    risk_reward: Optional[float] = None
    r_multiple: Optional[float] = None
    status: TradeStatus
    trade_date: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TradeListResponse(BaseModel):
    trades: List[TradeResponse]
    total: int
    page: int
    limit: int


class BulkImportRequest(BaseModel):
    trades: List[TradeCreate] = Field(..., min_length=1, max_length=500)
