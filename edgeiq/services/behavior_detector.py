from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np

from edgeiq.services.trade_records import TradeRecord

# 検出ウィンドウ
LOOKBACK_WINDOW = timedelta(hours=24)
RISK_SAMPLE_SIZE = 20

# 検出閾値
OVERTRADING_TRADE_COUNT = 5
OVERTRADING_SPAN = timedelta(hours=4)
REVENGE_INTERVAL = timedelta(minutes=15)
RISK_MIN_TRADES = 5
RISK_CV_THRESHOLD = 50.0           # %
EMOTIONAL_BIAS_THRESHOLD = 0.3

FOMO_EMOTIONS = {"FOMO"}
FOMO_MISTAKES = {"FOMO Entry", "Late Entry"}
NEGATIVE_EMOTIONS = {"Anxious", "Revenge", "FOMO", "Fearful"}


@dataclass(frozen=True)
class BehaviorFlags:
    """行動フラグ（固定5項目）"""
    overtrading: bool = False
    revenge_trade: bool = False
    fomo: bool = False
    inconsistent_risk: bool = False
    emotional_bias: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "overtrading": self.overtrading,
            "revengeTrade": self.revenge_trade,
            "fomo": self.fomo,
            "inconsistentRisk": self.inconsistent_risk,
            "emotionalBias": self.emotional_bias,
        }

    def as_columns(self) -> Dict[str, bool]:
        return asdict(self)


def _by_creation(trades: Sequence[TradeRecord]) -> List[TradeRecord]:
    return sorted(trades, key=lambda t: t.created_at)


def detect_overtrading(trades: Sequence[TradeRecord]) -> bool:
    """連続5トレードが4時間以内に収まっていればTrue"""
    if len(trades) < OVERTRADING_TRADE_COUNT:
        return False
    ordered = _by_creation(trades)
    for i in range(len(ordered) - OVERTRADING_TRADE_COUNT + 1):
        first = ordered[i]
        last = ordered[i + OVERTRADING_TRADE_COUNT - 1]
        if last.created_at - first.created_at <= OVERTRADING_SPAN:
            return True
    return False


def detect_revenge_trade(trades: Sequence[TradeRecord]) -> bool:
    """損失トレード直後15分以内の次トレードがあればTrue"""
    ordered = _by_creation(trades)
    for current, following in zip(ordered, ordered[1:]):
        if current.is_loss and following.created_at - current.created_at <= REVENGE_INTERVAL:
            return True
    return False


def detect_fomo(trades: Sequence[TradeRecord]) -> bool:
    return any(
        t.emotion_before in FOMO_EMOTIONS or t.mistake_tag in FOMO_MISTAKES
        for t in trades
    )


def position_size_cv(trades: Sequence[TradeRecord]) -> float:
    """ポジションサイズの変動係数(%)"""
    sizes = np.array([t.position_size for t in trades if t.position_size], dtype=float)
    if sizes.size == 0:
        return 0.0
    mean = sizes.mean()
    if mean <= 0:
        return 0.0
    return float(sizes.std() / mean * 100)


def detect_inconsistent_risk(recent_trades: Sequence[TradeRecord]) -> bool:
    """直近20トレードのサイズ変動係数が50%超ならTrue"""
    if len(recent_trades) < RISK_MIN_TRADES:
        return False
    return position_size_cv(recent_trades) > RISK_CV_THRESHOLD


def detect_emotional_bias(trades: Sequence[TradeRecord]) -> bool:
    if not trades:
        return False
    negative = sum(1 for t in trades if t.emotion_before in NEGATIVE_EMOTIONS)
    return negative / len(trades) > EMOTIONAL_BIAS_THRESHOLD


def window_trades(trades: Sequence[TradeRecord], now: Optional[datetime] = None) -> List[TradeRecord]:
    """24時間ウィンドウ（created_at基準、昇順）"""
    now = now or datetime.now()
    since = now - LOOKBACK_WINDOW
    return _by_creation([t for t in trades if t.created_at >= since])


def recent_trades(trades: Sequence[TradeRecord], limit: int = RISK_SAMPLE_SIZE) -> List[TradeRecord]:
    """created_at降順の直近N件（ステータス不問）"""
    return sorted(trades, key=lambda t: t.created_at, reverse=True)[:limit]


class BehaviorDetector:
    """行動パターン検出"""

    def detect(self, window: Sequence[TradeRecord], recent: Sequence[TradeRecord]) -> BehaviorFlags:
        """
        window: 24時間以内のトレード
        recent: リスク一貫性判定用の直近トレード
        """
        return BehaviorFlags(
            overtrading=detect_overtrading(window),
            revenge_trade=detect_revenge_trade(window),
            fomo=detect_fomo(window),
            inconsistent_risk=detect_inconsistent_risk(recent),
            emotional_bias=detect_emotional_bias(window),
        )
