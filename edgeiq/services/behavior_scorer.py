from typing import Dict, Sequence

import numpy as np

from edgeiq.services.behavior_detector import BehaviorFlags
from edgeiq.services.trade_records import TradeRecord

# フラグごとの減点
FLAG_PENALTIES: Dict[str, int] = {
    "overtrading": 20,
    "revenge_trade": 25,
    "fomo": 15,
    "inconsistent_risk": 20,
    "emotional_bias": 10,
}

LOW_STOP_LOSS_RATIO = 0.5
LOW_STOP_LOSS_PENALTY = 10
FULL_STOP_LOSS_BONUS = 5

CONSISTENCY_SAMPLE_SIZE = 30
CONSISTENCY_WINDOW = 5
DEFAULT_CONSISTENCY_SCORE = 50.0
VARIANCE_MULTIPLIER = 200


def calculate_discipline_score(flags: BehaviorFlags, window: Sequence[TradeRecord]) -> float:
    """規律スコア(0-100)"""
    score = 100.0

    flag_values = flags.as_columns()
    for flag_name, penalty in FLAG_PENALTIES.items():
        if flag_values[flag_name]:
            score -= penalty

    # ストップロス設定率
    if window:
        sl_ratio = sum(1 for t in window if t.stop_loss is not None) / len(window)
        if sl_ratio < LOW_STOP_LOSS_RATIO:
            score -= LOW_STOP_LOSS_PENALTY
        elif sl_ratio == 1.0:
            score += FULL_STOP_LOSS_BONUS

    return max(0.0, min(100.0, score))


def calculate_consistency_score(closed_trades: Sequence[TradeRecord]) -> float:
    """一貫性スコア(0-100)

    closed_trades: trade_date降順の決済済みトレード（先頭30件を使用）
    5トレードずつのローリング勝率の分散が小さいほど高得点。
    """
    sample = [t for t in closed_trades if not t.is_open][:CONSISTENCY_SAMPLE_SIZE]
    if len(sample) < CONSISTENCY_WINDOW:
        return DEFAULT_CONSISTENCY_SCORE

    outcomes = np.array([1.0 if t.is_win else 0.0 for t in sample])
    window_rates = np.array([
        outcomes[i:i + CONSISTENCY_WINDOW].sum() / CONSISTENCY_WINDOW
        for i in range(len(outcomes) - CONSISTENCY_WINDOW + 1)
    ])
    variance = float(window_rates.var())
    consistency = max(0.0, 100.0 - variance * VARIANCE_MULTIPLIER)
    return round(consistency, 1)
