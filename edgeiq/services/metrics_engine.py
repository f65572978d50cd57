import calendar
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from edgeiq.services.trade_records import DateRange, TradeRecord


class EquityGranularity(str, Enum):
    """エクイティカーブの集計単位"""
    TRADE = "trade"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass
class PerformanceSummary:
    """パフォーマンスサマリー"""
    total_trades: int = 0
    closed_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_pnl: float = 0.0
    win_rate: float = 0.0          # %
    avg_r_multiple: float = 0.0
    profit_factor: float = 0.0     # 損失ゼロかつ利益ありなら inf
    max_drawdown: float = 0.0      # %
    current_streak: int = 0
    streak_type: Optional[str] = None
    avg_win: float = 0.0
    avg_loss: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTrades": self.total_trades,
            "closedTrades": self.closed_trades,
            "wins": self.wins,
            "losses": self.losses,
            "totalPnl": self.total_pnl,
            "winRate": self.win_rate,
            "avgRMultiple": self.avg_r_multiple,
            "profitFactor": self.profit_factor,
            "maxDrawdown": self.max_drawdown,
            "currentStreak": self.current_streak,
            "streakType": self.streak_type,
            "avgWin": self.avg_win,
            "avgLoss": self.avg_loss,
            "bestTrade": self.best_trade,
            "worstTrade": self.worst_trade,
        }


@dataclass
class EquityPoint:
    """エクイティカーブの1点"""
    date: str
    cumulative_pnl: float
    trade_pnl: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "cumulativePnl": self.cumulative_pnl,
            "tradePnl": self.trade_pnl,
        }


def _filter_range(trades: Iterable[TradeRecord], date_range: Optional[DateRange]) -> List[TradeRecord]:
    if date_range is None or date_range.is_unbounded:
        return list(trades)
    return [t for t in trades if date_range.contains(t.trade_date)]


def _pnl(trade: TradeRecord) -> float:
    return trade.pnl or 0.0


def calculate_profit_factor(gross_profit: float, gross_loss: float) -> float:
    """プロフィットファクター計算"""
    if gross_loss > 0:
        return round(gross_profit / gross_loss, 2)
    return math.inf if gross_profit > 0 else 0.0


def calculate_max_drawdown(trades: List[TradeRecord]) -> float:
    """最大ドローダウン(%)計算

    trade_date昇順に累積損益を追い、0から始まるピークに対する下落率の最大値を返す。
    ピークが正になるまではドローダウン0とする。
    """
    peak = 0.0
    running_pnl = 0.0
    max_drawdown = 0.0
    for trade in sorted(trades, key=lambda t: t.trade_date):
        running_pnl += _pnl(trade)
        if running_pnl > peak:
            peak = running_pnl
        drawdown = (peak - running_pnl) / peak * 100 if peak > 0 else 0.0
        if drawdown > max_drawdown:
            max_drawdown = drawdown
    return max_drawdown


def calculate_streak(trades: List[TradeRecord]) -> Tuple[int, Optional[str]]:
    """直近からの連勝/連敗計算（オープントレードはスキップ）"""
    streak = 0
    streak_type = None
    for trade in sorted(trades, key=lambda t: t.trade_date, reverse=True):
        if trade.is_open:
            continue
        if streak_type is None:
            streak_type = trade.status
        if trade.status == streak_type:
            streak += 1
        else:
            break
    return streak, streak_type


def compute_summary(trades: Iterable[TradeRecord], date_range: Optional[DateRange] = None) -> PerformanceSummary:
    """サマリー計算"""
    trades = _filter_range(trades, date_range)
    if not trades:
        return PerformanceSummary()

    wins = [t for t in trades if t.is_win]
    losses = [t for t in trades if t.is_loss]
    closed = [t for t in trades if not t.is_open]

    total_pnl = sum(_pnl(t) for t in trades)
    win_rate = len(wins) / len(closed) * 100 if closed else 0.0
    avg_r_multiple = sum((t.r_multiple or 0.0) for t in closed) / len(closed) if closed else 0.0

    gross_profit = sum(_pnl(t) for t in wins)
    gross_loss = abs(sum(_pnl(t) for t in losses))

    streak, streak_type = calculate_streak(trades)
    pnls = [_pnl(t) for t in trades]

    return PerformanceSummary(
        total_trades=len(trades),
        closed_trades=len(closed),
        wins=len(wins),
        losses=len(losses),
        total_pnl=round(total_pnl, 2),
        win_rate=round(win_rate, 1),
        avg_r_multiple=round(avg_r_multiple, 2),
        profit_factor=calculate_profit_factor(gross_profit, gross_loss),
        max_drawdown=round(calculate_max_drawdown(trades), 1),
        current_streak=streak,
        streak_type=streak_type,
        avg_win=round(gross_profit / len(wins), 2) if wins else 0.0,
        avg_loss=round(gross_loss / len(losses), 2) if losses else 0.0,
        best_trade=round(max(pnls), 2),
        worst_trade=round(min(pnls), 2),
    )


def compute_equity_curve(
    trades: Iterable[TradeRecord],
    date_range: Optional[DateRange] = None,
    granularity: EquityGranularity = EquityGranularity.TRADE,
) -> List[EquityPoint]:
    """エクイティカーブ計算（決済済みトレードのみ）"""
    closed = sorted(
        (t for t in _filter_range(trades, date_range) if not t.is_open),
        key=lambda t: t.trade_date
    )
    if not closed:
        return []

    granularity = EquityGranularity(granularity)
    if granularity == EquityGranularity.TRADE:
        points = []
        cumulative = 0.0
        for trade in closed:
            cumulative += _pnl(trade)
            points.append(EquityPoint(
                date=trade.trade_date.date().isoformat(),
                cumulative_pnl=round(cumulative, 2),
                trade_pnl=round(_pnl(trade), 2)
            ))
        return points

    df = pd.DataFrame({
        "trade_date": pd.to_datetime([t.trade_date for t in closed]),
        "pnl": [_pnl(t) for t in closed],
    })
    if granularity == EquityGranularity.DAY:
        bucket = df["trade_date"].dt.normalize()
    elif granularity == EquityGranularity.WEEK:
        bucket = df["trade_date"].dt.to_period("W-SUN").dt.start_time
    else:
        bucket = df["trade_date"].dt.to_period("M").dt.start_time

    bucket_pnl = df.groupby(bucket, sort=True)["pnl"].sum()
    cumulative = bucket_pnl.cumsum()

    return [
        EquityPoint(
            date=ts.date().isoformat(),
            cumulative_pnl=round(float(cumulative[ts]), 2),
            trade_pnl=round(float(bucket_pnl[ts]), 2)
        )
        for ts in bucket_pnl.index
    ]


def _closed_frame(trades: Iterable[TradeRecord], attribute: str) -> pd.DataFrame:
    rows = [
        {
            "key": getattr(t, attribute),
            "win": 1 if t.is_win else 0,
            "pnl": _pnl(t),
            "r_multiple": t.r_multiple,
        }
        for t in trades if not t.is_open
    ]
    df = pd.DataFrame(rows, columns=["key", "win", "pnl", "r_multiple"])
    df["r_multiple"] = df["r_multiple"].astype(float)
    return df


def compute_grouped_performance(trades: Iterable[TradeRecord], group_by: str) -> List[Dict[str, Any]]:
    """セッション別/戦略別パフォーマンス（総損益の降順）"""
    if group_by not in ("session", "strategy"):
        raise ValueError(f"サポートされていないグループ: {group_by}")

    df = _closed_frame(trades, group_by)
    if df.empty:
        return []

    grouped = df.groupby("key").agg(
        total_trades=("pnl", "size"),
        wins=("win", "sum"),
        total_pnl=("pnl", "sum"),
        avg_r_multiple=("r_multiple", "mean"),
    )
    grouped["avg_r_multiple"] = grouped["avg_r_multiple"].fillna(0.0)
    grouped = grouped.sort_values("total_pnl", ascending=False, kind="mergesort")

    results = []
    for key, row in grouped.iterrows():
        total = int(row["total_trades"])
        wins = int(row["wins"])
        results.append({
            group_by: key,
            "totalTrades": total,
            "wins": wins,
            "winRate": round(wins / total * 100, 1) if total else 0.0,
            "totalPnl": round(float(row["total_pnl"]), 2),
            "avgRMultiple": round(float(row["avg_r_multiple"]), 2),
        })
    return results


def compute_daily_pnl(trades: Iterable[TradeRecord], year: int, month: Optional[int] = None) -> List[Dict[str, Any]]:
    """日次損益（ヒートマップ用）"""
    if month:
        start = datetime(year, month, 1)
        last_day = calendar.monthrange(year, month)[1]
        end = datetime(year, month, last_day, 23, 59, 59, 999999)
    else:
        start = datetime(year, 1, 1)
        end = datetime(year, 12, 31, 23, 59, 59, 999999)
    period = DateRange(start=start, end=end)

    rows = [
        {"date": t.trade_date.date().isoformat(), "pnl": _pnl(t), "win": 1 if t.is_win else 0}
        for t in trades if not t.is_open and period.contains(t.trade_date)
    ]
    if not rows:
        return []

    df = pd.DataFrame(rows)
    daily = df.groupby("date", sort=True).agg(
        pnl=("pnl", "sum"),
        trades=("pnl", "size"),
        wins=("win", "sum"),
    )
    return [
        {
            "date": date,
            "pnl": round(float(row["pnl"]), 2),
            "trades": int(row["trades"]),
            "wins": int(row["wins"]),
        }
        for date, row in daily.iterrows()
    ]


def compute_mistake_breakdown(trades: Iterable[TradeRecord]) -> List[Dict[str, Any]]:
    """ミスタグ別の件数と損失額"""
    rows = [
        {"tag": t.mistake_tag, "loss": min(_pnl(t), 0.0)}
        for t in trades if t.mistake_tag
    ]
    if not rows:
        return []

    df = pd.DataFrame(rows)
    grouped = df.groupby("tag").agg(count=("loss", "size"), total_pnl_lost=("loss", "sum")).reset_index()
    grouped = grouped.sort_values(["count", "tag"], ascending=[False, True])
    return [
        {
            "tag": row["tag"],
            "count": int(row["count"]),
            "totalPnlLost": round(float(row["total_pnl_lost"]), 2),
        }
        for _, row in grouped.iterrows()
    ]


def compute_emotion_performance(trades: Iterable[TradeRecord]) -> List[Dict[str, Any]]:
    """エントリー前感情別パフォーマンス"""
    df = _closed_frame(trades, "emotion_before")
    if df.empty:
        return []

    grouped = df.groupby("key").agg(
        trades=("pnl", "size"),
        wins=("win", "sum"),
        pnl=("pnl", "sum"),
    ).reset_index()
    grouped = grouped.sort_values(["trades", "key"], ascending=[False, True])
    return [
        {
            "emotion": row["key"],
            "trades": int(row["trades"]),
            "wins": int(row["wins"]),
            "pnl": round(float(row["pnl"]), 2),
            "winRate": round(int(row["wins"]) / int(row["trades"]) * 100, 1),
        }
        for _, row in grouped.iterrows()
    ]
