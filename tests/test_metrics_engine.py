import math
import pytest
from datetime import datetime, timedelta

from edgeiq.services.metrics_engine import (
    EquityGranularity,
    calculate_profit_factor,
    calculate_max_drawdown,
    calculate_streak,
    compute_summary,
    compute_equity_curve,
    compute_grouped_performance,
    compute_daily_pnl,
    compute_mistake_breakdown,
    compute_emotion_performance,
)
from edgeiq.services.trade_records import DateRange, resolve_date_range


class TestComputeSummary:
    """サマリー計算テスト"""

    def test_empty_trades_return_zero_summary(self):
        summary = compute_summary([])

        assert summary.total_trades == 0
        assert summary.total_pnl == 0.0
        assert summary.win_rate == 0.0
        assert summary.profit_factor == 0.0
        assert summary.max_drawdown == 0.0
        assert summary.current_streak == 0
        assert summary.streak_type is None
        assert summary.to_dict()["streakType"] is None

    def test_win_and_loss_scenario(self, make_record):
        trades = [
            make_record(pnl=100.0, status="win", minutes=0),
            make_record(pnl=-50.0, status="loss", minutes=60),
        ]

        summary = compute_summary(trades)

        assert summary.total_pnl == 50.00
        assert summary.win_rate == 50.0
        assert summary.profit_factor == 2.00
        assert summary.avg_win == 100.0
        assert summary.avg_loss == 50.0
        assert summary.best_trade == 100.0
        assert summary.worst_trade == -50.0

    def test_open_trade_counts_in_total_pnl_only(self, make_record):
        trades = [
            make_record(pnl=100.0, status="win"),
            make_record(pnl=25.0, status="open", minutes=10),
        ]

        summary = compute_summary(trades)

        assert summary.total_trades == 2
        assert summary.closed_trades == 1
        assert summary.total_pnl == 125.0
        assert summary.win_rate == 100.0

    def test_all_wins_profit_factor_is_infinite(self, make_record):
        summary = compute_summary([make_record(pnl=10.0), make_record(pnl=5.0, minutes=5)])
        assert math.isinf(summary.profit_factor)

    def test_date_range_filter(self, make_record):
        trades = [
            make_record(pnl=10.0, at=datetime(2024, 1, 1)),
            make_record(pnl=20.0, at=datetime(2024, 2, 1)),
        ]
        summary = compute_summary(trades, DateRange(start=datetime(2024, 1, 15), end=datetime(2024, 2, 15)))
        assert summary.total_trades == 1
        assert summary.total_pnl == 20.0

    def test_win_rate_bounds(self, make_record):
        trades = [make_record(pnl=-1.0, status="loss", minutes=i) for i in range(3)]
        summary = compute_summary(trades)
        assert 0.0 <= summary.win_rate <= 100.0


class TestHelpers:
    def test_profit_factor_rules(self):
        assert calculate_profit_factor(0.0, 0.0) == 0.0
        assert math.isinf(calculate_profit_factor(10.0, 0.0))
        assert calculate_profit_factor(0.0, 10.0) == 0.0
        assert calculate_profit_factor(30.0, 20.0) == 1.5

    def test_streak_stops_at_previous_loss(self, make_record):
        trades = [
            make_record(pnl=10.0, status="win", minutes=0),
            make_record(pnl=10.0, status="win", minutes=10),
            make_record(pnl=-10.0, status="loss", minutes=20),
            make_record(pnl=10.0, status="win", minutes=30),
        ]
        assert calculate_streak(trades) == (1, "win")

    def test_streak_skips_open_trades(self, make_record):
        trades = [
            make_record(pnl=-10.0, status="loss", minutes=0),
            make_record(pnl=-5.0, status="loss", minutes=10),
            make_record(pnl=3.0, status="open", minutes=20),
        ]
        assert calculate_streak(trades) == (2, "loss")

    def test_max_drawdown_non_decreasing_is_zero(self, make_record):
        trades = [make_record(pnl=p, minutes=i) for i, p in enumerate([10.0, 0.0, 5.0, 20.0])]
        assert calculate_max_drawdown(trades) == 0.0

    def test_max_drawdown_percentage_of_peak(self, make_record):
        trades = [
            make_record(pnl=100.0, minutes=0),
            make_record(pnl=-25.0, status="loss", minutes=10),
            make_record(pnl=50.0, minutes=20),
        ]
        assert calculate_max_drawdown(trades) == pytest.approx(25.0)

    def test_max_drawdown_ignores_losses_before_positive_peak(self, make_record):
        trades = [
            make_record(pnl=-50.0, status="loss", minutes=0),
            make_record(pnl=-10.0, status="loss", minutes=10),
        ]
        assert calculate_max_drawdown(trades) == 0.0


class TestEquityCurve:
    """エクイティカーブテスト"""

    def test_per_trade_fold(self, make_record):
        trades = [
            make_record(pnl=100.0, at=datetime(2024, 3, 1, 10)),
            make_record(pnl=-40.0, status="loss", at=datetime(2024, 3, 2, 10)),
            make_record(pnl=15.0, status="open", at=datetime(2024, 3, 3, 10)),
        ]

        curve = compute_equity_curve(trades)

        assert [p.to_dict() for p in curve] == [
            {"date": "2024-03-01", "cumulativePnl": 100.0, "tradePnl": 100.0},
            {"date": "2024-03-02", "cumulativePnl": 60.0, "tradePnl": -40.0},
        ]

    def test_deterministic_and_appends_one_point(self, make_record):
        trades = [
            make_record(pnl=10.0, at=datetime(2024, 3, 1)),
            make_record(pnl=-5.0, status="loss", at=datetime(2024, 3, 2)),
        ]
        first = compute_equity_curve(trades)
        second = compute_equity_curve(trades)
        assert first == second

        extended = compute_equity_curve(trades + [make_record(pnl=7.5, at=datetime(2024, 3, 3))])
        assert extended[:-1] == first
        assert extended[-1].cumulative_pnl == first[-1].cumulative_pnl + 7.5
        assert extended[-1].trade_pnl == 7.5

    def test_day_granularity_buckets(self, make_record):
        trades = [
            make_record(pnl=10.0, at=datetime(2024, 3, 1, 9)),
            make_record(pnl=5.0, at=datetime(2024, 3, 1, 15)),
            make_record(pnl=-3.0, status="loss", at=datetime(2024, 3, 4, 9)),
        ]
        curve = compute_equity_curve(trades, granularity=EquityGranularity.DAY)
        assert [(p.date, p.cumulative_pnl, p.trade_pnl) for p in curve] == [
            ("2024-03-01", 15.0, 15.0),
            ("2024-03-04", 12.0, -3.0),
        ]

    def test_week_granularity_starts_on_monday(self, make_record):
        # 2024-03-04は月曜日
        trades = [
            make_record(pnl=10.0, at=datetime(2024, 3, 5)),
            make_record(pnl=20.0, at=datetime(2024, 3, 10)),
            make_record(pnl=5.0, at=datetime(2024, 3, 11)),
        ]
        curve = compute_equity_curve(trades, granularity=EquityGranularity.WEEK)
        assert [(p.date, p.cumulative_pnl) for p in curve] == [
            ("2024-03-04", 30.0),
            ("2024-03-11", 35.0),
        ]

    def test_month_granularity(self, make_record):
        trades = [
            make_record(pnl=10.0, at=datetime(2024, 1, 20)),
            make_record(pnl=-4.0, status="loss", at=datetime(2024, 2, 3)),
        ]
        curve = compute_equity_curve(trades, granularity="month")
        assert [(p.date, p.cumulative_pnl, p.trade_pnl) for p in curve] == [
            ("2024-01-01", 10.0, 10.0),
            ("2024-02-01", 6.0, -4.0),
        ]

    def test_empty_curve(self):
        assert compute_equity_curve([]) == []


class TestBreakdowns:
    def test_grouped_by_session_sorted_by_total_pnl(self, make_record):
        trades = [
            make_record(pnl=50.0, session="London", r_multiple=2.0),
            make_record(pnl=-20.0, status="loss", session="London", r_multiple=-1.0),
            make_record(pnl=80.0, session="New York", r_multiple=None),
            make_record(pnl=99.0, status="open", session="Asia"),
        ]

        result = compute_grouped_performance(trades, "session")

        assert [row["session"] for row in result] == ["New York", "London"]
        london = result[1]
        assert london["totalTrades"] == 2
        assert london["wins"] == 1
        assert london["winRate"] == 50.0
        assert london["totalPnl"] == 30.0
        assert london["avgRMultiple"] == 0.5
        assert result[0]["avgRMultiple"] == 0.0

    def test_grouped_by_strategy(self, make_record):
        result = compute_grouped_performance([make_record(pnl=5.0, strategy="Scalp")], "strategy")
        assert result == [{
            "strategy": "Scalp", "totalTrades": 1, "wins": 1,
            "winRate": 100.0, "totalPnl": 5.0, "avgRMultiple": 0.0,
        }]

    def test_grouped_invalid_dimension(self, make_record):
        with pytest.raises(ValueError):
            compute_grouped_performance([make_record()], "symbol")

    def test_grouped_empty(self):
        assert compute_grouped_performance([], "session") == []

    def test_daily_pnl_month(self, make_record):
        trades = [
            make_record(pnl=10.0, at=datetime(2024, 3, 1, 9)),
            make_record(pnl=-4.0, status="loss", at=datetime(2024, 3, 1, 18)),
            make_record(pnl=7.0, at=datetime(2024, 3, 31, 23, 30)),
            make_record(pnl=100.0, at=datetime(2024, 4, 1)),
            make_record(pnl=3.0, status="open", at=datetime(2024, 3, 2)),
        ]

        result = compute_daily_pnl(trades, 2024, 3)

        assert result == [
            {"date": "2024-03-01", "pnl": 6.0, "trades": 2, "wins": 1},
            {"date": "2024-03-31", "pnl": 7.0, "trades": 1, "wins": 1},
        ]

    def test_daily_pnl_year(self, make_record):
        trades = [
            make_record(pnl=10.0, at=datetime(2023, 12, 31)),
            make_record(pnl=5.0, at=datetime(2024, 6, 1)),
        ]
        assert [row["date"] for row in compute_daily_pnl(trades, 2024)] == ["2024-06-01"]

    def test_mistake_breakdown(self, make_record):
        trades = [
            make_record(pnl=-30.0, status="loss", mistake_tag="FOMO Entry"),
            make_record(pnl=10.0, status="win", mistake_tag="FOMO Entry"),
            make_record(pnl=-5.0, status="loss", mistake_tag="Early Exit"),
            make_record(pnl=-50.0, status="loss"),
        ]

        result = compute_mistake_breakdown(trades)

        assert result == [
            {"tag": "FOMO Entry", "count": 2, "totalPnlLost": -30.0},
            {"tag": "Early Exit", "count": 1, "totalPnlLost": -5.0},
        ]

    def test_emotion_performance(self, make_record):
        trades = [
            make_record(pnl=20.0, emotion_before="Confident"),
            make_record(pnl=-10.0, status="loss", emotion_before="Confident"),
            make_record(pnl=-15.0, status="loss", emotion_before="FOMO"),
        ]

        result = compute_emotion_performance(trades)

        assert result[0] == {"emotion": "Confident", "trades": 2, "wins": 1, "pnl": 10.0, "winRate": 50.0}
        assert result[1] == {"emotion": "FOMO", "trades": 1, "wins": 0, "pnl": -15.0, "winRate": 0.0}


class TestResolveDateRange:
    def test_presets(self):
        now = datetime(2024, 3, 31, 12, 0)
        assert resolve_date_range("7d", now).start == now - timedelta(days=7)
        assert resolve_date_range("90d", now).start == now - timedelta(days=90)
        assert resolve_date_range("1y", now).start == datetime(2023, 3, 31, 12, 0)
        assert resolve_date_range("all", now).is_unbounded

    def test_unknown_key_defaults_to_30_days(self):
        now = datetime(2024, 3, 31)
        date_range = resolve_date_range("weird", now)
        assert date_range.start == now - timedelta(days=30)
        assert date_range.end == now

    def test_leap_day(self):
        assert resolve_date_range("1y", datetime(2024, 2, 29)).start == datetime(2023, 2, 28)
