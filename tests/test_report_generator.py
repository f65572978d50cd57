import pytest
from datetime import datetime
from unittest.mock import Mock, patch

from sqlalchemy.exc import SQLAlchemyError

from edgeiq.core.exceptions import NarrativeGenerationError, ReportPersistenceError
from edgeiq.models.behavior import BehaviorSnapshot
from edgeiq.models.reports import PeriodReport
from edgeiq.models.trades import Trade, Direction, MistakeTag, Strategy, TradingSession
from edgeiq.services.narrative_generator import NarrativeGenerator
from edgeiq.services.report_generator import (
    ReportGenerator, build_period_stats, summarize_behavior_flags
)

PERIOD_START = datetime(2024, 3, 4)
PERIOD_END = datetime(2024, 3, 10, 23, 59, 59)


def add_closed_trade(db, trade_date, exit_price, user_id=1, stop_loss=None, **kwargs):
    trade = Trade(
        user_id=user_id,
        symbol="USDJPY",
        direction=Direction.LONG,
        entry_price=100.0,
        exit_price=exit_price,
        stop_loss=stop_loss,
        position_size=1.0,
        trade_date=trade_date,
        **kwargs
    )
    trade.recompute_derived_fields()
    db.add(trade)
    db.commit()
    return trade


@pytest.fixture
def period_trades(db_session):
    add_closed_trade(db_session, datetime(2024, 3, 4, 10), 110.0, stop_loss=95.0,
                     strategy=Strategy.BREAKOUT, session=TradingSession.LONDON)
    add_closed_trade(db_session, datetime(2024, 3, 5, 10), 95.0, stop_loss=95.0,
                     strategy=Strategy.SCALP, session=TradingSession.NEW_YORK,
                     mistake_tag=MistakeTag.FOMO_ENTRY)
    # 期間外
    add_closed_trade(db_session, datetime(2024, 3, 12, 10), 150.0)
    # 未決済
    add_closed_trade(db_session, datetime(2024, 3, 6, 10), None)
    return db_session


class TestPeriodStats:
    """期間統計テスト"""

    def test_build_period_stats(self, make_record):
        trades = [
            make_record(pnl=10.0, status="win", r_multiple=2.0, strategy="Breakout"),
            make_record(pnl=-5.0, status="loss", r_multiple=-1.0, mistake_tag="Moved Stop"),
            make_record(pnl=0.0, status="breakeven", mistake_tag="Moved Stop"),
            make_record(pnl=30.0, status="open"),
        ]

        stats = build_period_stats(trades, PERIOD_START, PERIOD_END)

        assert stats.total_trades == 3
        assert stats.win_count == 1
        assert stats.loss_count == 1
        assert stats.win_rate == 33.3
        assert stats.total_pnl == 5.0
        assert stats.avg_r_multiple == 0.33
        assert stats.best_trade == 10.0
        assert stats.worst_trade == -5.0
        assert stats.mistake_counts == {"Moved Stop": 2}
        assert stats.strategies == ["Breakout", "Other"]

    def test_summarize_behavior_flags(self):
        snapshots = [
            BehaviorSnapshot(overtrading=True, revenge_trade=False, fomo=True, inconsistent_risk=False, emotional_bias=False),
            BehaviorSnapshot(overtrading=True, revenge_trade=False, fomo=False, inconsistent_risk=False, emotional_bias=False),
            BehaviorSnapshot(overtrading=False, revenge_trade=False, fomo=False, inconsistent_risk=False, emotional_bias=False),
            BehaviorSnapshot(overtrading=False, revenge_trade=False, fomo=False, inconsistent_risk=False, emotional_bias=False),
            BehaviorSnapshot(overtrading=False, revenge_trade=False, fomo=False, inconsistent_risk=False, emotional_bias=False),
        ]

        flags = summarize_behavior_flags(snapshots, ["サイズが大きすぎる"])

        assert flags == [
            {"type": "overtrading", "count": 2, "severity": "medium"},
            {"type": "fomo", "count": 1, "severity": "low"},
            {"type": "サイズが大きすぎる", "count": 1, "severity": "medium"},
        ]


class TestReportGenerator:
    """期間レポート生成テスト"""

    def test_generate_period_report(self, period_trades, stub_narrative):
        generator = ReportGenerator(period_trades, stub_narrative)

        result = generator.generate_period_report(1, PERIOD_START, PERIOD_END)

        assert result is not None
        report = result.report
        assert report.total_trades == 2
        assert report.win_count == 1
        assert report.loss_count == 1
        assert report.win_rate == 50.0
        assert report.total_pnl == 5.0
        assert report.avg_r_multiple == 0.5
        assert report.best_trade == 10.0
        assert report.worst_trade == -5.0
        assert report.discipline_score == 72.0
        assert report.summary == "期間サマリー"
        assert report.recommendations == ["1日の取引回数を3回までに制限する"]

        stats = stub_narrative.calls[0]
        assert stats.mistake_counts == {"FOMO Entry": 1}
        assert stats.sessions == ["London", "New York"]

        data = result.to_dict()
        assert data["report"]["stats"]["totalTrades"] == 2
        assert data["narrative"]["focusForNextPeriod"] == "エントリー根拠の記録"

    def test_no_closed_trades_returns_none(self, db_session, stub_narrative):
        add_closed_trade(db_session, datetime(2024, 3, 5), None)

        result = ReportGenerator(db_session, stub_narrative).generate_period_report(1, PERIOD_START, PERIOD_END)

        assert result is None
        assert stub_narrative.calls == []
        assert db_session.query(PeriodReport).count() == 0

    def test_regenerating_same_period_overwrites(self, period_trades, stub_narrative):
        generator = ReportGenerator(period_trades, stub_narrative)
        first = generator.generate_period_report(1, PERIOD_START, PERIOD_END)

        add_closed_trade(period_trades, datetime(2024, 3, 8, 10), 120.0)
        stub_narrative.summary = "更新後サマリー"
        second = generator.generate_period_report(1, PERIOD_START, PERIOD_END)

        reports = period_trades.query(PeriodReport).all()
        assert len(reports) == 1
        assert second.report.id == first.report.id
        assert reports[0].total_trades == 3
        assert reports[0].total_pnl == 25.0
        assert reports[0].summary == "更新後サマリー"

    def test_behavior_flags_from_period_snapshots(self, period_trades, stub_narrative):
        period_trades.add(BehaviorSnapshot(
            user_id=1, recorded_at=datetime(2024, 3, 5, 12), fomo=True,
            discipline_score=85.0, consistency_score=50.0, trade_count=2
        ))
        period_trades.add(BehaviorSnapshot(
            user_id=1, recorded_at=datetime(2024, 4, 1), overtrading=True,
            discipline_score=80.0, consistency_score=50.0, trade_count=5
        ))
        period_trades.commit()
        stub_narrative.warnings = ["損失後の取引間隔が短い"]

        result = ReportGenerator(period_trades, stub_narrative).generate_period_report(1, PERIOD_START, PERIOD_END)

        assert result.report.behavioral_flags == [
            {"type": "fomo", "count": 1, "severity": "high"},
            {"type": "損失後の取引間隔が短い", "count": 1, "severity": "medium"},
        ]

    def test_narrative_failure_writes_nothing(self, period_trades):
        failing = Mock(spec=NarrativeGenerator)
        failing.generate.side_effect = NarrativeGenerationError("upstream down")

        with pytest.raises(NarrativeGenerationError):
            ReportGenerator(period_trades, failing).generate_period_report(1, PERIOD_START, PERIOD_END)

        assert period_trades.query(PeriodReport).count() == 0

    def test_missing_narrative_generator(self, period_trades):
        with pytest.raises(NarrativeGenerationError):
            ReportGenerator(period_trades).generate_period_report(1, PERIOD_START, PERIOD_END)

    def test_persistence_failure(self, period_trades, stub_narrative):
        generator = ReportGenerator(period_trades, stub_narrative)

        with patch.object(period_trades, "commit", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(ReportPersistenceError):
                generator.generate_period_report(1, PERIOD_START, PERIOD_END)

        assert period_trades.query(PeriodReport).count() == 0

    def test_list_and_get_reports(self, period_trades, stub_narrative):
        generator = ReportGenerator(period_trades, stub_narrative)
        generator.generate_period_report(1, PERIOD_START, PERIOD_END)
        generator.generate_period_report(1, datetime(2024, 3, 11), datetime(2024, 3, 17, 23, 59, 59))

        reports = generator.list_reports(1)

        assert [r.period_start for r in reports] == [datetime(2024, 3, 11), PERIOD_START]
        assert generator.count_reports(1) == 2
        assert generator.get_report(1, reports[0].id) is not None
        assert generator.get_report(2, reports[0].id) is None
