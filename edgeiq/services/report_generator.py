from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edgeiq.core.exceptions import NarrativeGenerationError, ReportPersistenceError
from edgeiq.models.behavior import BehaviorSnapshot
from edgeiq.models.reports import PeriodReport
from edgeiq.services.behavior_service import BehaviorService
from edgeiq.services.narrative_generator import NarrativeGenerator, NarrativeResult, PeriodStats
from edgeiq.services.trade_records import DateRange, TradeRecord
from edgeiq.services.trade_repository import TradeRepository

logger = logging.getLogger(__name__)

# フラグ名 -> スナップショット列
SNAPSHOT_FLAGS = {
    "overtrading": "overtrading",
    "revengeTrade": "revenge_trade",
    "fomo": "fomo",
    "inconsistentRisk": "inconsistent_risk",
    "emotionalBias": "emotional_bias",
}


@dataclass
class GeneratedReport:
    """生成された期間レポート"""
    report: PeriodReport
    narrative: NarrativeResult
    stats: PeriodStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report": self.report.to_dict(),
            "narrative": self.narrative.to_dict(),
            "mistakeCounts": self.stats.mistake_counts,
        }


def build_period_stats(trades: List[TradeRecord], start: datetime, end: datetime) -> PeriodStats:
    """決済済みトレードから期間統計を作成"""
    closed = [t for t in trades if not t.is_open]
    wins = [t for t in closed if t.is_win]
    losses = [t for t in closed if t.is_loss]
    total = len(closed)
    pnls = [t.pnl or 0.0 for t in closed]

    mistake_counts = Counter(t.mistake_tag for t in closed if t.mistake_tag)

    return PeriodStats(
        period_start=start,
        period_end=end,
        total_trades=total,
        win_count=len(wins),
        loss_count=len(losses),
        win_rate=round(len(wins) / total * 100, 1) if total else 0.0,
        total_pnl=round(sum(pnls), 2),
        avg_r_multiple=round(sum((t.r_multiple or 0.0) for t in closed) / total, 2) if total else 0.0,
        best_trade=round(max(pnls), 2) if pnls else 0.0,
        worst_trade=round(min(pnls), 2) if pnls else 0.0,
        mistake_counts=dict(mistake_counts.most_common()),
        strategies=sorted({t.strategy for t in closed}),
        sessions=sorted({t.session for t in closed}),
        emotions_before=[t.emotion_before for t in closed],
    )


def _severity(count: int, total: int) -> str:
    ratio = count / total if total else 0
    if ratio >= 0.5:
        return "high"
    if ratio >= 0.25:
        return "medium"
    return "low"


def summarize_behavior_flags(snapshots: List[BehaviorSnapshot], warnings: List[str]) -> List[Dict[str, Any]]:
    """期間内スナップショットとナラティブ警告からフラグ要約を作成"""
    flags = []
    total = len(snapshots)
    for flag_type, column in SNAPSHOT_FLAGS.items():
        count = sum(1 for s in snapshots if getattr(s, column))
        if count:
            flags.append({"type": flag_type, "count": count, "severity": _severity(count, total)})

    for warning in warnings:
        flags.append({"type": warning, "count": 1, "severity": "medium"})
    return flags


class ReportGenerator:
    """期間レポート生成エンジン"""

    def __init__(self, db: Session, narrative_generator: Optional[NarrativeGenerator] = None):
        self.db = db
        self.repository = TradeRepository(db)
        self.behavior_service = BehaviorService(db)
        self.narrative_generator = narrative_generator

    def generate_period_report(self, user_id: int, period_start: datetime, period_end: datetime) -> Optional[GeneratedReport]:
        """期間レポート生成（同一期間は上書き）

        決済済みトレードがなければNoneを返し、レポートは作成しない。
        """
        logger.info(f"期間レポート生成開始: user={user_id} {period_start.date()} - {period_end.date()}")

        trades = self.repository.find_records(
            user_id,
            closed_only=True,
            date_range=DateRange(start=period_start, end=period_end),
            sort="trade_date",
        )
        if not trades:
            logger.info(f"期間レポート対象なし: user={user_id}")
            return None

        stats = build_period_stats(trades, period_start, period_end)

        if self.narrative_generator is None:
            raise NarrativeGenerationError("ナラティブ生成が設定されていません")

        # ナラティブ生成の失敗はそのまま呼び出し元へ
        narrative = self.narrative_generator.generate(stats)

        snapshots = self.behavior_service.snapshots_between(user_id, period_start, period_end)
        behavioral_flags = summarize_behavior_flags(snapshots, narrative.behavioral_warnings)

        report = self._upsert_report(user_id, stats, narrative, behavioral_flags)
        logger.info(f"期間レポート生成完了: report={report.id}")
        return GeneratedReport(report=report, narrative=narrative, stats=stats)

    def _upsert_report(self,
                       user_id: int,
                       stats: PeriodStats,
                       narrative: NarrativeResult,
                       behavioral_flags: List[Dict[str, Any]]) -> PeriodReport:
        try:
            report = self.db.query(PeriodReport).filter(
                PeriodReport.user_id == user_id,
                PeriodReport.period_start == stats.period_start
            ).first()
            if report is None:
                report = PeriodReport(user_id=user_id, period_start=stats.period_start)
                self.db.add(report)

            report.period_end = stats.period_end
            report.total_trades = stats.total_trades
            report.win_count = stats.win_count
            report.loss_count = stats.loss_count
            report.win_rate = stats.win_rate
            report.total_pnl = stats.total_pnl
            report.avg_r_multiple = stats.avg_r_multiple
            report.best_trade = stats.best_trade
            report.worst_trade = stats.worst_trade
            report.discipline_score = narrative.discipline_score or 0.0
            report.behavioral_flags = behavioral_flags
            report.summary = narrative.summary
            report.recommendations = narrative.recommendations
            report.generated_at = datetime.now()

            self.db.commit()
            self.db.refresh(report)
            return report
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"期間レポート保存エラー user={user_id}: {str(e)}")
            raise ReportPersistenceError(f"レポートを保存できません: {str(e)}") from e

    def list_reports(self, user_id: int, skip: int = 0, limit: int = 12) -> List[PeriodReport]:
        return self.db.query(PeriodReport).filter(
            PeriodReport.user_id == user_id
        ).order_by(PeriodReport.period_start.desc()).offset(skip).limit(limit).all()

    def count_reports(self, user_id: int) -> int:
        return self.db.query(PeriodReport).filter(PeriodReport.user_id == user_id).count()

    def get_report(self, user_id: int, report_id: int) -> Optional[PeriodReport]:
        return self.db.query(PeriodReport).filter(
            PeriodReport.id == report_id,
            PeriodReport.user_id == user_id
        ).first()
