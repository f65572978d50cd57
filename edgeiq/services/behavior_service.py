from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edgeiq.core.exceptions import AnalysisUnavailableError
from edgeiq.models.behavior import BehaviorSnapshot
from edgeiq.services.behavior_detector import (
    BehaviorDetector, BehaviorFlags, LOOKBACK_WINDOW, RISK_SAMPLE_SIZE,
    window_trades, recent_trades
)
from edgeiq.services.behavior_scorer import (
    calculate_discipline_score, calculate_consistency_score, CONSISTENCY_SAMPLE_SIZE
)
from edgeiq.services.trade_repository import TradeRepository

logger = logging.getLogger(__name__)

TREND_SAMPLE_SIZE = 30
TREND_SERIES_LENGTH = 7


@dataclass
class BehaviorAnalysis:
    """行動分析結果"""
    flags: BehaviorFlags
    discipline_score: float
    consistency_score: float
    trade_count: int
    snapshot_recorded: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flags": self.flags.to_dict(),
            "disciplineScore": self.discipline_score,
            "consistencyScore": self.consistency_score,
            "tradeCount": self.trade_count,
            "snapshotRecorded": self.snapshot_recorded,
        }


@dataclass
class BehaviorTrend:
    """行動トレンド集計"""
    current: BehaviorFlags
    discipline_score: float
    consistency_score: float
    flag_counts: Dict[str, int]
    trend: List[Dict[str, Any]] = field(default_factory=list)
    snapshots_analyzed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.to_dict(),
            "disciplineScore": self.discipline_score,
            "consistencyScore": self.consistency_score,
            "flagCounts": self.flag_counts,
            "trend": self.trend,
            "snapshotsAnalyzed": self.snapshots_analyzed,
        }


def _snapshot_flags(snapshot: BehaviorSnapshot) -> BehaviorFlags:
    return BehaviorFlags(
        overtrading=bool(snapshot.overtrading),
        revenge_trade=bool(snapshot.revenge_trade),
        fomo=bool(snapshot.fomo),
        inconsistent_risk=bool(snapshot.inconsistent_risk),
        emotional_bias=bool(snapshot.emotional_bias),
    )


def aggregate_snapshots(snapshots: List[BehaviorSnapshot]) -> Optional[BehaviorTrend]:
    """スナップショット（recorded_at降順）からトレンドを集計"""
    if not snapshots:
        return None

    count = len(snapshots)
    avg_discipline = sum(s.discipline_score for s in snapshots) / count
    avg_consistency = sum(s.consistency_score for s in snapshots) / count

    flag_counts = {
        "overtrading": sum(1 for s in snapshots if s.overtrading),
        "revengeTrade": sum(1 for s in snapshots if s.revenge_trade),
        "fomo": sum(1 for s in snapshots if s.fomo),
        "inconsistentRisk": sum(1 for s in snapshots if s.inconsistent_risk),
        "emotionalBias": sum(1 for s in snapshots if s.emotional_bias),
    }

    trend = [
        {
            "date": s.recorded_at.isoformat(),
            "disciplineScore": s.discipline_score,
            "consistencyScore": s.consistency_score,
        }
        for s in snapshots[:TREND_SERIES_LENGTH]
    ]

    return BehaviorTrend(
        current=_snapshot_flags(snapshots[0]),
        discipline_score=round(avg_discipline, 1),
        consistency_score=round(avg_consistency, 1),
        flag_counts=flag_counts,
        trend=trend,
        snapshots_analyzed=count,
    )


class BehaviorService:
    """行動分析・スナップショット記録・トレンド集計"""

    def __init__(self, db: Session, detector: Optional[BehaviorDetector] = None):
        self.db = db
        self.repository = TradeRepository(db)
        self.detector = detector or BehaviorDetector()

    def analyze_behavior(self, user_id: int, now: Optional[datetime] = None) -> Optional[BehaviorAnalysis]:
        """24時間ウィンドウの行動分析

        ウィンドウ内にトレードがなければNone（スナップショットも作成しない）。
        """
        now = now or datetime.now()

        try:
            window = window_trades(
                self.repository.find_records(user_id, created_since=now - LOOKBACK_WINDOW), now
            )
            if not window:
                logger.info(f"行動分析スキップ: user={user_id} 直近24時間のトレードなし")
                return None

            recent = recent_trades(
                self.repository.find_records(user_id, sort="-created_at", limit=RISK_SAMPLE_SIZE)
            )
            closed = self.repository.find_records(
                user_id, closed_only=True, sort="-trade_date", limit=CONSISTENCY_SAMPLE_SIZE
            )
        except SQLAlchemyError as e:
            logger.error(f"行動分析データ取得エラー user={user_id}: {str(e)}")
            raise AnalysisUnavailableError(f"行動分析データを取得できません: {str(e)}") from e

        flags = self.detector.detect(window, recent)
        discipline_score = calculate_discipline_score(flags, window)
        consistency_score = calculate_consistency_score(closed)

        analysis = BehaviorAnalysis(
            flags=flags,
            discipline_score=discipline_score,
            consistency_score=consistency_score,
            trade_count=len(window),
        )
        analysis.snapshot_recorded = self._record_snapshot(user_id, analysis, now)

        logger.info(
            f"行動分析完了: user={user_id} 規律 {discipline_score:.0f} / 一貫性 {consistency_score:.1f}"
        )
        return analysis

    def _record_snapshot(self, user_id: int, analysis: BehaviorAnalysis, now: datetime) -> bool:
        """スナップショット追記（失敗しても分析結果は返す）"""
        snapshot = BehaviorSnapshot(
            user_id=user_id,
            recorded_at=now,
            discipline_score=analysis.discipline_score,
            consistency_score=analysis.consistency_score,
            trade_count=analysis.trade_count,
            **analysis.flags.as_columns()
        )
        try:
            self.db.add(snapshot)
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"行動スナップショット保存エラー user={user_id}: {str(e)}")
            return False

    def recent_snapshots(self, user_id: int, limit: int = TREND_SAMPLE_SIZE) -> List[BehaviorSnapshot]:
        return self.db.query(BehaviorSnapshot).filter(
            BehaviorSnapshot.user_id == user_id
        ).order_by(
            BehaviorSnapshot.recorded_at.desc(), BehaviorSnapshot.id.desc()
        ).limit(limit).all()

    def snapshots_between(self, user_id: int, start: datetime, end: datetime) -> List[BehaviorSnapshot]:
        return self.db.query(BehaviorSnapshot).filter(
            BehaviorSnapshot.user_id == user_id,
            BehaviorSnapshot.recorded_at >= start,
            BehaviorSnapshot.recorded_at <= end
        ).order_by(BehaviorSnapshot.recorded_at.desc()).all()

    def get_behavior_summary(self, user_id: int) -> Optional[BehaviorTrend]:
        """直近30スナップショットのトレンド（データなしはNone）"""
        try:
            snapshots = self.recent_snapshots(user_id)
        except SQLAlchemyError as e:
            logger.error(f"行動スナップショット取得エラー user={user_id}: {str(e)}")
            raise AnalysisUnavailableError(f"行動履歴を取得できません: {str(e)}") from e
        return aggregate_snapshots(snapshots)
