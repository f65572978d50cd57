from datetime import datetime

from sqlalchemy import Column, Integer, Float, DateTime, Text, JSON, UniqueConstraint

from edgeiq.core.database import Base


class PeriodReport(Base):
    """期間レポートテーブル（user_id + period_startで一意）"""
    __tablename__ = "period_reports"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    # 統計
    total_trades = Column(Integer, default=0, nullable=False)
    win_count = Column(Integer, default=0, nullable=False)
    loss_count = Column(Integer, default=0, nullable=False)
    win_rate = Column(Float, default=0.0, nullable=False)
    total_pnl = Column(Float, default=0.0, nullable=False)
    avg_r_multiple = Column(Float, default=0.0, nullable=False)
    best_trade = Column(Float, default=0.0, nullable=False)
    worst_trade = Column(Float, default=0.0, nullable=False)
    discipline_score = Column(Float, default=0.0, nullable=False)

    # [{"type": ..., "count": ..., "severity": "low|medium|high"}]
    behavioral_flags = Column(JSON, default=list)

    # 外部生成テキスト
    summary = Column(Text, default="")
    recommendations = Column(JSON, default=list)

    generated_at = Column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'period_start', name='uq_period_reports_user_period_start'),
    )

    def __repr__(self):
        return f"<PeriodReport(id={self.id}, user={self.user_id}, start={self.period_start})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "periodStart": self.period_start.isoformat() if self.period_start else None,
            "periodEnd": self.period_end.isoformat() if self.period_end else None,
            "stats": {
                "totalTrades": self.total_trades,
                "winCount": self.win_count,
                "lossCount": self.loss_count,
                "winRate": self.win_rate,
                "totalPnl": self.total_pnl,
                "avgRMultiple": self.avg_r_multiple,
                "bestTrade": self.best_trade,
                "worstTrade": self.worst_trade,
                "disciplineScore": self.discipline_score,
            },
            "behavioralFlags": self.behavioral_flags or [],
            "summary": self.summary or "",
            "recommendations": self.recommendations or [],
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
        }
