from datetime import datetime

from sqlalchemy import Column, Integer, Float, Boolean, DateTime, Index

from edgeiq.core.database import Base


class BehaviorSnapshot(Base):
    """行動分析スナップショット（追記のみ）"""
    __tablename__ = "behavior_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    recorded_at = Column(DateTime, default=datetime.now, nullable=False)

    # 行動フラグ
    overtrading = Column(Boolean, default=False, nullable=False)
    revenge_trade = Column(Boolean, default=False, nullable=False)
    fomo = Column(Boolean, default=False, nullable=False)
    inconsistent_risk = Column(Boolean, default=False, nullable=False)
    emotional_bias = Column(Boolean, default=False, nullable=False)

    # スコア
    discipline_score = Column(Float, default=0.0, nullable=False)    # 0-100
    consistency_score = Column(Float, default=0.0, nullable=False)   # 0-100
    trade_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index('idx_behavior_user_recorded_at', 'user_id', 'recorded_at'),
    )

    def __repr__(self):
        return f"<BehaviorSnapshot(id={self.id}, user={self.user_id}, discipline={self.discipline_score})>"
