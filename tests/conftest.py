from datetime import datetime, timedelta
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from edgeiq.main import app
from edgeiq.core.cache import AnalyticsCache, get_cache
from edgeiq.core.database import Base, get_db
from edgeiq.models import trades, behavior, reports  # noqa: F401
from edgeiq.services.narrative_generator import NarrativeGenerator, NarrativeResult
from edgeiq.services.task_runner import AnalysisTaskRunner, get_task_runner
from edgeiq.services.trade_records import TradeRecord
from edgeiq.api.api_v1.endpoints.reports import get_narrative_generator

BASE_TIME = datetime(2024, 3, 4, 9, 0, 0)


@pytest.fixture
def db_session():
    """インメモリDBセッション"""
    engine = create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def make_record():
    """TradeRecordファクトリ"""
    ids = count(1)

    def _make(pnl=0.0, status="win", minutes=0, **kwargs):
        moment = kwargs.pop("at", BASE_TIME + timedelta(minutes=minutes))
        values = dict(
            id=next(ids),
            user_id=1,
            symbol="EURUSD",
            direction="LONG",
            entry_price=1.1,
            position_size=1000.0,
            trade_date=moment,
            created_at=moment,
            pnl=pnl,
            status=status,
        )
        values.update(kwargs)
        return TradeRecord(**values)

    return _make


class StubNarrativeGenerator(NarrativeGenerator):
    """固定ナラティブを返すテスト用ジェネレーター"""

    def __init__(self, summary="期間サマリー", discipline_score=72.0, warnings=None):
        self.summary = summary
        self.discipline_score = discipline_score
        self.warnings = warnings or []
        self.calls = []

    def generate(self, stats):
        self.calls.append(stats)
        return NarrativeResult(
            summary=self.summary,
            strengths=["損切りが徹底されている"],
            weaknesses=["ロンドン時間の過剰取引"],
            recommendations=["1日の取引回数を3回までに制限する"],
            focus="エントリー根拠の記録",
            discipline_score=self.discipline_score,
            consistency_score=65.0,
            psychology_rating="good",
            behavioral_warnings=self.warnings,
        )


@pytest.fixture
def stub_narrative():
    return StubNarrativeGenerator()


@pytest.fixture
def api_sessionmaker(tmp_path):
    """APIテスト用ファイルDB"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test_api.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def api_client(api_sessionmaker, stub_narrative):
    """依存関係オーバーライド済みのTestClient"""
    TestingSessionLocal = api_sessionmaker

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    runner = AnalysisTaskRunner(TestingSessionLocal, max_workers=0)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: AnalyticsCache(None)
    app.dependency_overrides[get_task_runner] = lambda: runner
    app.dependency_overrides[get_narrative_generator] = lambda: stub_narrative

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"X-User-Id": "1"}
