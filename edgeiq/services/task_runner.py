from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional
import logging

from sqlalchemy.orm import Session

from edgeiq.services.behavior_service import BehaviorService

logger = logging.getLogger(__name__)


class AnalysisTaskRunner:
    """トレード書き込み後の行動分析をバックグラウンド実行

    投入側には失敗を伝えない（ベストエフォート）。max_workers=0 の場合は同期実行。
    """

    def __init__(self, session_factory: Callable[[], Session], max_workers: int = 2):
        self.session_factory = session_factory
        self.max_workers = max_workers
        self._executor = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="behavior-analysis")
            if max_workers > 0 else None
        )

    def submit(self, user_id: int) -> Optional[Future]:
        if self._executor is None:
            self.run(user_id)
            return None
        try:
            return self._executor.submit(self.run, user_id)
        except RuntimeError as e:
            # シャットダウン済み
            logger.warning(f"行動分析の投入に失敗 user={user_id}: {str(e)}")
            return None

    def run(self, user_id: int) -> bool:
        """1回分の分析実行。例外はここで吸収する"""
        db = self.session_factory()
        try:
            result = BehaviorService(db).analyze_behavior(user_id)
            return result is not None and result.snapshot_recorded
        except Exception as e:
            logger.error(f"バックグラウンド行動分析エラー user={user_id}: {str(e)}", exc_info=True)
            return False
        finally:
            db.close()

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


_runner: Optional[AnalysisTaskRunner] = None


def get_task_runner() -> AnalysisTaskRunner:
    global _runner
    if _runner is None:
        from edgeiq.core.config import settings
        from edgeiq.core.database import SessionLocal
        _runner = AnalysisTaskRunner(SessionLocal, max_workers=settings.analysis_workers)
    return _runner
