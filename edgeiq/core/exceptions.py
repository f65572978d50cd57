class EdgeIQError(Exception):
    """分析エンジン例外の基底クラス"""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class TradeNotFoundError(EdgeIQError):
    """対象トレードが存在しない"""
    status_code = 404


class AnalysisUnavailableError(EdgeIQError):
    """行動分析を完了できなかった"""
    status_code = 503


class NarrativeGenerationError(EdgeIQError):
    """外部ナラティブ生成の失敗"""
    status_code = 502


class ReportPersistenceError(EdgeIQError):
    """レポート保存の失敗"""
    status_code = 503
