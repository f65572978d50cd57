from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "EdgeIQ トレード分析サービス"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./data/edgeiq.db"

    # Cache (未設定ならキャッシュ無効)
    redis_url: Optional[str] = None
    summary_cache_ttl: int = 120     # 秒
    equity_cache_ttl: int = 120
    breakdown_cache_ttl: int = 180
    trades_cache_ttl: int = 60

    # Narrative Settings
    anthropic_api_key: Optional[str] = None
    narrative_model: str = "claude-sonnet-4-20250514"
    narrative_max_tokens: int = 800

    # Analysis Settings
    analysis_workers: int = 2
    default_range: str = "30d"

    # API Settings
    api_v1_str: str = "/api/v1"


settings = Settings()
