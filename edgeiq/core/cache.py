import json
import logging
from typing import Any, Optional

import numpy as np
import redis

logger = logging.getLogger(__name__)


def sanitize_for_json(obj):
    """numpy型をJSONシリアライズ可能なPython型に変換"""
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [sanitize_for_json(item) for item in obj]
    elif isinstance(obj, (np.bool_, np.integer)):
        return bool(obj) if isinstance(obj, np.bool_) else int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    return obj


class AnalyticsCache:
    """フェイルオープンなキャッシュ"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client

    @classmethod
    def from_url(cls, url: Optional[str]) -> "AnalyticsCache":
        if not url:
            logger.info("REDIS_URL未設定: キャッシュ無効で起動")
            return cls(None)
        try:
            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Redis初期化失敗: {str(e)} キャッシュ無効")
            return cls(None)
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def get(self, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.warning(f"キャッシュ取得エラー {key}: {str(e)}")
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"キャッシュデータ破損 {key}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        if self.client is None:
            return
        try:
            self.client.setex(key, ttl_seconds, json.dumps(sanitize_for_json(value), default=str))
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.warning(f"キャッシュ保存エラー {key}: {str(e)}")

    def delete_pattern(self, pattern: str) -> int:
        if self.client is None:
            return 0
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
            return len(keys)
        except redis.RedisError as e:
            logger.warning(f"キャッシュ削除エラー {pattern}: {str(e)}")
            return 0

    def invalidate_user(self, user_id: int) -> None:
        """トレード変更時のユーザー単位キャッシュ破棄"""
        self.delete_pattern(f"trades:{user_id}:*")
        self.delete_pattern(f"analytics:{user_id}:*")

    def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


_cache: Optional[AnalyticsCache] = None


def get_cache() -> AnalyticsCache:
    global _cache
    if _cache is None:
        from edgeiq.core.config import settings
        _cache = AnalyticsCache.from_url(settings.redis_url)
    return _cache
