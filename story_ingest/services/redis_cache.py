"""Redis 기반 임베딩 캐시 저장소.

- 조회: ``MGET`` 한 번으로 배치 조회
- 저장: 파이프라인으로 ``SET key value EX <ttl>`` (만료는 Redis가 처리)

redis-py 호환 클라이언트를 기대하지만, 테스트에서는 간단한 fake 클라이언트를
주입하여 외부 의존성 없이 검증한다.
"""

from __future__ import annotations

import json
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

import redis
from redis.exceptions import RedisError

from story_ingest.errors import CacheError
from story_ingest.models.domain import CacheEntry


class _RedisPipeline(Protocol):
    def set(self, name: str, value: str, *, ex: int | None = None) -> Any: ...
    def execute(self) -> List[Any]: ...


class _RedisLikeClient(Protocol):
    def mget(self, keys: List[str]) -> List[Optional[str]]: ...
    def pipeline(self, transaction: bool = True) -> _RedisPipeline: ...


class RedisEmbeddingCacheStore:
    def __init__(self, client: _RedisLikeClient, *, prefix: str = "embcache") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, *, prefix: str = "embcache") -> "RedisEmbeddingCacheStore":
        return cls(redis.Redis.from_url(redis_url, decode_responses=True), prefix=prefix)

    def _format(self, key: str) -> str:  # pragma: no cover - trivial
        return f"{self._prefix}:{key}"

    def get_batch(self, hashes: Sequence[str], now: datetime) -> Dict[str, List[float]]:
        keys = list(dict.fromkeys(hashes))
        if not keys:
            return {}
        try:
            raw = self._client.mget([self._format(k) for k in keys])
        except RedisError as exc:
            raise CacheError(f"redis mget failed: {exc}") from exc
        found: Dict[str, List[float]] = {}
        for key, value in zip(keys, raw):
            if not value:
                continue
            try:
                payload = json.loads(value)
                found[key] = [float(x) for x in payload["embedding"]]
            except (ValueError, KeyError, TypeError):
                # corrupt entry behaves like a miss and gets overwritten
                continue
        return found

    def put_batch(self, entries: Sequence[CacheEntry]) -> None:
        if not entries:
            return
        try:
            pipe = self._client.pipeline(transaction=False)
            for entry in entries:
                ttl = max(1, math.ceil((entry.expires_at - entry.created_at).total_seconds()))
                payload = json.dumps(
                    {
                        "embedding": entry.embedding,
                        "model_name": entry.model_name,
                        "created_at": entry.created_at.isoformat(),
                        "preview": entry.input_text_preview,
                    }
                )
                pipe.set(self._format(entry.content_hash), payload, ex=ttl)
            pipe.execute()
        except RedisError as exc:
            raise CacheError(f"redis pipeline failed: {exc}") from exc
