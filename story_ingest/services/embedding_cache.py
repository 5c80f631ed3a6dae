"""Content-addressed embedding cache in front of the embedding provider.

Texts are normalized (trimmed, case-folded) and hashed; cached vectors are
reused across items and sources, and only the misses are sent to the
provider, in a single call. The output is positionally aligned with the
input: ``embeddings[i]`` always belongs to ``texts[i]``.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Sequence

from story_ingest.errors import MalformedInputError, NoTextsProvided
from story_ingest.llm.embeddings import EmbeddingProvider
from story_ingest.models.domain import CacheEntry, EmbeddingBatchResult
from story_ingest.utils.clock import Clock, utcnow
from story_ingest.utils.logging import get_logger

TRUNCATION_MARKER = "..."
PREVIEW_CHARS = 200


class CacheStore(Protocol):
    def get_batch(self, hashes: Sequence[str], now: datetime) -> Dict[str, List[float]]:
        """Non-expired vectors for ``hashes``; missing hashes are simply absent."""

    def put_batch(self, entries: Sequence[CacheEntry]) -> None:
        """Upsert by content hash, silently overwriting."""


def normalize_text(text: str) -> str:
    return text.strip().casefold()


def content_hash(text: str) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def truncate_text(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` and append the marker; deterministic."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_MARKER


@dataclass(frozen=True)
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    stores: int = 0
    provider_calls: int = 0
    lookup_errors: int = 0
    store_errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class EmbeddingCacheManager:
    """임베딩 캐시 매니저.

    캐시 저장소 오류는 로그만 남기고 삼킨다 (캐시는 최적화일 뿐 정확성 요건이 아님).
    Provider 오류는 그대로 전파되어 배치 재시도 대상이 된다.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: Optional[CacheStore] = None,
        *,
        model_name: Optional[str] = None,
        ttl_days: int = 30,
        max_chars: int = 10_000,
        enabled: bool = True,
        clock: Clock = utcnow,
    ) -> None:
        self._provider = provider
        self._store = store
        self.model_name = model_name or getattr(provider, "model_name", "unknown")
        self.ttl = timedelta(days=ttl_days)
        self.max_chars = max_chars
        self.enabled = enabled and store is not None
        self._clock = clock
        self._lock = threading.Lock()
        self._metrics = CacheMetrics()
        self._logger = get_logger(__name__)

    def metrics(self) -> CacheMetrics:
        with self._lock:
            return self._metrics

    def embed_batch(self, texts: Sequence[str]) -> EmbeddingBatchResult:
        if not texts:
            raise NoTextsProvided()

        processed = [truncate_text(t, self.max_chars) for t in texts]
        truncated = sum(1 for text in texts if len(text) > self.max_chars)
        if truncated:
            self._logger.info("cache.truncated", extra={"count": truncated, "max_chars": self.max_chars})
        hashes = [content_hash(t) for t in processed]
        now = self._clock()

        cached = self._lookup(hashes, now)
        vectors: List[Optional[List[float]]] = [None] * len(processed)
        miss_indices: List[int] = []
        for index, key in enumerate(hashes):
            hit = cached.get(key)
            if hit is not None:
                vectors[index] = list(hit)
            else:
                miss_indices.append(index)

        if miss_indices:
            # identical texts within one batch are embedded once
            slot_of: Dict[str, int] = {}
            miss_texts: List[str] = []
            for index in miss_indices:
                if hashes[index] not in slot_of:
                    slot_of[hashes[index]] = len(miss_texts)
                    miss_texts.append(processed[index])

            fresh = self._provider.embed(miss_texts)
            self._bump(provider_calls=1)
            if len(fresh) != len(miss_texts):
                raise MalformedInputError(
                    f"embedding count mismatch: got {len(fresh)}, expected {len(miss_texts)}"
                )
            for index in miss_indices:
                vectors[index] = list(fresh[slot_of[hashes[index]]])

            self._store_new(miss_texts, fresh, now)

        hits = len(processed) - len(miss_indices)
        misses = len(miss_indices)
        self._bump(hits=hits, misses=misses)
        self._logger.info(
            "cache.lookup",
            extra={
                "texts": len(processed),
                "cache_hits": hits,
                "cache_misses": misses,
                "hit_rate": round(hits / len(processed), 3),
            },
        )
        if any(v is None for v in vectors):
            raise MalformedInputError("embedding reassembly left unfilled slots")
        return EmbeddingBatchResult(
            embeddings=vectors,  # type: ignore[arg-type]
            cache_hits=hits,
            cache_misses=misses,
        )

    def _lookup(self, hashes: List[str], now: datetime) -> Dict[str, List[float]]:
        if not self.enabled or self._store is None:
            return {}
        try:
            return self._store.get_batch(list(dict.fromkeys(hashes)), now)
        except Exception as exc:
            self._bump(lookup_errors=1)
            self._logger.warning("cache.lookup_failed", extra={"error": str(exc)[:300]})
            return {}

    def _store_new(self, texts: List[str], vectors: Sequence[Sequence[float]], now: datetime) -> None:
        if not self.enabled or self._store is None:
            return
        expires_at = now + self.ttl
        entries = [
            CacheEntry(
                content_hash=content_hash(text),
                embedding=list(vector),
                model_name=self.model_name,
                created_at=now,
                expires_at=expires_at,
                input_text_preview=text[:PREVIEW_CHARS],
            )
            for text, vector in zip(texts, vectors)
        ]
        try:
            self._store.put_batch(entries)
        except Exception as exc:
            self._bump(store_errors=1)
            self._logger.warning("cache.store_failed", extra={"entries": len(entries), "error": str(exc)[:300]})
            return
        self._bump(stores=len(entries))

    def _bump(self, **deltas: int) -> None:
        with self._lock:
            current = self._metrics
            self._metrics = CacheMetrics(
                **{
                    name: getattr(current, name) + deltas.get(name, 0)
                    for name in ("hits", "misses", "stores", "provider_calls", "lookup_errors", "store_errors")
                }
            )


class InMemoryEmbeddingCacheStore:
    """Simple in-memory cache store for tests/local runs."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get_batch(self, hashes: Sequence[str], now: datetime) -> Dict[str, List[float]]:
        found: Dict[str, List[float]] = {}
        with self._lock:
            for key in hashes:
                entry = self._entries.get(key)
                if entry is None or entry.expires_at <= now:
                    continue
                entry.access_count += 1
                found[key] = list(entry.embedding)
        return found

    def put_batch(self, entries: Sequence[CacheEntry]) -> None:
        with self._lock:
            for entry in entries:
                self._entries[entry.content_hash] = entry

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at < now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
