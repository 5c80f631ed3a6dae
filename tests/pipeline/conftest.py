from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytest

from story_ingest.errors import TransientProviderError
from story_ingest.models.domain import EnrichedItem, ParsedItem, StoryRecord
from story_ingest.pipeline.batch import BatchProcessor
from story_ingest.services.embedding_cache import EmbeddingCacheManager, InMemoryEmbeddingCacheStore
from story_ingest.services.persistence import PersistenceWriter
from story_ingest.services.retry import RetryPolicy


def vector_for(text: str) -> List[float]:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return [float(int(digest[:8], 16))]


class FlakyProvider:
    """Fails the first ``failures`` calls, then embeds deterministically."""

    model_name = "fake-embedding"

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0
        self._lock = threading.Lock()

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        with self._lock:
            self.calls += 1
            if self.calls <= self.failures:
                raise TransientProviderError(f"provider hiccup #{self.calls}")
        return [vector_for(t) for t in texts]


class TitleEnricher:
    """Enricher stand-in: no network, embedding text is title + content."""

    def __init__(self) -> None:
        self.calls = 0
        self._lock = threading.Lock()

    def enrich(self, item: ParsedItem) -> EnrichedItem:
        with self._lock:
            self.calls += 1
        text = f"{item.title}\n\n{item.content}" if item.content else item.title
        return EnrichedItem(**item.model_dump(), full_content=item.content, embedding_text=text)


@dataclass
class StoredRow:
    id: str
    created_at: datetime
    updated_at: datetime


class MemoryStoryStore:
    """Thread-safe story store keyed by (external_id, source_id)."""

    def __init__(self, fail_ids: Iterable[str] = ()) -> None:
        self.rows: Dict[Tuple[str, int], Tuple[StoredRow, StoryRecord]] = {}
        self.fail_ids: Set[str] = set(fail_ids)
        self.lookups = 0
        self._lock = threading.Lock()
        self._tick = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def existing_external_ids(self, source_id: int, external_ids: Iterable[str]) -> Set[str]:
        with self._lock:
            self.lookups += 1
            return {i for i in external_ids if (i, source_id) in self.rows}

    def upsert(self, record: StoryRecord) -> StoredRow:
        if record.external_id in self.fail_ids:
            raise RuntimeError(f"constraint violated for {record.external_id}")
        with self._lock:
            self._tick += timedelta(seconds=1)
            key = (record.external_id, record.source_id)
            if key in self.rows:
                row, _ = self.rows[key]
                row = StoredRow(row.id, row.created_at, self._tick)
            else:
                row = StoredRow(f"{record.source_id}:{record.external_id}", self._tick, self._tick)
            self.rows[key] = (row, record)
            return row


def make_item(external_id: str, slug: str = "tech-daily", **overrides) -> ParsedItem:
    data = {
        "external_id": external_id,
        "source_slug": slug,
        "title": f"Story {external_id}",
        "url": f"https://ex.com/{slug}/{external_id}",
        "published_at": "2025-01-01T00:00:00Z",
        "content": f"body of {external_id}",
    }
    data.update(overrides)
    return ParsedItem(**data)


@dataclass
class PipelineKit:
    provider: FlakyProvider
    enricher: TitleEnricher
    store: MemoryStoryStore
    cache_store: InMemoryEmbeddingCacheStore
    processor: BatchProcessor


@pytest.fixture
def make_kit() -> Callable[..., PipelineKit]:
    def build(
        *,
        failures: int = 0,
        max_attempts: int = 4,
        fail_ids: Iterable[str] = (),
        store: Optional[MemoryStoryStore] = None,
    ) -> PipelineKit:
        provider = FlakyProvider(failures)
        enricher = TitleEnricher()
        story_store = store or MemoryStoryStore(fail_ids)
        cache_store = InMemoryEmbeddingCacheStore()
        processor = BatchProcessor(
            enricher,  # type: ignore[arg-type]
            EmbeddingCacheManager(provider, cache_store),
            PersistenceWriter(story_store),
            RetryPolicy(max_attempts=max_attempts, sleep=lambda _: None),
        )
        return PipelineKit(provider, enricher, story_store, cache_store, processor)

    return build


@pytest.fixture
def item_factory() -> Callable[..., ParsedItem]:
    return make_item


@pytest.fixture
def embed_vector() -> Callable[[str], List[float]]:
    return vector_for
