"""Batch processing: enrich -> embed -> persist under one retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from story_ingest.errors import MalformedInputError, PersistenceError
from story_ingest.models.domain import (
    BatchOutcome,
    BatchState,
    EnrichedItem,
    ItemOutcome,
    ParsedItem,
    StoryRecord,
)
from story_ingest.services.embedding_cache import EmbeddingCacheManager
from story_ingest.services.enricher import ContentEnricher
from story_ingest.services.persistence import PersistenceWriter
from story_ingest.services.retry import RetryPolicy
from story_ingest.utils.logging import get_logger

CANCELLED_MESSAGE = "run cancelled"


@dataclass
class _AttemptResult:
    items: List[ItemOutcome]
    cache_hits: int
    cache_misses: int


class BatchProcessor:
    """배치 하나를 처리한다.

    상태 전이: ``pending -> enriching -> embedding -> persisting -> done|failed``.
    재시도는 배치 전체(보강, 임베딩, 저장) 단위로 적용된다. 개별 upsert 실패는
    해당 아이템만 실패로 기록하며 재시도를 유발하지 않는다. 앞선 시도에서 이미
    저장된 아이템은 upsert가 멱등이므로 그대로 남는다.
    """

    def __init__(
        self,
        enricher: ContentEnricher,
        cache_manager: EmbeddingCacheManager,
        writer: PersistenceWriter,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._enricher = enricher
        self._cache = cache_manager
        self._writer = writer
        self._retry = retry_policy or RetryPolicy()
        self._logger = get_logger(__name__)

    def process(
        self,
        items: Sequence[ParsedItem],
        source_id: int,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> BatchOutcome:
        outcome = BatchOutcome(source_id=source_id, state=BatchState.PENDING)
        if should_stop is not None and should_stop():
            outcome.state = BatchState.CANCELLED
            outcome.error = CANCELLED_MESSAGE
            outcome.items = [
                ItemOutcome(external_id=it.external_id, success=False, error=CANCELLED_MESSAGE) for it in items
            ]
            self._logger.info("batch.cancelled", extra={"source_id": source_id, "items": len(items)})
            return outcome
        if not items:
            outcome.state = BatchState.DONE
            return outcome

        def attempt() -> _AttemptResult:
            return self._run_once(items, source_id, outcome)

        result = self._retry.execute(attempt, label=f"batch:{source_id}")
        outcome.attempts = result.attempts
        if result.ok and result.value is not None:
            outcome.items = result.value.items
            outcome.cache_hits = result.value.cache_hits
            outcome.cache_misses = result.value.cache_misses
            self._transition(outcome, BatchState.DONE)
            self._logger.info(
                "batch.done",
                extra={
                    "source_id": source_id,
                    "items": len(items),
                    "succeeded": outcome.succeeded,
                    "failed": outcome.failed,
                    "attempts": outcome.attempts,
                },
            )
            return outcome

        message = str(result.error) or type(result.error).__name__
        outcome.error = message
        outcome.items = [ItemOutcome(external_id=it.external_id, success=False, error=message) for it in items]
        self._transition(outcome, BatchState.FAILED)
        self._logger.error(
            "batch.failed",
            extra={"source_id": source_id, "items": len(items), "attempts": outcome.attempts, "error": message[:300]},
        )
        return outcome

    def _run_once(self, items: Sequence[ParsedItem], source_id: int, outcome: BatchOutcome) -> _AttemptResult:
        self._transition(outcome, BatchState.ENRICHING)
        enriched: List[EnrichedItem] = [self._enricher.enrich(it) for it in items]

        self._transition(outcome, BatchState.EMBEDDING)
        embedded = self._cache.embed_batch([it.embedding_text for it in enriched])
        if len(embedded.embeddings) != len(enriched):
            raise MalformedInputError(
                f"embedding count mismatch: got {len(embedded.embeddings)}, expected {len(enriched)}"
            )

        self._transition(outcome, BatchState.PERSISTING)
        results: List[ItemOutcome] = []
        for item, vector in zip(enriched, embedded.embeddings):
            record = StoryRecord.from_enriched(item, source_id, vector)
            try:
                saved = self._writer.upsert(record)
            except PersistenceError as exc:
                self._logger.warning(
                    "batch.item_persist_failed",
                    extra={"source_id": source_id, "external_id": item.external_id, "error": str(exc)[:300]},
                )
                results.append(ItemOutcome(external_id=item.external_id, success=False, error=str(exc)))
                continue
            results.append(ItemOutcome(external_id=item.external_id, success=True, operation=saved.operation))
        return _AttemptResult(items=results, cache_hits=embedded.cache_hits, cache_misses=embedded.cache_misses)

    def _transition(self, outcome: BatchOutcome, state: BatchState) -> None:
        self._logger.debug(
            "batch.state",
            extra={"source_id": outcome.source_id, "from": outcome.state.value, "to": state.value},
        )
        outcome.state = state
