"""Ingestion run orchestration.

Flow per run:
1) 활성 소스 조회 (실패 시 CatalogError 전파)
2) 어댑터별 그룹화, slug -> source_id 매핑
3) 어댑터 순차 실행 (어댑터 실패는 기록 후 계속)
4) 소스별 중복 제거 -> 오래된 아이템 제외 -> 배치 분할 -> 워커 풀 제출
5) 배치 결과를 이 스레드에서만 집계
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from story_ingest.adapters.registry import AdapterRegistry
from story_ingest.models.domain import (
    BatchOutcome,
    BatchState,
    IngestionStats,
    ItemOutcome,
    ParsedItem,
    RunResult,
    Source,
)
from story_ingest.pipeline.batch import BatchProcessor
from story_ingest.pipeline.worker_pool import BatchWorkerPool
from story_ingest.repositories.sources import SourceCatalog
from story_ingest.services.deduplicator import DeduplicationFilter, filter_stale
from story_ingest.utils.clock import Clock, utcnow
from story_ingest.utils.logging import get_logger

NO_SOURCES_MESSAGE = "no active sources"


@dataclass(frozen=True)
class OrchestratorConfig:
    batch_size: int = 10
    concurrency: int = 4
    deadline_seconds: Optional[float] = None
    min_published_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")


def chunked(items: Sequence[ParsedItem], size: int) -> List[List[ParsedItem]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class IngestionOrchestrator:
    def __init__(
        self,
        catalog: SourceCatalog,
        registry: AdapterRegistry,
        dedup: DeduplicationFilter,
        batch_processor: BatchProcessor,
        config: Optional[OrchestratorConfig] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._catalog = catalog
        self._registry = registry
        self._dedup = dedup
        self._processor = batch_processor
        self.config = config or OrchestratorConfig()
        self._cancel_event = cancel_event or threading.Event()
        self._clock = clock
        self._deadline: Optional[datetime] = None
        self._logger = get_logger(__name__)

    def cancel(self) -> None:
        self._cancel_event.set()

    def should_stop(self) -> bool:
        if self._cancel_event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def run(self) -> RunResult:
        start = self._clock()
        stats = IngestionStats(start_time=start)
        self._deadline = (
            start + timedelta(seconds=self.config.deadline_seconds) if self.config.deadline_seconds else None
        )

        sources = self._catalog.list_active_sources()
        if not sources:
            stats.end_time = self._clock()
            self._logger.info("ingest.no_sources")
            return RunResult(success=False, stats=stats, message=NO_SOURCES_MESSAGE)

        groups = self._group_by_adapter(sources)
        slug_to_id = {s.slug: s.id for s in sources}
        missing = self._registry.missing_for(sources)
        if missing:
            self._logger.warning("ingest.adapters_missing", extra={"adapters": missing})
        self._logger.info(
            "ingest.start",
            extra={
                "sources": len(sources),
                "adapters": len(groups),
                "batch_size": self.config.batch_size,
                "concurrency": self.config.concurrency,
            },
        )

        with BatchWorkerPool(self.config.concurrency) as pool:
            for adapter_id, group in groups.items():
                if self.should_stop():
                    stats.cancelled = True
                    self._logger.warning("ingest.stopped_before_adapter", extra={"adapter": adapter_id})
                    break
                items = self._fetch_group(adapter_id, group, stats)
                if items is None:
                    continue
                for slug, slug_items in self._split_by_slug(items, group, adapter_id).items():
                    self._dispatch_source(pool, slug, slug_to_id[slug], slug_items, stats)

            for outcome in pool.drain():
                stats.record_batch(outcome)
                if outcome.state == BatchState.CANCELLED:
                    stats.cancelled = True

        stats.end_time = self._clock()
        self._logger.info(
            "ingest.complete",
            extra={
                "total_items": stats.total_items,
                "successful": stats.successful,
                "failed": stats.failed,
                "skipped_existing": stats.skipped_existing,
                "skipped_stale": stats.skipped_stale,
                "sources_processed": stats.sources_processed,
                "adapters_failed": stats.adapters_failed,
                "cache_hits": stats.cache_hits,
                "cache_misses": stats.cache_misses,
                "cancelled": stats.cancelled,
                "duration_seconds": stats.duration_seconds,
            },
        )
        return RunResult(success=True, stats=stats)

    @staticmethod
    def _group_by_adapter(sources: Sequence[Source]) -> Dict[str, List[Source]]:
        groups: Dict[str, List[Source]] = {}
        for source in sources:
            groups.setdefault(source.adapter_id, []).append(source)
        return groups

    def _fetch_group(
        self, adapter_id: str, group: List[Source], stats: IngestionStats
    ) -> Optional[List[ParsedItem]]:
        slugs = [s.slug for s in group]
        try:
            adapter = self._registry.get(adapter_id)
            items = adapter.fetch_and_parse(slugs)
        except Exception as exc:
            stats.adapters_failed += 1
            self._logger.error(
                "ingest.adapter_failed",
                extra={"adapter": adapter_id, "slugs": slugs, "error": str(exc)[:300]},
            )
            return None
        self._logger.info("ingest.adapter_fetched", extra={"adapter": adapter_id, "items": len(items)})
        return items

    def _split_by_slug(
        self, items: List[ParsedItem], group: List[Source], adapter_id: str
    ) -> Dict[str, List[ParsedItem]]:
        known = {s.slug for s in group}
        by_slug: Dict[str, List[ParsedItem]] = {}
        unknown = 0
        for item in items:
            if item.source_slug not in known:
                unknown += 1
                continue
            by_slug.setdefault(item.source_slug, []).append(item)
        if unknown:
            self._logger.warning("ingest.unknown_slug_items", extra={"adapter": adapter_id, "skipped": unknown})
        return by_slug

    def _dispatch_source(
        self,
        pool: BatchWorkerPool,
        slug: str,
        source_id: int,
        items: List[ParsedItem],
        stats: IngestionStats,
    ) -> None:
        stats.total_items += len(items)
        stats.sources_processed += 1

        dedup = self._dedup.filter(items, source_id)
        stats.skipped_existing += dedup.existing_count
        stale = filter_stale(dedup.new_items, self.config.min_published_at)
        stats.skipped_stale += stale.stale_count

        batches = chunked(stale.fresh_items, self.config.batch_size)
        self._logger.info(
            "ingest.source_dispatched",
            extra={
                "source": slug,
                "source_id": source_id,
                "items": len(items),
                "existing": dedup.existing_count,
                "stale": stale.stale_count,
                "batches": len(batches),
            },
        )
        for batch in batches:
            pool.submit(self._run_batch, batch, source_id)

    def _run_batch(self, items: List[ParsedItem], source_id: int) -> BatchOutcome:
        try:
            return self._processor.process(items, source_id, self.should_stop)
        except Exception as exc:
            # a crashing batch still accounts for every item it owned
            self._logger.exception("batch.crashed", extra={"source_id": source_id})
            message = str(exc) or type(exc).__name__
            return BatchOutcome(
                source_id=source_id,
                state=BatchState.FAILED,
                error=message,
                items=[ItemOutcome(external_id=it.external_id, success=False, error=message) for it in items],
            )
