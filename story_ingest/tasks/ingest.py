"""Celery task running one ingestion pass."""

from __future__ import annotations

import threading
import uuid
from typing import Any, Callable, Dict, Optional

from celery import shared_task

from story_ingest.adapters.registry import AdapterRegistry
from story_ingest.db.models import Base, JobStage
from story_ingest.db.session import get_engine, get_sessionmaker, session_scope
from story_ingest.llm.embeddings import EmbeddingSettings, OpenAIEmbeddingProvider
from story_ingest.pipeline.batch import BatchProcessor
from story_ingest.pipeline.orchestrator import IngestionOrchestrator, OrchestratorConfig
from story_ingest.repositories.embedding_cache import SqlEmbeddingCacheStore
from story_ingest.repositories.job_runs import JobRunRecorder
from story_ingest.repositories.sources import SqlSourceCatalog
from story_ingest.repositories.stories import SqlStoryStore
from story_ingest.services.deduplicator import DeduplicationFilter
from story_ingest.services.embedding_cache import (
    CacheStore,
    EmbeddingCacheManager,
    InMemoryEmbeddingCacheStore,
)
from story_ingest.services.enricher import ContentEnricher, EnricherConfig
from story_ingest.services.persistence import PersistenceWriter
from story_ingest.services.redis_cache import RedisEmbeddingCacheStore
from story_ingest.services.retry import RetryPolicy
from story_ingest.settings import Settings, get_settings
from story_ingest.utils.logging import get_logger

# Adapter registry factory is pluggable; deployments register their scrapers here.
REGISTRY_FACTORY: Callable[[Settings], AdapterRegistry] | None = None


def _build_registry(settings: Settings) -> AdapterRegistry:
    if REGISTRY_FACTORY is None:
        get_logger(__name__).warning("ingest.registry_empty", extra={"reason": "REGISTRY_FACTORY not set"})
        return AdapterRegistry()
    return REGISTRY_FACTORY(settings)


def _ensure_schema(settings: Settings) -> None:
    # For local runs/tests, ensure schema exists (idempotent)
    Base.metadata.create_all(bind=get_engine(settings))


def _build_cache_store(settings: Settings) -> Optional[CacheStore]:
    if not settings.embedding_cache_enabled:
        return None
    if settings.embedding_cache_backend == "redis":
        return RedisEmbeddingCacheStore.from_url(settings.redis_url)
    if settings.embedding_cache_backend == "memory":
        return InMemoryEmbeddingCacheStore()
    return SqlEmbeddingCacheStore(get_sessionmaker(settings))


def build_orchestrator(
    settings: Settings,
    *,
    registry: AdapterRegistry | None = None,
    cancel_event: threading.Event | None = None,
) -> IngestionOrchestrator:
    """설정으로부터 전체 객체 그래프를 구성한다."""
    factory = get_sessionmaker(settings)
    story_store = SqlStoryStore(factory)
    provider = OpenAIEmbeddingProvider(EmbeddingSettings.from_settings(settings))
    cache_manager = EmbeddingCacheManager(
        provider,
        _build_cache_store(settings),
        ttl_days=settings.embedding_cache_ttl_days,
        max_chars=settings.embedding_max_chars,
        enabled=settings.embedding_cache_enabled,
    )
    enricher = ContentEnricher(
        EnricherConfig(
            fetch_timeout_seconds=settings.enrich_fetch_timeout_seconds,
            min_content_chars=settings.enrich_min_content_chars,
            fallback_min_chars=settings.enrich_fallback_min_chars,
            user_agent=settings.enrich_user_agent,
        )
    )
    retry = RetryPolicy(
        max_attempts=settings.ingest_retry_max_attempts,
        base_delay=settings.ingest_retry_base_delay_seconds,
        max_delay=settings.ingest_retry_max_delay_seconds,
    )
    return IngestionOrchestrator(
        SqlSourceCatalog(factory),
        registry if registry is not None else _build_registry(settings),
        DeduplicationFilter(story_store),
        BatchProcessor(enricher, cache_manager, PersistenceWriter(story_store), retry),
        OrchestratorConfig(
            batch_size=settings.ingest_batch_size,
            concurrency=settings.ingest_concurrency,
            deadline_seconds=settings.ingest_deadline_seconds,
            min_published_at=settings.ingest_min_published_at,
        ),
        cancel_event=cancel_event,
    )


def ingest_core(
    settings: Settings | None = None,
    *,
    orchestrator: IngestionOrchestrator | None = None,
) -> Dict[str, Any]:
    """Core logic to run one ingestion pass and record it; test-friendly."""
    config = settings or get_settings()
    _ensure_schema(config)
    runner = orchestrator or build_orchestrator(config)
    trace_id = str(uuid.uuid4())
    logger = get_logger(__name__)
    logger.info("ingest.task_start", extra={"trace_id": trace_id})
    with session_scope(config) as session, JobRunRecorder(
        session, stage=JobStage.INGEST, task_name="run_ingestion", trace_id=trace_id
    ) as recorder:
        result = runner.run()
        summary = result.model_dump(mode="json")
        recorder.record(summary, error=None if result.success else (result.error or result.message))
        logger.info(
            "ingest.task_done",
            extra={"trace_id": trace_id, "success": result.success, "result_message": result.message},
        )
        return summary


@shared_task(name="story_ingest.tasks.ingest.run_ingestion")
def run_ingestion() -> Dict[str, Any]:  # pragma: no cover - thin Celery wrapper
    return ingest_core()
