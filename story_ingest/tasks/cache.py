"""Celery task sweeping expired embedding cache rows."""

from __future__ import annotations

import uuid
from typing import Any, Dict

from celery import shared_task

from story_ingest.db.models import Base, JobStage
from story_ingest.db.session import get_engine, get_sessionmaker, session_scope
from story_ingest.repositories.embedding_cache import SqlEmbeddingCacheStore
from story_ingest.repositories.job_runs import JobRunRecorder
from story_ingest.settings import Settings, get_settings
from story_ingest.utils.clock import utcnow
from story_ingest.utils.logging import get_logger


def sweep_core(settings: Settings | None = None) -> Dict[str, Any]:
    """만료된 캐시 항목을 삭제하고 캐시 통계를 기록한다."""
    config = settings or get_settings()
    Base.metadata.create_all(bind=get_engine(config))
    store = SqlEmbeddingCacheStore(get_sessionmaker(config))
    logger = get_logger(__name__)
    trace_id = str(uuid.uuid4())
    with session_scope(config) as session, JobRunRecorder(
        session, stage=JobStage.CACHE_SWEEP, task_name="sweep_embedding_cache", trace_id=trace_id
    ) as recorder:
        now = utcnow()
        purged = store.purge_expired(now)
        stats = store.stats(now)
        summary = {
            "purged": purged,
            "total_entries": stats.total_entries,
            "active_entries": stats.active_entries,
            "avg_access_count": stats.avg_access_count,
        }
        recorder.record(summary)
        logger.info("cache.sweep", extra={"trace_id": trace_id, **summary})
        return summary


@shared_task(name="story_ingest.tasks.cache.sweep_embedding_cache")
def sweep_embedding_cache() -> Dict[str, Any]:  # pragma: no cover - thin Celery wrapper
    return sweep_core()
