"""Celery 애플리케이션 부트스트랩."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import Celery
from celery.schedules import schedule as celery_schedule

from .settings import Settings, get_settings
from .utils.logging import configure_logging

_CELERY_APP: Celery | None = None


def create_celery_app(settings: Settings | None = None) -> Celery:
    """설정을 기반으로 Celery 인스턴스를 생성한다."""
    config = settings or get_settings()
    configure_logging(config.structlog_level, json_enabled=config.log_json)

    app = Celery("story_ingest", broker=config.redis_url, backend=config.redis_url)
    app.conf.update(
        task_default_queue="story_ingest.default",
        task_default_exchange="story_ingest",
        task_default_routing_key="story_ingest.default",
        task_soft_time_limit=config.celery_task_soft_time_limit,
        worker_concurrency=config.celery_worker_concurrency,
        beat_schedule=_build_beat_schedule(config),
        timezone="UTC",
        enable_utc=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )

    app.conf.include = ["story_ingest.tasks.ingest", "story_ingest.tasks.cache"]
    _install_signal_handlers(app)
    return app


def get_celery_app() -> Celery:
    """싱글톤 Celery 인스턴스를 반환한다."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _build_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    schedule: Dict[str, Dict[str, Any]] = {}
    if settings.ingest_schedule_minutes:
        schedule["ingest.run"] = {
            "task": "story_ingest.tasks.ingest.run_ingestion",
            "schedule": celery_schedule(timedelta(minutes=settings.ingest_schedule_minutes)),
            "options": {"queue": "story_ingest.ingest"},
        }
    if settings.cache_sweep_schedule_minutes:
        schedule["cache.sweep"] = {
            "task": "story_ingest.tasks.cache.sweep_embedding_cache",
            "schedule": celery_schedule(timedelta(minutes=settings.cache_sweep_schedule_minutes)),
            "options": {"queue": "story_ingest.maintenance"},
        }
    return schedule


def _install_signal_handlers(app: Celery) -> None:
    from celery import signals

    logger = logging.getLogger("story_ingest.worker")

    @signals.worker_shutdown.connect  # type: ignore[attr-defined]
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        logger.info("Celery worker shutdown detected", extra={"sender": sender})
