"""Configuration models for the story ingestion service."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Literal, Optional

from pydantic import (
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ingestion용 환경 설정.

    프로세스 시작 시 한 번 생성해 각 컴포넌트 생성자에 주입한다.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    postgres_dsn: str = Field(..., alias="POSTGRES_DSN", description="스토리/캐시 저장소 DSN.")
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="INGESTION_REDIS_URL",
        description="Celery 브로커/백엔드 및 Redis 캐시 DSN.",
    )

    openai_api_key: Optional[SecretStr] = Field(None, alias="OPENAI_API_KEY", description="임베딩 API 키.")
    embedding_model: str = Field("text-embedding-3-small", alias="EMBEDDING_MODEL")
    embedding_endpoint: str = Field(
        "https://api.openai.com/v1/embeddings",
        alias="EMBEDDING_ENDPOINT",
        description="Embeddings REST 엔드포인트",
    )
    embedding_request_timeout_seconds: PositiveFloat = Field(30.0, alias="EMBEDDING_REQUEST_TIMEOUT_SECONDS")
    embedding_max_chars: PositiveInt = Field(
        10_000,
        alias="EMBEDDING_MAX_CHARS",
        description="임베딩 입력 최대 문자 수 (토큰 한도보다 보수적으로).",
    )

    embedding_cache_enabled: bool = Field(True, alias="EMBEDDING_CACHE_ENABLED")
    embedding_cache_ttl_days: PositiveInt = Field(30, alias="EMBEDDING_CACHE_TTL_DAYS")
    embedding_cache_backend: Literal["sql", "redis", "memory"] = Field("sql", alias="EMBEDDING_CACHE_BACKEND")

    ingest_batch_size: PositiveInt = Field(10, alias="INGEST_BATCH_SIZE", description="배치당 아이템 수.")
    ingest_concurrency: PositiveInt = Field(4, alias="INGEST_CONCURRENCY", description="동시 처리 배치 수.")
    ingest_retry_max_attempts: PositiveInt = Field(4, alias="INGEST_RETRY_MAX_ATTEMPTS")
    ingest_retry_base_delay_seconds: PositiveFloat = Field(1.0, alias="INGEST_RETRY_BASE_DELAY_SECONDS")
    ingest_retry_max_delay_seconds: PositiveFloat = Field(5.0, alias="INGEST_RETRY_MAX_DELAY_SECONDS")
    ingest_deadline_seconds: Optional[PositiveFloat] = Field(
        None,
        alias="INGEST_DEADLINE_SECONDS",
        description="실행 전체 벽시계 한도 (배치 사이에서만 검사).",
    )
    ingest_min_published_at: Optional[datetime] = Field(
        None,
        alias="INGEST_MIN_PUBLISHED_AT",
        description="이 시각 이전에 발행된 아이템은 건너뛴다.",
    )

    enrich_fetch_timeout_seconds: PositiveFloat = Field(10.0, alias="ENRICH_FETCH_TIMEOUT_SECONDS")
    enrich_min_content_chars: PositiveInt = Field(200, alias="ENRICH_MIN_CONTENT_CHARS")
    enrich_fallback_min_chars: PositiveInt = Field(50, alias="ENRICH_FALLBACK_MIN_CHARS")
    enrich_user_agent: str = Field(
        "Mozilla/5.0 (compatible; StoryIngest/1.0)",
        alias="ENRICH_USER_AGENT",
    )

    structlog_level: str = Field("INFO", alias="STRUCTLOG_LEVEL", description="구조화 로그 레벨.")
    log_json: bool = Field(False, alias="LOG_JSON", description="로그를 JSON 형식으로 출력할지 여부.")

    ingest_schedule_minutes: Optional[PositiveInt] = Field(None, alias="INGEST_SCHEDULE_MINUTES")
    cache_sweep_schedule_minutes: Optional[PositiveInt] = Field(None, alias="CACHE_SWEEP_SCHEDULE_MINUTES")
    celery_worker_concurrency: PositiveInt = Field(
        2,
        alias="CELERY_WORKER_CONCURRENCY",
        description="Celery 워커 동시 실행 수.",
    )
    celery_task_soft_time_limit: PositiveInt = Field(
        1800,
        alias="CELERY_TASK_SOFT_TIME_LIMIT",
        description="Celery 태스크 소프트 타임아웃 (초).",
    )

    @field_validator("postgres_dsn")
    @classmethod
    def _validate_postgres_dsn(cls, value: str) -> str:
        if "://" not in value:
            raise ValueError("POSTGRES_DSN은 유효한 DSN 문자열이어야 합니다.")
        return value

    @field_validator("ingest_batch_size")
    @classmethod
    def _validate_batch_size(cls, v: int) -> int:
        # embeddings endpoint accepts at most 2048 inputs per request
        if v > 2048:
            raise ValueError("INGEST_BATCH_SIZE는 2048 이하여야 합니다.")
        return v

    @field_validator("ingest_min_published_at")
    @classmethod
    def _cutoff_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("enrich_user_agent")
    @classmethod
    def _non_empty_user_agent(cls, value: str) -> str:
        agent = value.strip()
        if not agent:
            raise ValueError("ENRICH_USER_AGENT는 공백일 수 없습니다.")
        return agent


@lru_cache()
def get_settings() -> Settings:
    """환경 변수를 기준으로 Settings 인스턴스를 반환한다."""
    try:
        return Settings()
    except ValidationError as exc:
        raise RuntimeError(f"환경 변수 검증에 실패했습니다: {exc}") from exc


def reset_settings_cache() -> None:
    """Settings LRU 캐시를 초기화한다 (테스트 용도)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
