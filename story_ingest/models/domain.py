"""Domain DTOs for the ingestion pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import to_jsonable_python


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class Source(BaseModel):
    """Active content source loaded from the catalog."""

    model_config = ConfigDict(frozen=True)

    id: int
    slug: str
    name: str
    adapter_id: str
    priority: int = 0


class ParsedItem(BaseModel):
    """Normalized item produced by an adapter."""

    external_id: str = Field(..., description="소스가 부여한 식별자 (GUID 등)")
    source_slug: str
    title: str
    url: str
    content: str = ""
    published_at: str = Field(..., description="ISO-8601 발행 시각")
    author: Optional[str] = None
    image_url: Optional[str] = None
    original_metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("external_id", "source_slug", "title", "url")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped

    @field_validator("published_at", mode="before")
    @classmethod
    def _valid_timestamp(cls, value: Any) -> str:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat()
        if not isinstance(value, str):
            raise ValueError("published_at must be an ISO-8601 string")
        try:
            parse_timestamp(value)
        except ValueError as exc:
            raise ValueError(f"invalid published_at: {value!r}") from exc
        return value.strip()

    @field_validator("content", mode="before")
    @classmethod
    def _content_default(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def published_datetime(self) -> datetime:
        return parse_timestamp(self.published_at)


class EnrichedItem(ParsedItem):
    """ParsedItem plus enrichment output; lives only for one batch."""

    full_content: str = ""
    embedding_text: str

    @field_validator("embedding_text")
    @classmethod
    def _embedding_text_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("embedding_text must not be empty")
        return value


class StoryRecord(BaseModel):
    """Persisted unit, keyed by (external_id, source_id)."""

    external_id: str
    source_id: int
    title: str
    url: str
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    embedding: Optional[List[float]] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("metadata")
    @classmethod
    def _json_safe_metadata(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        # stored in a JSON column; datetimes, UUIDs etc. become strings
        if not value:
            return None
        return to_jsonable_python(value, fallback=str)

    @classmethod
    def from_enriched(
        cls,
        item: EnrichedItem,
        source_id: int,
        embedding: Optional[List[float]] = None,
    ) -> "StoryRecord":
        return cls(
            external_id=item.external_id,
            source_id=source_id,
            title=item.title,
            url=item.url,
            author=item.author or None,
            published_at=item.published_datetime(),
            summary=None,
            content=item.full_content or item.content or None,
            embedding=embedding,
            metadata=item.original_metadata or None,
        )


class UpsertOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


class UpsertResult(BaseModel):
    record: StoryRecord
    id: Any
    created_at: datetime
    updated_at: datetime
    operation: UpsertOperation


class BatchState(str, Enum):
    PENDING = "pending"
    ENRICHING = "enriching"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ItemOutcome(BaseModel):
    external_id: str
    success: bool
    error: Optional[str] = None
    operation: Optional[UpsertOperation] = None


class BatchOutcome(BaseModel):
    source_id: int
    state: BatchState
    items: List[ItemOutcome] = Field(default_factory=list)
    attempts: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for it in self.items if it.success)

    @property
    def failed(self) -> int:
        return sum(1 for it in self.items if not it.success)


class EmbeddingBatchResult(BaseModel):
    embeddings: List[List[float]]
    cache_hits: int = 0
    cache_misses: int = 0


class CacheEntry(BaseModel):
    content_hash: str
    embedding: List[float]
    model_name: str
    created_at: datetime
    expires_at: datetime
    access_count: int = 1
    input_text_preview: str = ""


class CacheStats(BaseModel):
    total_entries: int = 0
    active_entries: int = 0
    expired_entries: int = 0
    total_access_count: int = 0

    @property
    def avg_access_count(self) -> float:
        if not self.total_entries:
            return 0.0
        return round(self.total_access_count / self.total_entries, 2)


class IngestionStats(BaseModel):
    """Run-scoped counters. Only the orchestrator thread mutates them."""

    total_items: int = 0
    successful: int = 0
    failed: int = 0
    skipped_existing: int = 0
    skipped_stale: int = 0
    sources_processed: int = 0
    adapters_failed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cancelled: bool = False
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def record_batch(self, outcome: BatchOutcome) -> None:
        self.successful += outcome.succeeded
        self.failed += outcome.failed
        self.cache_hits += outcome.cache_hits
        self.cache_misses += outcome.cache_misses


class RunResult(BaseModel):
    success: bool
    stats: IngestionStats
    error: Optional[str] = None
    message: Optional[str] = None
