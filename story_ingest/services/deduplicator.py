"""Deduplication against already-persisted stories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Set

from story_ingest.models.domain import ParsedItem
from story_ingest.utils.logging import get_logger


class ExistingIdLookup(Protocol):
    def existing_external_ids(self, source_id: int, external_ids: Iterable[str]) -> Set[str]: ...  # noqa: D401


@dataclass
class DedupResult:
    new_items: List[ParsedItem] = field(default_factory=list)
    existing_count: int = 0


@dataclass
class StaleResult:
    fresh_items: List[ParsedItem] = field(default_factory=list)
    stale_count: int = 0


class DeduplicationFilter:
    """저장소 기준으로 이미 저장된 아이템을 걸러낸다.

    - 소스당 한 번의 배치 조회 (외부 ID 목록 전체)
    - 조회 실패 시 fail open: 모든 아이템을 신규로 취급
    """

    def __init__(self, store: ExistingIdLookup) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def filter(self, items: List[ParsedItem], source_id: int) -> DedupResult:
        if not items:
            return DedupResult()
        try:
            existing = self._store.existing_external_ids(source_id, [it.external_id for it in items])
        except Exception as exc:
            # reprocessing is cheaper than silently dropping content
            self._logger.warning(
                "dedup.lookup_failed",
                extra={"source_id": source_id, "items": len(items), "error": str(exc)[:300]},
            )
            return DedupResult(new_items=list(items), existing_count=0)

        new_items = [it for it in items if it.external_id not in existing]
        existing_count = len(items) - len(new_items)
        if existing_count:
            self._logger.info(
                "dedup.filtered",
                extra={"source_id": source_id, "existing": existing_count, "new": len(new_items)},
            )
        return DedupResult(new_items=new_items, existing_count=existing_count)


def filter_stale(items: List[ParsedItem], cutoff: Optional[datetime]) -> StaleResult:
    """Drop items published before ``cutoff``; no-op when cutoff is None."""
    if cutoff is None:
        return StaleResult(fresh_items=list(items))
    fresh = [it for it in items if it.published_datetime() >= cutoff]
    return StaleResult(fresh_items=fresh, stale_count=len(items) - len(fresh))
