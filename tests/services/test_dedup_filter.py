from datetime import datetime, timezone
from typing import Iterable, List, Set

from story_ingest.errors import DedupLookupError
from story_ingest.models.domain import ParsedItem
from story_ingest.services.deduplicator import DeduplicationFilter, filter_stale


def _item(external_id: str, published_at: str = "2025-01-01T00:00:00Z") -> ParsedItem:
    return ParsedItem(
        external_id=external_id,
        source_slug="tech-daily",
        title=f"Story {external_id}",
        url=f"https://ex.com/{external_id}",
        published_at=published_at,
    )


class _Store:
    def __init__(self, existing: Set[str]) -> None:
        self.existing = existing
        self.calls: List[tuple] = []

    def existing_external_ids(self, source_id: int, external_ids: Iterable[str]) -> Set[str]:
        ids = list(external_ids)
        self.calls.append((source_id, ids))
        return {i for i in ids if i in self.existing}


def test_filters_existing_with_single_lookup():
    store = _Store({"b"})
    result = DeduplicationFilter(store).filter([_item("a"), _item("b"), _item("c")], source_id=5)

    assert [it.external_id for it in result.new_items] == ["a", "c"]
    assert result.existing_count == 1
    assert store.calls == [(5, ["a", "b", "c"])]


def test_lookup_failure_fails_open():
    class _Broken:
        def existing_external_ids(self, source_id, external_ids):
            raise DedupLookupError("db down")

    items = [_item("a"), _item("b")]
    result = DeduplicationFilter(_Broken()).filter(items, source_id=1)

    assert [it.external_id for it in result.new_items] == ["a", "b"]
    assert result.existing_count == 0


def test_empty_input_skips_lookup():
    store = _Store(set())
    result = DeduplicationFilter(store).filter([], source_id=1)

    assert result.new_items == []
    assert store.calls == []


def test_filter_stale_drops_items_before_cutoff():
    items = [_item("old", "2024-12-31T23:59:59Z"), _item("new", "2025-01-01T00:00:00Z")]

    result = filter_stale(items, datetime(2025, 1, 1, tzinfo=timezone.utc))

    assert [it.external_id for it in result.fresh_items] == ["new"]
    assert result.stale_count == 1
    assert filter_stale(items, None).stale_count == 0
