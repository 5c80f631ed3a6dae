from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from story_ingest.models.domain import (
    BatchOutcome,
    BatchState,
    EnrichedItem,
    IngestionStats,
    ItemOutcome,
    ParsedItem,
    StoryRecord,
    parse_timestamp,
)


def _item(**overrides) -> dict:
    data = {
        "external_id": "guid-1",
        "source_slug": "tech-daily",
        "title": "Chips are back",
        "url": "https://ex.com/a",
        "published_at": "2025-01-01T00:00:00Z",
    }
    data.update(overrides)
    return data


def test_parse_timestamp_accepts_z_suffix():
    assert parse_timestamp("2025-01-01T00:00:00Z") == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_parsed_item_rejects_blank_identity_fields():
    with pytest.raises(ValidationError):
        ParsedItem(**_item(external_id="  "))
    with pytest.raises(ValidationError):
        ParsedItem(**_item(url=""))


def test_parsed_item_rejects_bad_timestamp():
    with pytest.raises(ValidationError):
        ParsedItem(**_item(published_at="yesterday"))


def test_parsed_item_accepts_datetime_and_none_content():
    item = ParsedItem(**_item(published_at=datetime(2025, 1, 2), content=None))

    assert item.content == ""
    assert item.published_datetime() == datetime(2025, 1, 2, tzinfo=timezone.utc)


def test_enriched_item_requires_embedding_text():
    with pytest.raises(ValidationError):
        EnrichedItem(**_item(), embedding_text="   ")


def test_story_record_prefers_full_content():
    enriched = EnrichedItem(
        **_item(content="short", original_metadata={"k": "v"}),
        full_content="long body",
        embedding_text="Chips are back\n\nlong body",
    )

    record = StoryRecord.from_enriched(enriched, source_id=7, embedding=[0.1, 0.2])

    assert record.source_id == 7
    assert record.content == "long body"
    assert record.metadata == {"k": "v"}
    assert record.embedding == [0.1, 0.2]
    assert record.published_at == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_stats_record_batch_accumulates_counts():
    stats = IngestionStats()
    outcome = BatchOutcome(
        source_id=1,
        state=BatchState.DONE,
        items=[
            ItemOutcome(external_id="a", success=True),
            ItemOutcome(external_id="b", success=False, error="boom"),
        ],
        cache_hits=1,
        cache_misses=1,
    )

    stats.record_batch(outcome)
    stats.record_batch(outcome)

    assert (stats.successful, stats.failed) == (2, 2)
    assert (stats.cache_hits, stats.cache_misses) == (2, 2)
