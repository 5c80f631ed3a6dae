from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from sqlalchemy import func, select

from story_ingest.db.models import SourceRow, Story
from story_ingest.errors import PersistenceError
from story_ingest.models.domain import StoryRecord, UpsertOperation
from story_ingest.repositories.stories import SqlStoryStore
from story_ingest.services.persistence import PersistenceWriter


class _StepClock:
    def __init__(self) -> None:
        self._now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


def _seed_source(factory, source_id: int = 1) -> None:
    with factory() as session:
        session.add(SourceRow(id=source_id, slug=f"src-{source_id}", name="Source", adapter_name="rss"))
        session.commit()


def _record(external_id: str = "guid-1", title: str = "First title", **overrides) -> StoryRecord:
    data = dict(
        external_id=external_id,
        source_id=1,
        title=title,
        url=f"https://ex.com/{external_id}",
        published_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        content="body",
        embedding=[0.1, 0.2, 0.3],
        metadata={"raw_item": {"guid": external_id}},
    )
    data.update(overrides)
    return StoryRecord(**data)


def test_upsert_insert_then_update_keeps_single_row(session_factory):
    _seed_source(session_factory)
    writer = PersistenceWriter(SqlStoryStore(session_factory, clock=_StepClock()))

    first = writer.upsert(_record())
    second = writer.upsert(_record(title="Edited title", embedding=[0.9, 0.8, 0.7]))

    assert first.operation == UpsertOperation.INSERT
    assert second.operation == UpsertOperation.UPDATE
    assert first.id == second.id
    assert second.created_at == first.created_at
    assert second.updated_at > second.created_at

    with session_factory() as session:
        count = session.execute(select(func.count(Story.id))).scalar_one()
        row = session.execute(select(Story)).scalars().one()
    assert count == 1
    assert row.title == "Edited title"
    assert row.embedding == [0.9, 0.8, 0.7]


def test_same_external_id_in_different_sources_is_two_rows(session_factory):
    _seed_source(session_factory, 1)
    _seed_source(session_factory, 2)
    writer = PersistenceWriter(SqlStoryStore(session_factory))

    a = writer.upsert(_record(source_id=1))
    b = writer.upsert(_record(source_id=2))

    assert a.operation == UpsertOperation.INSERT
    assert b.operation == UpsertOperation.INSERT
    assert a.id != b.id


def test_existing_external_ids_is_scoped_to_source(session_factory):
    _seed_source(session_factory, 1)
    _seed_source(session_factory, 2)
    store = SqlStoryStore(session_factory)
    store.upsert(_record("a", source_id=1))
    store.upsert(_record("b", source_id=2))

    assert store.existing_external_ids(1, ["a", "b", "c"]) == {"a"}
    assert store.existing_external_ids(2, ["a", "b"]) == {"b"}
    assert store.existing_external_ids(1, []) == set()


def test_writer_wraps_store_errors():
    class _Broken:
        def upsert(self, record):
            raise RuntimeError("db down")

    with pytest.raises(PersistenceError):
        PersistenceWriter(_Broken()).upsert(_record())


def test_writer_classifies_by_timestamps():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    rows: List[tuple] = [("id-1", now, now), ("id-1", now, now + timedelta(seconds=5))]

    class _Row:
        def __init__(self, id, created_at, updated_at):
            self.id, self.created_at, self.updated_at = id, created_at, updated_at

    class _Store:
        def upsert(self, record):
            return _Row(*rows.pop(0))

    writer = PersistenceWriter(_Store())
    assert writer.upsert(_record()).operation == UpsertOperation.INSERT
    assert writer.upsert(_record()).operation == UpsertOperation.UPDATE


def test_metadata_with_non_json_values_is_stored(session_factory):
    _seed_source(session_factory)
    writer = PersistenceWriter(SqlStoryStore(session_factory))
    fetched = datetime(2025, 1, 1, tzinfo=timezone.utc)

    result = writer.upsert(_record(metadata={"raw_item": {"guid": "guid-1", "fetched": fetched}}))

    assert result.operation == UpsertOperation.INSERT
    with session_factory() as session:
        row = session.execute(select(Story)).scalars().one()
    stored = row.original_metadata["raw_item"]["fetched"]
    assert isinstance(stored, str)
    assert stored.startswith("2025-01-01T00:00:00")
    assert row.original_metadata["raw_item"]["guid"] == "guid-1"


def test_empty_metadata_is_stored_as_null(session_factory):
    _seed_source(session_factory)
    SqlStoryStore(session_factory).upsert(_record(metadata={}))

    with session_factory() as session:
        row = session.execute(select(Story)).scalars().one()
    assert row.original_metadata is None
