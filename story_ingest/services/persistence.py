"""Story upsert wrapper with insert/update classification."""

from __future__ import annotations

from story_ingest.errors import PersistenceError
from story_ingest.models.domain import StoryRecord, UpsertOperation, UpsertResult
from story_ingest.repositories.stories import StoryStore


class PersistenceWriter:
    """Upserts one record per call; each call is its own atomic unit."""

    def __init__(self, store: StoryStore) -> None:
        self._store = store

    def upsert(self, record: StoryRecord) -> UpsertResult:
        try:
            row = self._store.upsert(record)
        except Exception as exc:
            raise PersistenceError(
                f"upsert failed for {record.source_id}/{record.external_id}: {exc}"
            ) from exc
        # telemetry only: equal timestamps mean the row did not exist before
        operation = UpsertOperation.INSERT if row.created_at == row.updated_at else UpsertOperation.UPDATE
        return UpsertResult(
            record=record,
            id=row.id,
            created_at=row.created_at,
            updated_at=row.updated_at,
            operation=operation,
        )
