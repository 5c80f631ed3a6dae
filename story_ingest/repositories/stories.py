"""Story persistence: batched existence lookup and conflict-keyed upsert."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from story_ingest.db.models import Story
from story_ingest.db.session import session_scope
from story_ingest.errors import DedupLookupError
from story_ingest.models.domain import StoryRecord
from story_ingest.utils.clock import Clock, utcnow


class StoredRow(Protocol):
    id: Any
    created_at: datetime
    updated_at: datetime


class StoryStore(Protocol):
    def existing_external_ids(self, source_id: int, external_ids: Iterable[str]) -> Set[str]: ...

    def upsert(self, record: StoryRecord) -> StoredRow: ...


def _dialect_insert(session: Session) -> Callable[..., Any]:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"upsert is not supported for dialect {dialect!r}")
    return insert


class SqlStoryStore:
    """SQLAlchemy implementation of the story store.

    Each call runs in its own short transaction so the store can be shared by
    concurrent batch workers.
    """

    _UPDATABLE = (
        "title",
        "url",
        "author",
        "published_at",
        "summary",
        "content",
        "embedding",
        "original_metadata",
    )

    def __init__(self, factory: sessionmaker[Session], *, clock: Clock = utcnow) -> None:
        self._factory = factory
        self._clock = clock

    def existing_external_ids(self, source_id: int, external_ids: Iterable[str]) -> Set[str]:
        ids = list(external_ids)
        if not ids:
            return set()
        stmt = select(Story.external_id).where(
            Story.source_id == source_id,
            Story.external_id.in_(ids),
        )
        try:
            with session_scope(factory=self._factory) as session:
                return {row[0] for row in session.execute(stmt)}
        except SQLAlchemyError as exc:
            raise DedupLookupError(f"existing id lookup failed for source {source_id}: {exc}") from exc

    def upsert(self, record: StoryRecord):
        now = self._clock()
        values = {
            "id": uuid.uuid4(),
            "external_id": record.external_id,
            "source_id": record.source_id,
            "title": record.title,
            "url": record.url,
            "author": record.author,
            "published_at": record.published_at,
            "summary": record.summary,
            "content": record.content,
            "embedding": record.embedding,
            "original_metadata": record.metadata,
            "created_at": now,
            "updated_at": now,
        }
        with session_scope(factory=self._factory) as session:
            insert = _dialect_insert(session)
            stmt = insert(Story).values(**values)
            update_set = {name: getattr(stmt.excluded, name) for name in self._UPDATABLE}
            # created_at is left untouched so insert vs update stays observable
            update_set["updated_at"] = now
            stmt = stmt.on_conflict_do_update(
                index_elements=[Story.external_id, Story.source_id],
                set_=update_set,
            ).returning(Story.id, Story.created_at, Story.updated_at)
            return session.execute(stmt).one()
