"""SQL store for the embedding cache (``embedding_cache`` table)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from story_ingest.db.models import EmbeddingCacheRow
from story_ingest.db.session import session_scope
from story_ingest.errors import CacheError
from story_ingest.models.domain import CacheEntry, CacheStats


def _dialect_insert(session: Session) -> Callable[..., Any]:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise CacheError(f"cache upsert is not supported for dialect {dialect!r}")
    return insert


class SqlEmbeddingCacheStore:
    """Embedding cache persisted next to the stories.

    Expired rows are filtered in the query; hits bump ``access_count`` and
    ``last_accessed_at`` in a single UPDATE.
    """

    def __init__(self, factory: sessionmaker[Session]) -> None:
        self._factory = factory

    def get_batch(self, hashes: Sequence[str], now: datetime) -> Dict[str, List[float]]:
        keys = list(dict.fromkeys(hashes))
        if not keys:
            return {}
        stmt = select(EmbeddingCacheRow.content_hash, EmbeddingCacheRow.embedding).where(
            EmbeddingCacheRow.content_hash.in_(keys),
            EmbeddingCacheRow.expires_at > now,
        )
        try:
            with session_scope(factory=self._factory) as session:
                found = {row[0]: list(row[1]) for row in session.execute(stmt)}
                if found:
                    session.execute(
                        update(EmbeddingCacheRow)
                        .where(EmbeddingCacheRow.content_hash.in_(list(found)))
                        .values(
                            access_count=EmbeddingCacheRow.access_count + 1,
                            last_accessed_at=now,
                        )
                    )
                return found
        except SQLAlchemyError as exc:
            raise CacheError(f"embedding cache lookup failed: {exc}") from exc

    def put_batch(self, entries: Sequence[CacheEntry]) -> None:
        # one row per hash; ON CONFLICT cannot touch the same row twice
        unique = {entry.content_hash: entry for entry in entries}
        if not unique:
            return
        rows = [
            {
                "content_hash": e.content_hash,
                "input_text_preview": e.input_text_preview[:200],
                "embedding": list(e.embedding),
                "model_name": e.model_name,
                "created_at": e.created_at,
                "expires_at": e.expires_at,
                "access_count": e.access_count,
                "last_accessed_at": e.created_at,
            }
            for e in unique.values()
        ]
        try:
            with session_scope(factory=self._factory) as session:
                insert = _dialect_insert(session)
                stmt = insert(EmbeddingCacheRow)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[EmbeddingCacheRow.content_hash],
                    set_={
                        "embedding": stmt.excluded.embedding,
                        "model_name": stmt.excluded.model_name,
                        "input_text_preview": stmt.excluded.input_text_preview,
                        "created_at": stmt.excluded.created_at,
                        "expires_at": stmt.excluded.expires_at,
                    },
                )
                session.execute(stmt, rows)
        except SQLAlchemyError as exc:
            raise CacheError(f"embedding cache write failed: {exc}") from exc

    def purge_expired(self, now: datetime) -> int:
        """Delete expired rows; returns the number removed."""
        with session_scope(factory=self._factory) as session:
            result = session.execute(delete(EmbeddingCacheRow).where(EmbeddingCacheRow.expires_at < now))
            return int(result.rowcount or 0)

    def stats(self, now: datetime) -> CacheStats:
        with session_scope(factory=self._factory) as session:
            total, accesses = session.execute(
                select(func.count(EmbeddingCacheRow.id), func.coalesce(func.sum(EmbeddingCacheRow.access_count), 0))
            ).one()
            expired = session.execute(
                select(func.count(EmbeddingCacheRow.id)).where(EmbeddingCacheRow.expires_at < now)
            ).scalar_one()
        return CacheStats(
            total_entries=int(total),
            active_entries=int(total) - int(expired),
            expired_entries=int(expired),
            total_access_count=int(accesses),
        )
