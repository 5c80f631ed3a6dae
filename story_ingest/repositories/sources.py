"""Source catalog backed by the ``sources`` table."""

from __future__ import annotations

from typing import List, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from story_ingest.db.models import SourceRow
from story_ingest.db.session import session_scope
from story_ingest.errors import CatalogError
from story_ingest.models.domain import Source


class SourceCatalog(Protocol):
    def list_active_sources(self) -> List[Source]: ...  # noqa: D401


def _to_source(row: SourceRow) -> Source:
    return Source(
        id=row.id,
        slug=row.slug,
        name=row.name,
        adapter_id=row.adapter_name,
        priority=row.priority,
    )


class SqlSourceCatalog:
    """활성 소스를 우선순위 내림차순으로 반환한다."""

    def __init__(self, factory: sessionmaker[Session]) -> None:
        self._factory = factory

    def list_active_sources(self) -> List[Source]:
        stmt = (
            select(SourceRow)
            .where(SourceRow.is_active.is_(True))
            .order_by(SourceRow.priority.desc())
        )
        try:
            with session_scope(factory=self._factory) as session:
                return [_to_source(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise CatalogError(f"활성 소스 조회 실패: {exc}") from exc
