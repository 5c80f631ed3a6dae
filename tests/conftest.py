from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def session_factory(tmp_path: Path):
    """SQLite-backed sessionmaker with the full schema created."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    from story_ingest.db.models import Base

    engine = create_engine(f"sqlite:///{tmp_path / 'ingest.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False, future=True)
    yield factory
    engine.dispose()
