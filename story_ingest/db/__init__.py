"""Database utilities for the ingestion service."""

from .models import Base, EmbeddingCacheRow, JobRun, JobStage, JobStatus, SourceRow, Story  # noqa: F401
from .session import get_engine, get_sessionmaker, session_scope  # noqa: F401

__all__ = [
    "Base",
    "EmbeddingCacheRow",
    "JobRun",
    "JobStage",
    "JobStatus",
    "SourceRow",
    "Story",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]
