"""Repository for recording job run lifecycles."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy.orm import Session

from story_ingest.db.models import JobRun, JobStage, JobStatus


class JobRunRecorder:
    """Context manager to record job run lifecycle."""

    def __init__(
        self,
        session: Session,
        *,
        stage: JobStage = JobStage.INGEST,
        task_name: str,
        trace_id: str | None = None,
    ) -> None:
        self._session = session
        self._job = JobRun(
            stage=stage,
            status=JobStatus.RUNNING,
            task_name=task_name,
            trace_id=trace_id,
            started_at=datetime.now(timezone.utc),
        )
        self._summary: Dict[str, Any] | None = None
        self._soft_error: str | None = None

    def record(self, summary: Dict[str, Any], *, error: str | None = None) -> None:
        """Attach a result summary; ``error`` marks the run failed without raising."""
        self._summary = summary
        self._soft_error = error

    def __enter__(self) -> "JobRunRecorder":
        self._session.add(self._job)
        # Commit initial RUNNING state so we have a durable record even if later work fails
        self._session.commit()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if exc is not None:
            self._job.status = JobStatus.FAILED
            self._job.error_message = str(exc)[:512]
        elif self._soft_error is not None:
            self._job.status = JobStatus.FAILED
            self._job.error_message = self._soft_error[:512]
        else:
            self._job.status = JobStatus.SUCCEEDED
        self._job.summary = self._summary
        self._job.finished_at = datetime.now(timezone.utc)
        self._session.add(self._job)
        # Commit final state before outer transaction may roll back
        try:
            self._session.commit()
        except Exception:  # pragma: no cover - do not mask original error
            self._session.rollback()
