from __future__ import annotations

from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, List
from uuid import UUID

from video_pipeline.errors import JobActiveError, JobConflictError, JobNotFoundError
from video_pipeline.models.domain import Job


class JobStore:
    """In-memory registry of video jobs.

    Readers only ever receive deep copies. ``update`` mutates a private copy
    and swaps it in while holding the lock, so a reader sees either the old
    record or the new one.
    """

    def __init__(self) -> None:
        self._jobs: Dict[UUID, Job] = {}
        self._lock = Lock()

    def create(self, job: Job) -> UUID:
        with self._lock:
            if job.id in self._jobs:
                raise JobConflictError(f"video job already exists: {job.id}")
            self._jobs[job.id] = job.model_copy(deep=True)
        return job.id

    def get(self, job_id: UUID) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.model_copy(deep=True)

    def update(self, job_id: UUID, mutator: Callable[[Job], None]) -> Job:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            draft = current.model_copy(deep=True)
            mutator(draft)
            draft.updated_at = datetime.utcnow()
            self._jobs[job_id] = draft
            return draft.model_copy(deep=True)

    def delete(self, job_id: UUID) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if not job.status.terminal:
                raise JobActiveError(f"video job {job_id} is still {job.status.value}")
            del self._jobs[job_id]

    def list(self) -> List[Job]:
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        jobs.sort(key=lambda job: job.created_at)
        return jobs

    def reap(self, ttl_seconds: float, now: datetime | None = None) -> List[UUID]:
        """Drop terminal jobs that finished more than ``ttl_seconds`` ago."""
        cutoff = (now or datetime.utcnow()) - timedelta(seconds=ttl_seconds)
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status.terminal and job.finished_at is not None and job.finished_at <= cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
