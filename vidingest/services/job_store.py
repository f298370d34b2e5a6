# Job store - thread-safe job records (in-memory or SQLAlchemy), lifecycle transition rules

import threading
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update, delete as sql_delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from vidingest.core.errors import InvalidTransition, JobNotFound
from vidingest.models.job import TranscodeJob

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Queued -> Processing -> {Completed | Failed}; nothing skips a state or goes back
ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class JobView:
    """Immutable snapshot of one job record"""

    job_id: str
    status: JobStatus
    source_path: str
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output_manifest_url: Optional[str] = None
    error: Optional[str] = None
    strategy: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "video_id": self.job_id,
            "status": self.status.value,
            "cdn_url": self.output_manifest_url,
            "error": self.error,
            "strategy": self.strategy,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def check_transition(job_id: str, current: JobStatus, target: JobStatus):
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Job {job_id}: cannot move from {current.value} to {target.value}"
        )


def _apply(view: JobView, status: JobStatus, output_manifest_url, error, strategy) -> JobView:
    """New snapshot with status and its associated fields set together"""
    now = utcnow()
    changes = {"status": status}
    if status == JobStatus.PROCESSING:
        changes["started_at"] = now
    if status.terminal:
        changes["completed_at"] = now
        changes["strategy"] = strategy or view.strategy
        changes["output_manifest_url"] = output_manifest_url if status == JobStatus.COMPLETED else None
        changes["error"] = (error or "Unknown error") if status == JobStatus.FAILED else None
    return replace(view, **changes)


class JobStore(ABC):
    """Single owner of job status, error and output URL"""

    @abstractmethod
    def create(self, job_id: str, source_path: str) -> Tuple[JobView, bool]:
        """
        Create a queued record

        Returns (existing, False) when the job is queued or processing.
        A terminal record is replaced by a fresh queued one.
        """

    @abstractmethod
    def set_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        output_manifest_url: Optional[str] = None,
        error: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> JobView:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobView]:
        ...

    @abstractmethod
    def list(self, status: Optional[JobStatus] = None, limit: int = 50, offset: int = 0) -> List[JobView]:
        ...

    @abstractmethod
    def count(self, status: Optional[JobStatus] = None) -> int:
        ...

    @abstractmethod
    def delete(self, job_id: str) -> bool:
        """Administrative removal of a terminal record"""

    def active_ids(self) -> List[str]:
        ids = []
        for status in (JobStatus.QUEUED, JobStatus.PROCESSING):
            ids.extend(view.job_id for view in self.list(status=status, limit=self.count(status)))
        return ids


class _Slot:
    __slots__ = ("lock", "view")

    def __init__(self, view: JobView):
        self.lock = threading.Lock()
        self.view = view


class InMemoryJobStore(JobStore):
    """
    Dict of records with one lock per record.

    The index lock only guards membership and is never held while a record
    lock is waited on, so work on one key never blocks another key.
    """

    def __init__(self):
        self._index_lock = threading.Lock()
        self._slots: Dict[str, _Slot] = {}

    def _slot(self, job_id: str) -> Optional[_Slot]:
        with self._index_lock:
            return self._slots.get(job_id)

    def create(self, job_id: str, source_path: str) -> Tuple[JobView, bool]:
        fresh = JobView(job_id=job_id, status=JobStatus.QUEUED, source_path=source_path, created_at=utcnow())

        while True:
            with self._index_lock:
                slot = self._slots.get(job_id)
                if slot is None:
                    self._slots[job_id] = _Slot(fresh)
                    return fresh, True

            with slot.lock:
                if self._slot(job_id) is not slot:
                    continue  # deleted while we waited
                if not slot.view.status.terminal:
                    return slot.view, False
                logger.warning(f"Job {job_id} resubmitted after {slot.view.status.value}; replacing record")
                slot.view = fresh
                return fresh, True

    def set_status(self, job_id, status, *, output_manifest_url=None, error=None, strategy=None) -> JobView:
        slot = self._slot(job_id)
        if slot is None:
            raise JobNotFound(job_id)

        with slot.lock:
            check_transition(job_id, slot.view.status, status)
            slot.view = _apply(slot.view, status, output_manifest_url, error, strategy)
            return slot.view

    def get(self, job_id: str) -> Optional[JobView]:
        slot = self._slot(job_id)
        if slot is None:
            return None
        with slot.lock:
            return slot.view

    def _snapshot(self) -> List[JobView]:
        with self._index_lock:
            slots = list(self._slots.values())
        views = []
        for slot in slots:
            with slot.lock:
                views.append(slot.view)
        return views

    def list(self, status=None, limit=50, offset=0) -> List[JobView]:
        views = [v for v in self._snapshot() if status is None or v.status == status]
        views.sort(key=lambda v: v.created_at, reverse=True)
        return views[offset:offset + limit]

    def count(self, status=None) -> int:
        return sum(1 for v in self._snapshot() if status is None or v.status == status)

    def delete(self, job_id: str) -> bool:
        slot = self._slot(job_id)
        if slot is None:
            return False
        with slot.lock:
            if not slot.view.status.terminal:
                raise InvalidTransition(f"Job {job_id} is {slot.view.status.value} and cannot be deleted")
            with self._index_lock:
                if self._slots.get(job_id) is slot:
                    del self._slots[job_id]
        return True


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_view(row: TranscodeJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        status=JobStatus(row.status),
        source_path=row.source_path,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        output_manifest_url=row.output_manifest_url,
        error=row.error_message,
        strategy=row.strategy,
    )


class SqlJobStore(JobStore):
    """
    Job records persisted with SQLAlchemy.

    Every transition is a conditional UPDATE on (job_id, current status), so
    concurrent writers to one key cannot both succeed.
    """

    def __init__(self, session_factory: sessionmaker):
        self.SessionLocal = session_factory

    def create(self, job_id: str, source_path: str) -> Tuple[JobView, bool]:
        terminal = [JobStatus.COMPLETED.value, JobStatus.FAILED.value]

        while True:
            now = utcnow()
            with self.SessionLocal() as db:
                try:
                    row = TranscodeJob(
                        job_id=job_id,
                        status=JobStatus.QUEUED.value,
                        source_path=source_path,
                        created_at=now,
                    )
                    db.add(row)
                    db.commit()
                    return _to_view(row), True
                except IntegrityError:
                    db.rollback()

                result = db.execute(
                    update(TranscodeJob)
                    .where(TranscodeJob.job_id == job_id, TranscodeJob.status.in_(terminal))
                    .values(
                        status=JobStatus.QUEUED.value,
                        source_path=source_path,
                        strategy=None,
                        output_manifest_url=None,
                        error_message=None,
                        created_at=now,
                        started_at=None,
                        completed_at=None,
                    )
                )
                db.commit()

                row = db.get(TranscodeJob, job_id)
                if row is None:
                    logger.warning(f"Job {job_id} was deleted during create; retrying insert")
                    continue
                if result.rowcount:
                    logger.warning(f"Job {job_id} resubmitted after a terminal state; replacing record")
                    return _to_view(row), True
                return _to_view(row), False

    def set_status(self, job_id, status, *, output_manifest_url=None, error=None, strategy=None) -> JobView:
        with self.SessionLocal() as db:
            row = db.get(TranscodeJob, job_id)
            if row is None:
                raise JobNotFound(job_id)

            current = _to_view(row)
            check_transition(job_id, current.status, status)
            target = _apply(current, status, output_manifest_url, error, strategy)

            result = db.execute(
                update(TranscodeJob)
                .where(TranscodeJob.job_id == job_id, TranscodeJob.status == current.status.value)
                .values(
                    status=target.status.value,
                    strategy=target.strategy,
                    output_manifest_url=target.output_manifest_url,
                    error_message=target.error,
                    started_at=target.started_at,
                    completed_at=target.completed_at,
                )
            )
            db.commit()

            if result.rowcount != 1:
                raise InvalidTransition(
                    f"Job {job_id}: status changed concurrently, cannot move to {status.value}"
                )
            return target

    def get(self, job_id: str) -> Optional[JobView]:
        with self.SessionLocal() as db:
            row = db.get(TranscodeJob, job_id)
            return _to_view(row) if row else None

    def list(self, status=None, limit=50, offset=0) -> List[JobView]:
        with self.SessionLocal() as db:
            query = select(TranscodeJob)
            if status is not None:
                query = query.where(TranscodeJob.status == status.value)
            query = query.order_by(TranscodeJob.created_at.desc()).offset(offset).limit(limit)
            return [_to_view(row) for row in db.scalars(query)]

    def count(self, status=None) -> int:
        with self.SessionLocal() as db:
            query = select(func.count()).select_from(TranscodeJob)
            if status is not None:
                query = query.where(TranscodeJob.status == status.value)
            return db.scalar(query)

    def delete(self, job_id: str) -> bool:
        with self.SessionLocal() as db:
            row = db.get(TranscodeJob, job_id)
            if row is None:
                return False
            if not JobStatus(row.status).terminal:
                raise InvalidTransition(f"Job {job_id} is {row.status} and cannot be deleted")
            terminal = [JobStatus.COMPLETED.value, JobStatus.FAILED.value]
            result = db.execute(
                sql_delete(TranscodeJob)
                .where(TranscodeJob.job_id == job_id, TranscodeJob.status.in_(terminal))
            )
            db.commit()
            return result.rowcount == 1
