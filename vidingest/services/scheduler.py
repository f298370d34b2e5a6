# Ingestion queue & scheduler - FIFO dispatch loop, permit-bounded workers, job lifecycle updates

import os
import queue
import threading
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from vidingest.core.errors import (
    DuplicateJob,
    InvalidSource,
    PipelineError,
    TranscodeError,
)
from vidingest.services.format_inspector import FormatInspector
from vidingest.services.job_store import JobStatus, JobStore, JobView
from vidingest.services.storage_service import StorageLayout
from vidingest.services.transcode_service import TranscodeService

logger = logging.getLogger(__name__)


class Permit:
    """One concurrency slot; releases exactly once when its block exits"""

    def __init__(self, limiter: "ConcurrencyLimiter"):
        self._limiter = limiter
        self._released = False
        self._lock = threading.Lock()

    def release(self):
        with self._lock:
            if self._released:
                return
            self._released = True
        self._limiter._release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class ConcurrencyLimiter:
    """
    Counting limiter handing out Permit objects.

    Tracks the number of permits in use and the highest number ever in use.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._in_use = 0
        self._peak = 0
        self._cond = threading.Condition()

    def acquire(self, stop_event: Optional[threading.Event] = None, poll_interval: float = 1.0) -> Optional[Permit]:
        """
        Block until a slot is free.

        Returns None only if stop_event is set while waiting.
        """
        with self._cond:
            while self._in_use >= self.capacity:
                if stop_event is not None and stop_event.is_set():
                    return None
                self._cond.wait(timeout=poll_interval)
            self._in_use += 1
            self._peak = max(self._peak, self._in_use)
        return Permit(self)

    def _release(self):
        with self._cond:
            self._in_use -= 1
            self._cond.notify()

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    @property
    def peak(self) -> int:
        with self._cond:
            return self._peak


@dataclass(frozen=True)
class _QueuedJob:
    job_id: str
    source_path: str


_STOP = object()


class IngestionScheduler:
    """
    Accepts jobs, dispatches them in FIFO order once a permit is free, and
    records each job's outcome in the job store.
    """

    def __init__(
        self,
        store: JobStore,
        layout: StorageLayout,
        inspector: FormatInspector,
        transcoder: TranscodeService,
        max_parallel: int = 2,
        poll_interval: float = 1.0,
    ):
        self.store = store
        self.layout = layout
        self.inspector = inspector
        self.transcoder = transcoder
        self.poll_interval = poll_interval
        self.limiter = ConcurrencyLimiter(max_parallel)

        self._queue: "queue.Queue" = queue.Queue()
        self._stopping = threading.Event()
        self._dispatcher: Optional[threading.Thread] = None
        self._workers: Optional[ThreadPoolExecutor] = None
        self._carry: Optional[_QueuedJob] = None  # dequeued but not yet dispatched at shutdown

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def start(self):
        if self.running:
            return
        self._stopping.clear()
        self._workers = ThreadPoolExecutor(
            max_workers=self.limiter.capacity,
            thread_name_prefix="transcode-worker",
        )
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name="ingest-dispatcher",
            daemon=True,
        )
        self._dispatcher.start()
        logger.info(f"Ingestion scheduler started with {self.limiter.capacity} transcode slot(s)")

    def stop(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop dispatching. Jobs still waiting in the queue remain queued;
        with wait=True running transcodes are allowed to finish.
        """
        if self._dispatcher is None:
            return
        self._stopping.set()
        self._queue.put(_STOP)
        self._dispatcher.join(timeout=timeout)
        if self._workers is not None:
            self._workers.shutdown(wait=wait)
        self._dispatcher = None
        self._workers = None
        logger.info("Ingestion scheduler stopped")

    # Submission

    def _validate(self, job_id: str, source_path: str):
        self.layout.validate_job_id(job_id)
        path = Path(source_path)
        if not path.is_file():
            raise InvalidSource(f"Source file not found: {source_path}")
        if not os.access(path, os.R_OK):
            raise InvalidSource(f"Source file is not readable: {source_path}")

    def _register(self, job_id: str, source_path: str) -> JobView:
        self._validate(job_id, source_path)
        view, created = self.store.create(job_id, str(source_path))
        if not created:
            raise DuplicateJob(view)
        return view

    def submit(self, job_id: str, source_path: str) -> JobView:
        """
        Queue a staged upload for background processing

        Raises:
            InvalidJobId / InvalidSource: validation failed, nothing was queued
            DuplicateJob: the id is already queued or processing
        """
        view = self._register(job_id, source_path)
        self._queue.put(_QueuedJob(job_id=job_id, source_path=str(source_path)))
        logger.info(f"Queued video processing for job {job_id} ({self._queue.qsize()} waiting)")
        return view

    def run_inline(self, job_id: str, source_path: str) -> JobView:
        """Process a job in the calling thread, still bounded by the permit count"""
        self._register(job_id, source_path)
        job = _QueuedJob(job_id=job_id, source_path=str(source_path))

        permit = self.limiter.acquire()
        self._begin(job, permit)
        self._execute(job, permit)
        return self.store.get(job_id)

    def recover(self) -> int:
        """
        Re-queue persisted jobs left over from a previous process.

        Queued jobs whose staged source still exists are queued again in their
        original order; jobs caught mid-processing are marked failed because
        their transcode died with the old process.

        Returns:
            int: number of jobs re-queued
        """
        for view in self.store.list(status=JobStatus.PROCESSING, limit=self.store.count(JobStatus.PROCESSING)):
            self._finish(
                _QueuedJob(job_id=view.job_id, source_path=view.source_path),
                JobStatus.FAILED,
                error="Interrupted by service restart",
            )

        waiting = self.store.list(status=JobStatus.QUEUED, limit=self.store.count(JobStatus.QUEUED))
        requeued = 0
        for view in sorted(waiting, key=lambda v: v.created_at):
            if not Path(view.source_path).is_file():
                self.store.set_status(view.job_id, JobStatus.PROCESSING)
                self._finish(
                    _QueuedJob(job_id=view.job_id, source_path=view.source_path),
                    JobStatus.FAILED,
                    error=f"Staged source missing after restart: {view.source_path}",
                )
                continue
            self._queue.put(_QueuedJob(job_id=view.job_id, source_path=view.source_path))
            requeued += 1

        if requeued:
            logger.info(f"Recovered {requeued} queued job(s) from the job store")
        return requeued

    def get_status(self, job_id: str) -> Optional[JobView]:
        return self.store.get(job_id)

    def stats(self) -> Dict[str, int]:
        return {
            "queued": self.store.count(JobStatus.QUEUED),
            "in_flight": self.limiter.in_use,
            "peak_in_flight": self.limiter.peak,
            "capacity": self.limiter.capacity,
        }

    # Dispatch

    def _dispatch_loop(self):
        logger.info("Dispatch loop started")
        while not self._stopping.is_set():
            if self._carry is not None:
                item, self._carry = self._carry, None
            else:
                try:
                    item = self._queue.get(timeout=self.poll_interval)
                except queue.Empty:
                    continue

            if item is _STOP:
                continue  # loop condition decides
            if self._stopping.is_set():
                self._carry = item
                break

            try:
                self._dispatch(item)
            except Exception as e:
                logger.error(f"Dispatch of job {item.job_id} failed: {e}", exc_info=True)

        logger.info("Dispatch loop stopped")

    def _dispatch(self, job: _QueuedJob):
        permit = self.limiter.acquire(stop_event=self._stopping, poll_interval=self.poll_interval)
        if permit is None:
            logger.info(f"Shutdown requested; job {job.job_id} stays queued")
            self._carry = job
            return

        self._begin(job, permit)
        try:
            self._workers.submit(self._execute, job, permit)
        except Exception as e:
            permit.release()
            self._finish(job, JobStatus.FAILED, error=f"Could not start worker: {e}")
            raise

    def _begin(self, job: _QueuedJob, permit: Permit):
        try:
            self.store.set_status(job.job_id, JobStatus.PROCESSING)
        except BaseException:
            permit.release()
            raise
        logger.info(f"Starting processing for job {job.job_id}")

    # Worker

    def _execute(self, job: _QueuedJob, permit: Permit):
        with permit:
            try:
                manifest_url, strategy = self._process(job)
            except PipelineError as e:
                self._finish(job, JobStatus.FAILED, error=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error while processing job {job.job_id}")
                self._finish(job, JobStatus.FAILED, error=f"{type(e).__name__}: {e}")
            else:
                self._finish(job, JobStatus.COMPLETED, output_manifest_url=manifest_url, strategy=strategy)
            finally:
                self._discard_source(job)

    def _process(self, job: _QueuedJob):
        output_dir = self.layout.ensure_job_dir(job.job_id)
        # A resubmitted id reuses its directory; the manifest check must only see this run's output
        stale = self.layout.remove_outputs(job.job_id)
        if stale:
            logger.info(f"Removed {stale} file(s) left by a previous run of job {job.job_id}")
        decision = self.inspector.inspect(job.source_path)
        strategy = decision.strategy

        try:
            result = self.transcoder.run(job.source_path, output_dir, strategy)
        except Exception:
            self.layout.remove_outputs(job.job_id)
            raise

        if not result.success:
            self.layout.remove_outputs(job.job_id)
            raise TranscodeError(result.error or f"{strategy.value} failed")

        return self.layout.manifest_url(job.job_id), strategy.value

    def _finish(self, job: _QueuedJob, status: JobStatus, **fields):
        try:
            self.store.set_status(job.job_id, status, **fields)
        except Exception:
            logger.exception(f"Failed to record {status.value} for job {job.job_id}")
            return

        if status == JobStatus.COMPLETED:
            logger.info(f"Processing completed for job {job.job_id}")
        else:
            logger.error(f"Processing failed for job {job.job_id}: {fields.get('error')}")

    def _discard_source(self, job: _QueuedJob):
        try:
            os.remove(job.source_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete temp file {job.source_path}: {e}")
