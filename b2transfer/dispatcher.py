"""
Transfer job dispatcher.

Runs every requested job on its own thread (or on a bounded pool) against
one shared SessionManager and collects one outcome per job, in the order
the jobs were given.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from .models import TransferJob, TransferKind, TransferOutcome
from .session import SessionManager
from .utils import DEFAULT_CHUNK_SIZE
from .workers import DownloadWorker, ProgressCallback, TransferWorker, UploadWorker

logger = logging.getLogger(__name__)


class TransferDispatcher:
    """
    Turns TransferJobs into workers and waits for all of them.

    Failures are independent: a failed job is reported in its outcome and
    never cancels the others. The one exception is a lost session, after
    which queued jobs fail without being started.
    """

    def __init__(
        self,
        session: SessionManager,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_workers: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            session: Session shared by every worker
            chunk_size: Bytes read and written per step of a transfer
            max_workers: Upper bound on concurrent jobs (default: one thread per job)
            on_progress: Called from worker threads after every chunk
        """
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.session = session
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.on_progress = on_progress

    def create_worker(self, job: TransferJob) -> TransferWorker:
        """Build the worker for one job."""
        if job.kind is TransferKind.UPLOAD:
            # each upload streams over its own connection pool
            return UploadWorker(
                job,
                self.session,
                connector=self.session.api.new_connector(),
                chunk_size=self.chunk_size,
                on_progress=self.on_progress,
            )
        return DownloadWorker(
            job,
            self.session,
            chunk_size=self.chunk_size,
            on_progress=self.on_progress,
        )

    def _run_job(self, job: TransferJob) -> TransferOutcome:
        if self.session.fatal_error is not None:
            # the session died while this job was queued
            return TransferOutcome.failed(job, self.session.fatal_error)

        worker = self.create_worker(job)
        try:
            return worker.run()
        finally:
            connector = getattr(worker, "connector", None)
            if connector is not None:
                connector.close()

    def run(self, jobs: List[TransferJob]) -> List[TransferOutcome]:
        """
        Run all jobs concurrently.

        Returns:
            One TransferOutcome per job, in the order of ``jobs``
        """
        if not jobs:
            return []

        workers = self.max_workers or len(jobs)
        logger.info("Dispatching %d job(s) on %d thread(s)", len(jobs), workers)

        outcomes = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="transfer") as executor:
            futures = [executor.submit(self._run_job, job) for job in jobs]
            for job, future in zip(jobs, futures):
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.exception("Unexpected error in %s", job)
                    outcomes.append(TransferOutcome.failed(job, e))

        failed = sum(1 for outcome in outcomes if not outcome.success)
        logger.info("%d job(s) finished, %d failed", len(outcomes), failed)
        return outcomes


def run_jobs(
    session: SessionManager,
    jobs: List[TransferJob],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_workers: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> List[TransferOutcome]:
    """Run ``jobs`` against ``session`` and return their outcomes in order."""
    dispatcher = TransferDispatcher(
        session,
        chunk_size=chunk_size,
        max_workers=max_workers,
        on_progress=on_progress,
    )
    return dispatcher.run(jobs)
