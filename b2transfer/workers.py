"""
Transfer workers.

Each worker drives one TransferJob through its state machine and
returns exactly one TransferOutcome:

- UploadWorker:   AUTHORIZING -> REQUESTING -> STREAMING -> FINALIZING -> DONE | FAILED
- DownloadWorker: AUTHORIZING -> REQUESTING -> STREAMING -> DONE | FAILED

An upload the service rejects after the body was sent (expired token,
busy pod) goes back to REQUESTING and is sent again from the local file.
"""

import hashlib
import logging
import os
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from .exceptions import ApiError, LocalFileError, RetryExhaustedError, TransferError
from .models import RemoteFile, TransferJob, TransferOutcome, TransferProgress
from .retry import ErrorClass, classify
from .session import SessionManager
from .utils import DEFAULT_CHUNK_SIZE, chunk_file, format_file_size

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TransferProgress], None]


class WorkerState(Enum):
    """Lifecycle state of a transfer worker."""
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class TransferWorker(ABC):
    """
    Base class for the per-job state machines.

    Subclasses implement ``_transfer`` and return the success outcome;
    ``run`` turns any TransferError into a failed outcome so that one job
    never takes its siblings down.
    """

    def __init__(
        self,
        job: TransferJob,
        session: SessionManager,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_progress: Optional[ProgressCallback] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.job = job
        self.session = session
        self.chunk_size = chunk_size
        self.on_progress = on_progress
        self.bytes_transferred = 0
        self._state = WorkerState.IDLE

    @property
    def state(self) -> WorkerState:
        return self._state

    def _set_state(self, state: WorkerState) -> None:
        if state is self._state:
            return
        logger.debug("%s: %s -> %s", self.job, self._state.value, state.value)
        self._state = state

    def _report(self, total_bytes: Optional[int]) -> None:
        if self.on_progress:
            self.on_progress(TransferProgress(self.job, self.bytes_transferred, total_bytes))

    def run(self) -> TransferOutcome:
        """Execute the job and return its outcome."""
        start_time = time.time()
        try:
            outcome = self._transfer()
        except TransferError as e:
            self._set_state(WorkerState.FAILED)
            logger.error("%s failed: %s", self.job, e)
            outcome = TransferOutcome.failed(self.job, e)
        except Exception:
            self._set_state(WorkerState.FAILED)
            raise
        else:
            self._set_state(WorkerState.DONE)

        outcome.bytes_transferred = self.bytes_transferred
        outcome.elapsed_time = time.time() - start_time
        return outcome

    def _recoverable(self, error: TransferError) -> bool:
        """Whether ``error`` may go through the request recovery rules."""
        return self._state is WorkerState.REQUESTING

    def _request_with_recovery(self, attempt: Callable, credential: Callable, auth):
        """
        Run ``attempt`` until it succeeds, recovering once from an expired session.

        Errors raised while the worker is REQUESTING (see ``_recoverable``)
        are classified: an expired session is reauthorized once and the
        attempt repeated with a new authorization, retriable errors are
        retried with the same authorization up to the policy's bound.
        Anything else is raised.

        Args:
            attempt: Called with the current authorization, starting in
                REQUESTING
            credential: Returns a fresh authorization after reauthorizing
            auth: Authorization to start with

        Returns:
            Whatever ``attempt`` returned
        """
        policy = self.session.policy
        reauthorized = False
        attempts = 0
        while True:
            attempts += 1
            generation = self.session.generation
            self._set_state(WorkerState.REQUESTING)
            try:
                return attempt(auth)
            except TransferError as e:
                if not self._recoverable(e):
                    raise
                kind = classify(e)

                if kind is ErrorClass.SESSION_EXPIRED and not reauthorized:
                    logger.info("%s: session expired, reauthorizing", self.job)
                    reauthorized = True
                    self.session.reauthorize(generation)
                    self._set_state(WorkerState.AUTHORIZING)
                    auth = credential()
                    continue

                if kind is ErrorClass.RETRIABLE:
                    if attempts >= policy.max_attempts:
                        raise RetryExhaustedError(
                            f"{self.job}: request failed after {attempts} attempts: {e}",
                            attempts=attempts,
                            last_error=e,
                        ) from e
                    logger.warning("%s: request failed (attempt %d/%d): %s",
                                   self.job, attempts, policy.max_attempts, e)
                    policy.backoff(attempts)
                    continue

                raise

    @abstractmethod
    def _transfer(self) -> TransferOutcome:
        """Move the bytes and return the success outcome."""


class UploadWorker(TransferWorker):
    """Streams a local file to the bucket, hashing it on the way."""

    def __init__(
        self,
        job: TransferJob,
        session: SessionManager,
        connector=None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_progress: Optional[ProgressCallback] = None,
    ):
        super().__init__(job, session, chunk_size, on_progress)
        self.connector = connector
        self.digest: Optional[str] = None

    def _file_size(self) -> int:
        try:
            return os.stat(self.job.local_path).st_size
        except OSError as e:
            raise LocalFileError(f"Cannot stat {self.job.local_path}: {e}", path=str(self.job.local_path)) from e

    def _recoverable(self, error: TransferError) -> bool:
        # The file is local, so an upload the service rejected as a whole
        # can be sent again. A connection lost mid-stream fails the job.
        if self._state is WorkerState.FINALIZING:
            return isinstance(error, ApiError) and error.status is not None
        return super()._recoverable(error)

    def _transfer(self) -> TransferOutcome:
        job = self.job

        self._set_state(WorkerState.AUTHORIZING)
        auth = self.session.upload_credential()

        self._set_state(WorkerState.REQUESTING)
        file_size = self._file_size()
        remote_file = self._request_with_recovery(
            lambda upload_auth: self._upload(upload_auth, file_size),
            self.session.upload_credential,
            auth,
        )

        download_url = self.session.download_url_for(job.remote_key)
        return TransferOutcome.succeeded(
            job,
            f"file {remote_file.file_name} uploaded, id: {remote_file.file_id}\n"
            f"download url: {download_url}",
            remote_file=remote_file,
            download_url=download_url,
        )

    def _upload(self, auth, file_size: int) -> RemoteFile:
        job = self.job
        upload = self.session.api.begin_upload(auth, job.remote_key, file_size, self.connector)

        self._set_state(WorkerState.STREAMING)
        logger.info("Upload to %s has started (%s)", job.remote_key, format_file_size(file_size))
        self.bytes_transferred = 0
        sha1 = hashlib.sha1()
        try:
            try:
                source = open(job.local_path, "rb")
            except OSError as e:
                raise LocalFileError(f"Cannot open {job.local_path}: {e}", path=str(job.local_path)) from e

            with source:
                for chunk in self._read_chunks(source):
                    if self.bytes_transferred + len(chunk) > file_size:
                        raise LocalFileError(f"{job.local_path} grew during upload", path=str(job.local_path))
                    upload.write(chunk)
                    sha1.update(chunk)
                    self.bytes_transferred += len(chunk)
                    self._report(file_size)

            if self.bytes_transferred != file_size:
                raise LocalFileError(f"{job.local_path} shrank during upload", path=str(job.local_path))

            self._set_state(WorkerState.FINALIZING)
            self.digest = sha1.hexdigest()
            return upload.finish(self.digest)
        except Exception:
            upload.abort()
            raise

    def _read_chunks(self, source):
        try:
            yield from chunk_file(source, self.chunk_size)
        except OSError as e:
            raise LocalFileError(f"Cannot read {self.job.local_path}: {e}", path=str(self.job.local_path)) from e


class DownloadWorker(TransferWorker):
    """Streams a file of the bucket into a local file."""

    def _transfer(self) -> TransferOutcome:
        job = self.job
        api = self.session.api
        bucket_name = self.session.bucket.name

        self._set_state(WorkerState.AUTHORIZING)
        auth = self.session.download_credential()

        stream = self._request_with_recovery(
            lambda download_auth: api.begin_download(download_auth, bucket_name, job.remote_key),
            self.session.download_credential,
            auth,
        )

        self._set_state(WorkerState.STREAMING)
        logger.info("Download from %s has started", job.remote_key)
        with stream:
            try:
                target = open(job.local_path, "wb")
            except OSError as e:
                raise LocalFileError(f"Cannot create {job.local_path}: {e}", path=str(job.local_path)) from e

            try:
                with target:
                    for chunk in chunk_file(stream, self.chunk_size):
                        target.write(chunk)
                        self.bytes_transferred += len(chunk)
                        self._report(stream.content_length)
            except OSError as e:
                self._discard_partial()
                raise LocalFileError(f"Cannot write {job.local_path}: {e}", path=str(job.local_path)) from e
            except Exception:
                self._discard_partial()
                raise

        return TransferOutcome.succeeded(
            job,
            f"file {job.remote_key} downloaded to {job.local_path} "
            f"({format_file_size(self.bytes_transferred)})",
        )

    def _discard_partial(self) -> None:
        try:
            os.remove(self.job.local_path)
        except OSError as e:
            logger.warning("Could not remove partial download %s: %s", self.job.local_path, e)
