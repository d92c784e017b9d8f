"""
b2transfer - concurrent file transfers to and from Backblaze B2.

This package provides:
- A session manager sharing one account authorization between transfers
- Upload and download workers streaming files in fixed-size chunks
- A dispatcher running every requested transfer concurrently
- A command-line tool built on top of them
"""

__version__ = "0.3.0"

from .api import B2Api
from .session import SessionManager
from .dispatcher import TransferDispatcher, run_jobs
from .workers import UploadWorker, DownloadWorker, WorkerState
from .retry import ErrorClass, RetryPolicy, classify
from .models import (
    Credentials,
    AuthorizationToken,
    BucketIdentity,
    UploadAuthorization,
    DownloadAuthorization,
    RemoteFile,
    TransferJob,
    TransferKind,
    TransferOutcome,
    TransferProgress,
)
from .exceptions import (
    TransferError,
    ApiError,
    NetworkError,
    AuthenticationError,
    BucketNotFoundError,
    AmbiguousBucketError,
    SessionError,
    RetryExhaustedError,
    LocalFileError,
    IntegrityError,
    ConfigurationError,
)

__all__ = [
    # Entry points
    "B2Api",
    "SessionManager",
    "TransferDispatcher",
    "run_jobs",
    "UploadWorker",
    "DownloadWorker",
    "WorkerState",

    # Retry policy
    "ErrorClass",
    "RetryPolicy",
    "classify",

    # Data models
    "Credentials",
    "AuthorizationToken",
    "BucketIdentity",
    "UploadAuthorization",
    "DownloadAuthorization",
    "RemoteFile",
    "TransferJob",
    "TransferKind",
    "TransferOutcome",
    "TransferProgress",

    # Exceptions
    "TransferError",
    "ApiError",
    "NetworkError",
    "AuthenticationError",
    "BucketNotFoundError",
    "AmbiguousBucketError",
    "SessionError",
    "RetryExhaustedError",
    "LocalFileError",
    "IntegrityError",
    "ConfigurationError",
]
