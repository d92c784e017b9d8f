"""
Data models for b2transfer.

This module defines the credentials, authorization snapshots, bucket
identity, transfer jobs and outcomes shared by the session manager,
the workers and the CLI.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass


@dataclass(frozen=True)
class Credentials:
    """Application key pair used to authorize an account."""

    key_id: str
    application_key: str

    def __repr__(self) -> str:
        return f"Credentials(key_id={self.key_id!r}, application_key='***')"


@dataclass(frozen=True)
class AuthorizationToken:
    """Result of a successful account authorization.

    Instances are never mutated; the session manager replaces the whole
    token when it reauthorizes.
    """

    account_id: str
    token: str
    api_url: str
    download_url: str
    recommended_part_size: int = 0
    allowed_bucket_id: Optional[str] = None
    allowed_bucket_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorizationToken":
        """Create AuthorizationToken from a b2_authorize_account response."""
        # bucket restrictions are nested under "allowed"
        allowed = data.get("allowed") or {}
        return cls(
            account_id=data["accountId"],
            token=data["authorizationToken"],
            api_url=data["apiUrl"].rstrip("/"),
            download_url=data["downloadUrl"].rstrip("/"),
            recommended_part_size=data.get("recommendedPartSize", 0),
            allowed_bucket_id=allowed.get("bucketId"),
            allowed_bucket_name=allowed.get("bucketName"),
        )

    def __repr__(self) -> str:
        return f"AuthorizationToken(account_id={self.account_id!r}, api_url={self.api_url!r})"


@dataclass(frozen=True)
class BucketInfo:
    """One entry of the account's bucket listing."""

    bucket_id: str
    bucket_name: str
    bucket_type: str = "allPrivate"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BucketInfo":
        return cls(
            bucket_id=data["bucketId"],
            bucket_name=data["bucketName"],
            bucket_type=data.get("bucketType", "allPrivate"),
        )


@dataclass(frozen=True)
class BucketIdentity:
    """The bucket every job of a session works against."""

    name: str
    id: str


@dataclass(frozen=True)
class UploadAuthorization:
    """Upload URL and token good for a single upload request."""

    bucket_id: str
    upload_url: str
    token: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadAuthorization":
        """Create UploadAuthorization from a b2_get_upload_url response."""
        return cls(
            bucket_id=data["bucketId"],
            upload_url=data["uploadUrl"],
            token=data["authorizationToken"],
        )


@dataclass(frozen=True)
class DownloadAuthorization:
    """Download endpoint and token, reusable for any number of downloads."""

    download_url: str
    token: str

    @classmethod
    def from_token(cls, token: AuthorizationToken) -> "DownloadAuthorization":
        return cls(download_url=token.download_url, token=token.token)


@dataclass
class RemoteFile:
    """Information about a file stored in a bucket."""

    file_id: str
    file_name: str
    content_length: int
    content_sha1: Optional[str] = None
    bucket_id: Optional[str] = None
    action: str = "upload"
    upload_timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteFile":
        """Create RemoteFile from a b2_upload_file response."""
        uploaded_at = None
        if data.get("uploadTimestamp"):
            # milliseconds since the epoch
            uploaded_at = datetime.fromtimestamp(data["uploadTimestamp"] / 1000, tz=timezone.utc)

        sha1 = data.get("contentSha1")
        if sha1 and sha1.startswith("unverified:"):
            sha1 = sha1[len("unverified:"):]

        return cls(
            file_id=data["fileId"],
            file_name=data["fileName"],
            content_length=data.get("contentLength", 0),
            content_sha1=sha1,
            bucket_id=data.get("bucketId"),
            action=data.get("action", "upload"),
            upload_timestamp=uploaded_at,
        )


class TransferKind(Enum):
    """Direction of a transfer job."""
    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class TransferJob:
    """One requested file transfer, consumed by exactly one worker."""

    kind: TransferKind
    local_path: Path
    remote_key: str

    @classmethod
    def upload(cls, local_path, remote_key: str) -> "TransferJob":
        """Job copying ``local_path`` to ``remote_key``."""
        return cls(TransferKind.UPLOAD, Path(local_path), remote_key)

    @classmethod
    def download(cls, remote_key: str, local_path) -> "TransferJob":
        """Job copying ``remote_key`` to ``local_path``."""
        return cls(TransferKind.DOWNLOAD, Path(local_path), remote_key)

    @property
    def source(self) -> str:
        if self.kind is TransferKind.UPLOAD:
            return str(self.local_path)
        return self.remote_key

    @property
    def destination(self) -> str:
        if self.kind is TransferKind.UPLOAD:
            return self.remote_key
        return str(self.local_path)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.source} -> {self.destination}"


@dataclass
class TransferProgress:
    """Progress information emitted after every chunk of a transfer."""

    job: TransferJob
    bytes_transferred: int
    total_bytes: Optional[int] = None

    @property
    def percentage(self) -> Optional[float]:
        """Share of the total moved so far, or None if the total is unknown."""
        if self.total_bytes is None:
            return None
        if self.total_bytes == 0:
            return 100.0
        return (self.bytes_transferred / self.total_bytes) * 100

    @property
    def transferred_mb(self) -> float:
        """Transferred bytes in MB."""
        return self.bytes_transferred / (1024 * 1024)


@dataclass
class TransferOutcome:
    """Result of one job: a success message or the error that ended it."""

    job: TransferJob
    success: bool
    message: Optional[str] = None
    error: Optional[BaseException] = None
    remote_file: Optional[RemoteFile] = None
    download_url: Optional[str] = None
    bytes_transferred: int = 0
    elapsed_time: float = 0.0

    @classmethod
    def succeeded(cls, job: TransferJob, message: str, **kwargs) -> "TransferOutcome":
        return cls(job=job, success=True, message=message, **kwargs)

    @classmethod
    def failed(cls, job: TransferJob, error: BaseException) -> "TransferOutcome":
        return cls(job=job, success=False, error=error)

    def describe(self) -> str:
        """Render the outcome as the line reported to the user."""
        if self.success:
            return self.message or f"{self.job} done"
        return f"fail: {self.job}: {self.error}"
