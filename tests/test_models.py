"""Tests for the data models."""

from datetime import datetime, timezone
from pathlib import Path

from b2transfer.exceptions import ApiError
from b2transfer.models import (
    AuthorizationToken,
    BucketInfo,
    RemoteFile,
    TransferJob,
    TransferKind,
    TransferOutcome,
    TransferProgress,
)


class TestFromDict:
    """Tests for building models from API responses."""

    def test_authorization_token_reads_restrictions(self) -> None:
        token = AuthorizationToken.from_dict({
            "accountId": "acct",
            "authorizationToken": "secret-token",
            "apiUrl": "https://api002.backblazeb2.com",
            "downloadUrl": "https://f002.backblazeb2.com",
            "recommendedPartSize": 100000000,
            "allowed": {"bucketId": "b1", "bucketName": "photos"},
        })

        assert token.allowed_bucket_name == "photos"
        assert token.recommended_part_size == 100000000
        assert "secret-token" not in repr(token)

    def test_bucket_info_defaults(self) -> None:
        bucket = BucketInfo.from_dict({"bucketId": "b1", "bucketName": "photos"})

        assert bucket.bucket_type == "allPrivate"

    def test_remote_file(self) -> None:
        remote = RemoteFile.from_dict({
            "fileId": "4_z1",
            "fileName": "a.txt",
            "contentLength": 3,
            "contentSha1": "unverified:a9993e364706816aba3e25717850c26c9cd0d89d",
            "uploadTimestamp": 1700000000000,
        })

        assert remote.content_sha1 == "a9993e364706816aba3e25717850c26c9cd0d89d"
        assert remote.upload_timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        assert remote.action == "upload"


class TestTransferJob:
    """Tests for TransferJob."""

    def test_upload_direction(self) -> None:
        job = TransferJob.upload("local/a.txt", "remote/a.txt")

        assert job.kind is TransferKind.UPLOAD
        assert job.local_path == Path("local/a.txt")
        assert job.source == str(Path("local/a.txt"))
        assert job.destination == "remote/a.txt"

    def test_download_direction(self) -> None:
        job = TransferJob.download("remote/a.txt", "local/a.txt")

        assert job.source == "remote/a.txt"
        assert job.destination == str(Path("local/a.txt"))


class TestProgressAndOutcome:
    """Tests for TransferProgress and TransferOutcome."""

    def test_percentage(self) -> None:
        job = TransferJob.upload("a", "a")

        assert TransferProgress(job, 50, 200).percentage == 25.0
        assert TransferProgress(job, 0, 0).percentage == 100.0
        assert TransferProgress(job, 10).percentage is None

    def test_describe(self) -> None:
        job = TransferJob.download("a.txt", "b.txt")

        ok = TransferOutcome.succeeded(job, "file a.txt downloaded to b.txt (3 B)")
        failed = TransferOutcome.failed(job, ApiError("File not present", status=404, code="not_found"))

        assert ok.describe() == "file a.txt downloaded to b.txt (3 B)"
        assert failed.describe().startswith("fail: ")
        assert failed.describe().endswith("[404 not_found] File not present")
        assert not failed.success
