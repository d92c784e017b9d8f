"""Tests for the transfer job dispatcher."""

import threading

import pytest

from b2transfer.dispatcher import TransferDispatcher, run_jobs
from b2transfer.exceptions import SessionError
from b2transfer.models import TransferJob, TransferKind
from b2transfer.workers import DownloadWorker, UploadWorker

from fakes import expired, forbidden


class TestTransferDispatcher:
    """Tests for TransferDispatcher."""

    def test_no_jobs(self, session) -> None:
        assert TransferDispatcher(session).run([]) == []

    def test_concurrent_uploads_and_downloads(self, session, service, make_file, tmp_path) -> None:
        """N uploads and M downloads give N+M intact, ordered outcomes."""
        for i in range(4):
            service.files[f"remote-{i}"] = bytes([i]) * (3000 + i * 1000)
        uploads = [TransferJob.upload(make_file(f"up-{i}.bin", 5000 + i * 777), f"up/{i}") for i in range(6)]
        downloads = [TransferJob.download(f"remote-{i}", tmp_path / f"down-{i}.bin") for i in range(4)]
        jobs = uploads + downloads

        outcomes = run_jobs(session, jobs)

        assert [outcome.job for outcome in outcomes] == jobs
        assert all(outcome.success for outcome in outcomes), [o.error for o in outcomes]
        for job in uploads:
            assert service.files[job.remote_key] == job.local_path.read_bytes()
        for i, job in enumerate(downloads):
            assert job.local_path.read_bytes() == service.files[f"remote-{i}"]

    def test_failed_job_does_not_cancel_siblings(self, session, service, make_file, tmp_path) -> None:
        jobs = [
            TransferJob.upload(make_file("a.bin", 100), "a.bin"),
            TransferJob.download("does-not-exist", tmp_path / "x"),
            TransferJob.upload(tmp_path / "missing.bin", "missing.bin"),
            TransferJob.upload(make_file("b.bin", 100), "b.bin"),
        ]

        outcomes = run_jobs(session, jobs)

        assert [outcome.success for outcome in outcomes] == [True, False, False, True]
        assert set(service.files) == {"a.bin", "b.bin"}

    def test_each_upload_gets_its_own_connector(self, session, service, make_file) -> None:
        jobs = [TransferJob.upload(make_file(f"{i}.bin", 10), f"{i}.bin") for i in range(3)]

        run_jobs(session, jobs)

        connectors = [upload.connector for upload in service.uploads]
        assert len(set(map(id, connectors))) == 3
        assert all(connector.closed for connector in service.connectors)

    def test_downloads_do_not_open_connectors(self, session, service, tmp_path) -> None:
        service.files["f"] = b"data"

        run_jobs(session, [TransferJob.download("f", tmp_path / "f")])

        assert service.connectors == []

    def test_shared_expiry_is_recovered(self, session, service, make_file) -> None:
        """Jobs hitting the same expired token all recover within their budget."""
        service.script("get_upload_url", expired(), expired())
        jobs = [TransferJob.upload(make_file(f"{i}.bin", 10), f"{i}.bin") for i in range(3)]

        outcomes = run_jobs(session, jobs)

        assert all(outcome.success for outcome in outcomes)
        assert 1 <= session.reauthorization_count <= 2

    def test_max_workers_bounds_concurrency(self, session, service, make_file) -> None:
        active = 0
        peak = 0
        lock = threading.Lock()
        real_begin_upload = service.begin_upload

        def tracking_begin_upload(*args, **kwargs):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            try:
                return real_begin_upload(*args, **kwargs)
            finally:
                with lock:
                    active -= 1

        service.begin_upload = tracking_begin_upload
        jobs = [TransferJob.upload(make_file(f"{i}.bin", 10), f"{i}.bin") for i in range(8)]

        outcomes = run_jobs(session, jobs, max_workers=2)

        assert all(outcome.success for outcome in outcomes)
        assert peak <= 2

    def test_unexpected_worker_error_becomes_failed_outcome(self, session, make_file, monkeypatch) -> None:
        def explode(self):
            raise RuntimeError("boom")

        monkeypatch.setattr(DownloadWorker, "_transfer", explode)
        jobs = [
            TransferJob.download("f", "ignored"),
            TransferJob.upload(make_file("ok.bin", 10), "ok.bin"),
        ]

        outcomes = run_jobs(session, jobs)

        assert not outcomes[0].success
        assert isinstance(outcomes[0].error, RuntimeError)
        assert outcomes[1].success

    def test_progress_events_reach_callback(self, session, make_file) -> None:
        events = []
        lock = threading.Lock()

        def on_progress(event):
            with lock:
                events.append(event)

        jobs = [TransferJob.upload(make_file(f"{i}.bin", 9000), f"{i}.bin") for i in range(2)]
        run_jobs(session, jobs, on_progress=on_progress)

        for job in jobs:
            sizes = [event.bytes_transferred for event in events if event.job is job]
            assert sizes == [4096, 8192, 9000]

    def test_create_worker_picks_kind(self, session, tmp_path) -> None:
        dispatcher = TransferDispatcher(session)

        upload = dispatcher.create_worker(TransferJob.upload(tmp_path / "a", "a"))
        download = dispatcher.create_worker(TransferJob.download("a", tmp_path / "a"))

        assert isinstance(upload, UploadWorker)
        assert upload.connector is not None
        assert isinstance(download, DownloadWorker)
        assert download.job.kind is TransferKind.DOWNLOAD

    def test_rejects_zero_workers(self, session) -> None:
        with pytest.raises(ValueError):
            TransferDispatcher(session, max_workers=0)


class TestLostSession:
    """A refused reauthorization ends the session for every job."""

    def test_queued_jobs_fail_without_starting(self, session, service, make_file) -> None:
        service.script("get_upload_url", expired(), expired(), expired())
        service.script("authorize", forbidden())
        jobs = [TransferJob.upload(make_file(f"{i}.bin", 10), f"{i}.bin") for i in range(3)]

        outcomes = run_jobs(session, jobs, max_workers=1)

        assert [outcome.success for outcome in outcomes] == [False, False, False]
        assert all(isinstance(outcome.error, SessionError) for outcome in outcomes)
        assert service.calls["authorize"] == 2  # create + the refused refresh
        assert service.calls["get_upload_url"] == 1
        assert service.files == {}

    def test_concurrent_jobs_share_one_refused_refresh(self, session, service, make_file, tmp_path) -> None:
        service.script("get_upload_url", expired(), expired(), expired())
        service.script("begin_download", expired())
        service.script("authorize", forbidden())
        service.files["remote"] = b"data"
        jobs = [TransferJob.upload(make_file(f"{i}.bin", 10), f"{i}.bin") for i in range(3)]
        jobs.append(TransferJob.download("remote", tmp_path / "remote"))

        outcomes = run_jobs(session, jobs)

        assert not any(outcome.success for outcome in outcomes)
        assert all(isinstance(outcome.error, SessionError) for outcome in outcomes)
        assert service.calls["authorize"] == 2
        assert isinstance(session.fatal_error, SessionError)
