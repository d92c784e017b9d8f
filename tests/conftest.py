"""Pytest fixtures for b2transfer tests."""

import os

import pytest

from b2transfer.models import Credentials
from b2transfer.retry import RetryPolicy
from b2transfer.session import SessionManager

from fakes import FakeB2Service


@pytest.fixture
def credentials():
    """Application key pair accepted by the fake service."""
    return Credentials(key_id="000abc123", application_key="K000secret")


@pytest.fixture
def policy():
    """Retry policy that never sleeps."""
    return RetryPolicy(
        max_attempts=4,
        base_delay=0.01,
        max_delay=0.1,
        jitter=False,
        max_reauthorizations=2,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def service():
    """Fake B2 service with the buckets "photos" and "logs"."""
    return FakeB2Service()


@pytest.fixture
def session(service, credentials, policy):
    """Session authorized against the "photos" bucket."""
    return SessionManager.create(service, credentials, "photos", policy)


@pytest.fixture
def make_file(tmp_path):
    """Factory writing a local file of ``size`` random bytes."""

    def _make(name: str, size: int) -> str:
        path = tmp_path / name
        path.write_bytes(os.urandom(size) if size else b"")
        return str(path)

    return _make
