"""
Session management for b2transfer.

The SessionManager owns the account authorization shared by every
transfer job: it authorizes once at startup, resolves the target bucket,
hands out upload and download credentials, and replaces the token when
the service reports it expired.
"""

import logging
import threading
from typing import Optional

from .exceptions import (
    AmbiguousBucketError, AuthenticationError, BucketNotFoundError,
    RetryExhaustedError, SessionError,
)
from .models import (
    AuthorizationToken, BucketIdentity, Credentials,
    DownloadAuthorization, UploadAuthorization,
)
from .retry import ErrorClass, RetryPolicy, classify, retry_call
from .utils import build_download_url

logger = logging.getLogger(__name__)


def _authorize_with_retry(api, credentials: Credentials, policy: RetryPolicy) -> AuthorizationToken:
    """
    Authorize the account, backing off on retriable errors.

    Raises:
        AuthenticationError: If the service refused the credentials or kept
            failing for every allowed attempt
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return api.authorize(credentials)
        except Exception as e:
            if classify(e) is not ErrorClass.RETRIABLE:
                raise AuthenticationError(f"Authorization failed: {e}") from e
            if attempt >= policy.max_attempts:
                raise AuthenticationError(
                    f"Authorization failed after {attempt} attempts: {e}"
                ) from e
            logger.warning("Authorization attempt %d/%d failed: %s", attempt, policy.max_attempts, e)
            policy.backoff(attempt)


class SessionManager:
    """
    Shared authorization state for concurrent transfer jobs.

    The current token is an immutable snapshot read without locking;
    ``reauthorize`` swaps in a new snapshot under an exclusive lock and
    bumps ``generation`` so that workers holding an old token can tell a
    refresh already happened.

    Once reauthorization fails fatally the session is dead: the error is
    kept in ``fatal_error`` and raised again by every later request for a
    credential, without contacting the service.
    """

    def __init__(
        self,
        api,
        credentials: Credentials,
        token: AuthorizationToken,
        bucket: BucketIdentity,
        policy: Optional[RetryPolicy] = None,
    ):
        self.api = api
        self.bucket = bucket
        self.policy = policy or RetryPolicy()
        self._credentials = credentials
        self._token = token
        self._generation = 0
        self._reauthorizations = 0
        self._fatal: Optional[SessionError] = None
        self._lock = threading.Lock()

    @classmethod
    def create(
        cls,
        api,
        credentials: Credentials,
        bucket_name: str,
        policy: Optional[RetryPolicy] = None,
    ) -> "SessionManager":
        """
        Authorize the account and resolve the bucket every job will use.

        Args:
            api: Remote API client (see ``b2transfer.api.B2Api``)
            credentials: Account credentials
            bucket_name: Exact name of the bucket to work against
            policy: Retry policy for this session

        Returns:
            A ready SessionManager

        Raises:
            AuthenticationError: If the account cannot be authorized
            BucketNotFoundError: If no bucket has that name
            AmbiguousBucketError: If several buckets have that name
        """
        policy = policy or RetryPolicy()
        token = _authorize_with_retry(api, credentials, policy)

        if token.allowed_bucket_name:
            # keys restricted to one bucket may only list that bucket
            buckets = retry_call(lambda: api.list_buckets(token, bucket_name), policy, "b2_list_buckets")
        else:
            buckets = retry_call(lambda: api.list_buckets(token), policy, "b2_list_buckets")
        matches = [bucket for bucket in buckets if bucket.bucket_name == bucket_name]
        if not matches:
            raise BucketNotFoundError(f"Bucket not found: {bucket_name}", bucket_name=bucket_name)
        if len(matches) > 1:
            raise AmbiguousBucketError(
                f"{len(matches)} buckets are named {bucket_name}", bucket_name=bucket_name
            )

        bucket = BucketIdentity(name=matches[0].bucket_name, id=matches[0].bucket_id)
        logger.info("Session ready for bucket %s (%s)", bucket.name, bucket.id)
        return cls(api, credentials, token, bucket, policy)

    @property
    def token(self) -> AuthorizationToken:
        """Current authorization snapshot."""
        return self._token

    @property
    def generation(self) -> int:
        """Number of times the token has been replaced."""
        return self._generation

    @property
    def reauthorization_count(self) -> int:
        return self._reauthorizations

    @property
    def fatal_error(self) -> Optional[SessionError]:
        """Error that ended the session, or None while it is usable."""
        return self._fatal

    def _check_alive(self) -> None:
        if self._fatal is not None:
            raise SessionError(f"Session is no longer usable: {self._fatal.message}") from self._fatal

    def reauthorize(self, stale_generation: Optional[int] = None) -> None:
        """
        Replace the current token with a freshly authorized one.

        Args:
            stale_generation: Generation the caller saw when its request was
                rejected. If the token has been replaced since, the caller's
                problem is already solved and nothing is done.

        Raises:
            SessionError: If the account can no longer be authorized, now
                or in an earlier call
        """
        with self._lock:
            self._check_alive()
            if stale_generation is not None and stale_generation != self._generation:
                logger.debug("Token already refreshed (generation %d)", self._generation)
                return

            logger.info("Reauthorizing account")
            try:
                token = _authorize_with_retry(self.api, self._credentials, self.policy)
            except AuthenticationError as e:
                logger.error("Session lost: %s", e.message)
                self._fatal = SessionError(f"Reauthorization failed: {e.message}")
                raise self._fatal from e

            self._token = token
            self._generation += 1
            self._reauthorizations += 1

    def download_credential(self) -> DownloadAuthorization:
        """Download authorization derived from the current token."""
        self._check_alive()
        return DownloadAuthorization.from_token(self._token)

    def upload_credential(self) -> UploadAuthorization:
        """
        Request a fresh upload URL for the session's bucket.

        Retriable errors are retried with backoff and an expired session
        is reauthorized before the next attempt, both within the bounds of
        the retry policy.

        Raises:
            RetryExhaustedError: If the bounds were reached
            SessionError: If reauthorization failed
            ApiError: For any fatal remote error
        """
        attempts = 0
        reauthorizations = 0
        while True:
            self._check_alive()
            attempts += 1
            generation = self._generation
            try:
                return self.api.get_upload_url(self._token, self.bucket.id)
            except Exception as e:
                kind = classify(e)
                if kind is ErrorClass.FATAL:
                    raise

                if kind is ErrorClass.SESSION_EXPIRED:
                    if reauthorizations >= self.policy.max_reauthorizations:
                        raise RetryExhaustedError(
                            f"Upload URL still rejected after {reauthorizations} reauthorizations: {e}",
                            attempts=attempts,
                            last_error=e,
                        ) from e
                    reauthorizations += 1
                    self.reauthorize(generation)
                    continue

                if attempts >= self.policy.max_attempts:
                    raise RetryExhaustedError(
                        f"Could not get an upload URL after {attempts} attempts: {e}",
                        attempts=attempts,
                        last_error=e,
                    ) from e
                logger.warning("get_upload_url failed (attempt %d): %s", attempts, e)
                self.policy.backoff(attempts)

    def download_url_for(self, remote_key: str) -> str:
        """Public download-by-name URL of a file in the session's bucket."""
        return build_download_url(self._token.download_url, self.bucket.name, remote_key)
