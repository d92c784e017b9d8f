"""
Custom exceptions for b2transfer.

This module defines all the exception classes raised by the session manager,
the transfer workers and the B2 API client, so that callers can tell local
failures, remote failures and configuration problems apart.
"""


class TransferError(Exception):
    """Base exception for all b2transfer errors."""

    def __init__(self, message: str, error_code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self):
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ConfigurationError(TransferError):
    """Raised when configuration or credentials are invalid."""

    def __init__(self, message: str = "Invalid configuration", config_key: str = None, **kwargs):
        super().__init__(message, error_code="CONFIG_ERROR", **kwargs)
        self.config_key = config_key


class ApiError(TransferError):
    """Raised when the storage service answers with an error status."""

    def __init__(self, message: str = "Remote request failed", status: int = None, code: str = None, **kwargs):
        super().__init__(message, error_code=code or "API_ERROR", **kwargs)
        self.status = status
        self.code = code

    def __str__(self):
        if self.status is not None:
            return f"[{self.status} {self.code or 'unknown'}] {self.message}"
        return super().__str__()


class NetworkError(ApiError):
    """Raised when the request never got a response (connection, timeout)."""

    def __init__(self, message: str = "Network operation failed", **kwargs):
        super().__init__(message, **kwargs)
        self.error_code = "NETWORK_ERROR"


class AuthenticationError(TransferError):
    """Raised when the account cannot be authorized."""

    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(message, error_code="AUTH_ERROR", **kwargs)


class BucketNotFoundError(TransferError):
    """Raised when no bucket of the account has the requested name."""

    def __init__(self, message: str = "Bucket not found", bucket_name: str = None, **kwargs):
        super().__init__(message, error_code="BUCKET_NOT_FOUND", **kwargs)
        self.bucket_name = bucket_name


class AmbiguousBucketError(TransferError):
    """Raised when more than one bucket matches the requested name."""

    def __init__(self, message: str = "Bucket name is ambiguous", bucket_name: str = None, **kwargs):
        super().__init__(message, error_code="BUCKET_AMBIGUOUS", **kwargs)
        self.bucket_name = bucket_name


class SessionError(TransferError):
    """Raised when the session cannot be reauthorized; no transfer can proceed."""

    def __init__(self, message: str = "Session could not be reauthorized", **kwargs):
        super().__init__(message, error_code="SESSION_ERROR", **kwargs)


class RetryExhaustedError(TransferError):
    """Raised when an operation kept failing after every allowed attempt."""

    def __init__(self, message: str = "Retries exhausted", attempts: int = 0, last_error: Exception = None, **kwargs):
        super().__init__(message, error_code="RETRY_EXHAUSTED", **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class LocalFileError(TransferError):
    """Raised when a local file cannot be opened, read, written or stat'ed."""

    def __init__(self, message: str = "Local file operation failed", path: str = None, **kwargs):
        super().__init__(message, error_code="LOCAL_IO_ERROR", **kwargs)
        self.path = path


class IntegrityError(TransferError):
    """Raised when the service stored content with a different checksum."""

    def __init__(self, message: str = "File integrity check failed", expected_sha1: str = None, actual_sha1: str = None, **kwargs):
        super().__init__(message, error_code="INTEGRITY_ERROR", **kwargs)
        self.expected_sha1 = expected_sha1
        self.actual_sha1 = actual_sha1
