"""
B2 native API client.

This module implements the remote calls the session manager and the
transfer workers depend on: account authorization, bucket listing, upload
URLs, streamed uploads with the SHA-1 sent after the content, and streamed
downloads by file name.
"""

import logging
import queue
import threading
from typing import Optional, List, Dict, Any

import requests
from requests.adapters import HTTPAdapter
from requests.auth import HTTPBasicAuth
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from urllib3.util.retry import Retry

from . import __version__
from .exceptions import ApiError, NetworkError, IntegrityError, TransferError
from .models import (
    AuthorizationToken, BucketInfo, Credentials, DownloadAuthorization,
    RemoteFile, UploadAuthorization,
)
from .utils import build_download_url, quote_file_name

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.backblazeb2.com"
API_VERSION = "v2"

# Length of the hex SHA-1 appended to a "hex_digits_at_end" upload body
SHA1_HEX_LENGTH = 40

# Chunks buffered between a worker and its upload connection
UPLOAD_QUEUE_SIZE = 64


def _error_from_response(response: requests.Response) -> ApiError:
    """Build an ApiError from a B2 JSON error body."""
    code = None
    message = response.reason or "Request failed"
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        code = body.get("code")
        message = body.get("message") or message
    elif response.text:
        message = response.text[:200]

    return ApiError(message, status=response.status_code, code=code)


class B2Api:
    """
    Synchronous client for the B2 native API.

    Holds one shared HTTP session for small API calls; uploads may bring
    their own connector (see ``new_connector``) so that streaming bodies do
    not contend for the shared connection pool.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: int = 60,
        connect_retries: int = 3,
    ):
        """
        Initialize the API client.

        Args:
            api_url: Endpoint used for b2_authorize_account
            timeout: Socket timeout in seconds for every request
            connect_retries: Connection attempts made by the transport before
                an error is reported (requests are never resent once sent)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.connect_retries = connect_retries
        self.session = self.new_connector()

    def new_connector(self) -> requests.Session:
        """Create an HTTP session with its own connection pool."""
        session = requests.Session()
        # Only connection establishment is retried here; everything after
        # the request was sent goes through the error classifier.
        retry_strategy = Retry(
            total=self.connect_retries,
            connect=self.connect_retries,
            read=0,
            status=0,
            other=0,
            backoff_factor=0.5,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({
            "User-Agent": f"b2transfer/{__version__}",
        })
        return session

    def _request(
        self,
        method: str,
        url: str,
        session: Optional[requests.Session] = None,
        **kwargs
    ) -> requests.Response:
        """Send a request and turn transport or HTTP failures into ApiErrors."""
        session = session or self.session
        kwargs.setdefault("timeout", self.timeout)

        try:
            response = session.request(method=method, url=url, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise NetworkError(f"{method} {url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ApiError(f"{method} {url}: {e}") from e

        if not response.ok:
            error = _error_from_response(response)
            response.close()
            raise error

        return response

    def _call(self, token: AuthorizationToken, operation: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload to one of the account's API operations."""
        response = self._request(
            "POST",
            f"{token.api_url}/b2api/{API_VERSION}/{operation}",
            headers={"Authorization": token.token},
            json=payload,
        )
        return response.json()

    def authorize(self, credentials: Credentials) -> AuthorizationToken:
        """Authorize the account (b2_authorize_account)."""
        response = self._request(
            "GET",
            f"{self.api_url}/b2api/{API_VERSION}/b2_authorize_account",
            auth=HTTPBasicAuth(credentials.key_id, credentials.application_key),
        )
        token = AuthorizationToken.from_dict(response.json())
        logger.debug("Authorized account %s against %s", token.account_id, token.api_url)
        return token

    def list_buckets(self, token: AuthorizationToken, bucket_name: Optional[str] = None) -> List[BucketInfo]:
        """List the account's buckets (b2_list_buckets)."""
        payload = {"accountId": token.account_id}
        if bucket_name:
            payload["bucketName"] = bucket_name
        data = self._call(token, "b2_list_buckets", payload)
        return [BucketInfo.from_dict(bucket) for bucket in data.get("buckets", [])]

    def get_upload_url(self, token: AuthorizationToken, bucket_id: str) -> UploadAuthorization:
        """Request a single-use upload URL (b2_get_upload_url)."""
        data = self._call(token, "b2_get_upload_url", {"bucketId": bucket_id})
        return UploadAuthorization.from_dict(data)

    def begin_upload(
        self,
        auth: UploadAuthorization,
        remote_key: str,
        file_size: int,
        connector: Optional[requests.Session] = None,
        content_type: str = "b2/x-auto",
    ) -> "UploadSession":
        """
        Open a streamed upload whose SHA-1 is sent after the content.

        Args:
            auth: Upload authorization obtained for this attempt
            remote_key: File name in the bucket
            file_size: Exact number of content bytes that will be written
            connector: HTTP session used for this upload only
            content_type: Content type stored with the file

        Returns:
            UploadSession accepting ``write`` calls and one ``finish``
        """
        headers = {
            "Authorization": auth.token,
            "X-Bz-File-Name": quote_file_name(remote_key),
            "Content-Type": content_type,
            "X-Bz-Content-Sha1": "hex_digits_at_end",
        }
        upload = UploadSession(
            api=self,
            connector=connector or self.session,
            url=auth.upload_url,
            headers=headers,
            content_length=file_size + SHA1_HEX_LENGTH,
            remote_key=remote_key,
        )
        upload.start()
        return upload

    def begin_download(
        self,
        auth: DownloadAuthorization,
        bucket_name: str,
        remote_key: str,
    ) -> "DownloadStream":
        """Open a streamed download of ``remote_key`` (download by name)."""
        url = build_download_url(auth.download_url, bucket_name, remote_key)
        response = self._request(
            "GET",
            url,
            headers={"Authorization": auth.token},
            stream=True,
        )
        return DownloadStream(response, remote_key)


class _BodyPipe:
    """Request body fed from another thread, read by the HTTP connection."""

    def __init__(self, length: int, timeout: float):
        self._length = length
        self._timeout = timeout
        self._queue: "queue.Queue[Optional[bytes]]" = queue.Queue(maxsize=UPLOAD_QUEUE_SIZE)
        self._buffer = b""
        self._eof = False
        # set once the connection is open and asks for the first block
        self.started = threading.Event()

    def __len__(self) -> int:
        return self._length

    def __iter__(self):
        while True:
            block = self.read(64 * 1024)
            if not block:
                return
            yield block

    def put(self, data: Optional[bytes], timeout: float) -> None:
        self._queue.put(data, timeout=timeout)

    def abort(self) -> None:
        """Drop buffered blocks and signal end of body to the reader."""
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._queue.put_nowait(None)

    def read(self, size: int = -1) -> bytes:
        self.started.set()
        while not self._eof and (size < 0 or len(self._buffer) < size):
            try:
                item = self._queue.get(timeout=self._timeout)
            except queue.Empty:
                raise TimeoutError(f"No upload data for {self._timeout}s") from None
            if item is None:
                self._eof = True
            else:
                self._buffer += item

        if size < 0:
            size = len(self._buffer)
        block, self._buffer = self._buffer[:size], self._buffer[size:]
        return block


class UploadSession:
    """
    One in-flight b2_upload_file request.

    The request runs on a background thread that reads from a bounded
    pipe; ``write`` feeds content into the pipe and ``finish`` appends the
    hex SHA-1, then waits for the service's answer.
    """

    def __init__(
        self,
        api: B2Api,
        connector: requests.Session,
        url: str,
        headers: Dict[str, str],
        content_length: int,
        remote_key: str,
    ):
        self._api = api
        self._connector = connector
        self._url = url
        self._headers = headers
        self._pipe = _BodyPipe(content_length, timeout=api.timeout)
        self._thread = threading.Thread(
            target=self._send,
            name=f"upload-{remote_key}",
            daemon=True,
        )
        self._response: Optional[requests.Response] = None
        self._error: Optional[BaseException] = None
        self.remote_key = remote_key
        self.bytes_written = 0
        self._content_length = content_length - SHA1_HEX_LENGTH

    def start(self) -> None:
        """
        Open the connection and send the request headers.

        Returns once the connection asks for the body, so that failures to
        reach the upload URL are raised here rather than by the first write.

        Raises:
            NetworkError: If the upload URL could not be reached
            ApiError: If the service answered before any content was sent
        """
        self._thread.start()
        while not self._pipe.started.wait(0.05):
            if not self._thread.is_alive():
                break

        if self._error is not None:
            raise self._error
        if not self._pipe.started.is_set():
            raise NetworkError(f"Upload connection for {self.remote_key} closed before sending")

    def _send(self) -> None:
        try:
            self._response = self._api._request(
                "POST",
                self._url,
                session=self._connector,
                headers=self._headers,
                data=self._pipe,
            )
        except TransferError as e:
            self._error = e
        except (Urllib3HTTPError, OSError) as e:
            self._error = NetworkError(f"Upload of {self.remote_key} interrupted: {e}")

    def _check_connection(self) -> None:
        if self._error is not None:
            raise self._error
        if not self._thread.is_alive():
            raise NetworkError(f"Upload connection for {self.remote_key} closed early")

    def _put(self, data: Optional[bytes]) -> None:
        while True:
            self._check_connection()
            try:
                self._pipe.put(data, timeout=0.5)
                return
            except queue.Full:
                continue

    def write(self, chunk: bytes) -> None:
        """Send the next block of content."""
        if self.bytes_written + len(chunk) > self._content_length:
            raise ValueError(
                f"Upload of {self.remote_key} exceeds the declared size of {self._content_length} bytes"
            )
        if chunk:
            self._put(bytes(chunk))
            self.bytes_written += len(chunk)

    def finish(self, hex_digest: str) -> RemoteFile:
        """
        Send the content SHA-1 and wait for the stored file's description.

        Raises:
            ApiError: If the service rejected the upload
            IntegrityError: If the service recorded a different SHA-1
        """
        if len(hex_digest) != SHA1_HEX_LENGTH:
            raise ValueError(f"Expected a {SHA1_HEX_LENGTH}-digit hex SHA-1, got {hex_digest!r}")
        if self.bytes_written != self._content_length:
            raise ValueError(
                f"Upload of {self.remote_key} wrote {self.bytes_written} of {self._content_length} bytes"
            )

        self._put(hex_digest.encode("ascii"))
        self._put(None)
        self._thread.join()

        if self._error is not None:
            raise self._error

        remote_file = RemoteFile.from_dict(self._response.json())
        if remote_file.content_sha1 and remote_file.content_sha1 != hex_digest:
            raise IntegrityError(
                f"Stored SHA-1 for {self.remote_key} does not match the uploaded content",
                expected_sha1=hex_digest,
                actual_sha1=remote_file.content_sha1,
            )
        return remote_file

    def abort(self) -> None:
        """Stop feeding the request after a failure on the writer's side."""
        if self._thread.is_alive():
            self._pipe.abort()


class DownloadStream:
    """Streamed body of a download-by-name response."""

    def __init__(self, response: requests.Response, remote_key: str):
        self._response = response
        self.remote_key = remote_key
        length = response.headers.get("Content-Length")
        self.content_length: Optional[int] = int(length) if length is not None else None
        self.content_sha1: Optional[str] = response.headers.get("X-Bz-Content-Sha1")

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; an empty result means end of stream."""
        try:
            return self._response.raw.read(size, decode_content=True)
        except (Urllib3HTTPError, requests.exceptions.RequestException, OSError) as e:
            raise NetworkError(f"Download of {self.remote_key} interrupted: {e}") from e

    def close(self) -> None:
        self._response.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
