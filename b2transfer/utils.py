"""
Utility functions for b2transfer.

This module provides helpers for chunked file reading, file name encoding
and human-readable sizes.
"""

import math
from typing import Iterator, BinaryIO
from urllib.parse import quote

DEFAULT_CHUNK_SIZE = 4096


def chunk_file(file_obj: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """
    Read file in chunks.

    Args:
        file_obj: File object (or any object with ``read(size)``) to read from
        chunk_size: Size of each chunk in bytes

    Yields:
        Chunks as bytes, in file order, until a read returns nothing
    """
    while True:
        chunk = file_obj.read(chunk_size)
        if not chunk:
            break
        yield chunk


def quote_file_name(file_name: str) -> str:
    """
    Percent-encode a file name the way B2 expects in headers and URLs.

    Slashes are kept, since they separate "folders" in a bucket.
    """
    return quote(file_name, safe="/")


def build_download_url(download_url: str, bucket_name: str, remote_key: str) -> str:
    """
    Build the download-by-name URL of a file.

    Args:
        download_url: Base download endpoint of the account
        bucket_name: Name of the bucket holding the file
        remote_key: File name inside the bucket

    Returns:
        URL of the form ``<download_url>/file/<bucket>/<key>``
    """
    return f"{download_url.rstrip('/')}/file/{bucket_name}/{quote_file_name(remote_key)}"


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB")
    """
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB", "PB"]
    i = int(math.floor(math.log(size_bytes, 1024)))

    if i >= len(size_names):
        i = len(size_names) - 1

    p = math.pow(1024, i)
    size = round(size_bytes / p, 2)

    return f"{size} {size_names[i]}"


def calculate_transfer_speed(bytes_transferred: int, elapsed_time: float) -> float:
    """Transfer speed in bytes per second."""
    if elapsed_time <= 0:
        return 0
    return bytes_transferred / elapsed_time
