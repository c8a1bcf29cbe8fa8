"""
glassbox/cdp/filesystem.py

Filesystem boundary used by the file monitor: writing downloads, fetching URLs directly and
the FilesystemWatcher interface.

All functions here block; the file monitor runs them through asyncio.to_thread().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import requests

from glassbox.data_models.cdp import FilesystemChangeKind

MAX_FETCH_BYTES = 100 * 1024 * 1024

FilesystemChangeCallback = Callable[[FilesystemChangeKind, str, int | None], None]


@dataclass
class FetchedBody:
    """Body and headers of a URL fetched outside the browser."""
    data: bytes
    content_type: str | None
    content_disposition: str | None


def ensure_directory(path: str | Path) -> Path:
    """Create a directory (and parents) if missing and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_bytes(path: str | Path, data: bytes) -> int:
    """
    Write a byte buffer to path, creating parent directories.
    Returns:
        Number of bytes written.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "wb") as f:
        f.write(data)
    return len(data)


def fetch_url_bytes(url: str, timeout: float = 60.0, max_bytes: int = MAX_FETCH_BYTES) -> FetchedBody:
    """
    Download a URL with requests, streaming in chunks.
    Args:
        url: Already-validated URL.
        timeout: Request timeout in seconds.
        max_bytes: Abort once the body grows past this many bytes.
    Raises:
        requests.RequestException: On HTTP or transport failure.
        ValueError: If the body exceeds max_bytes.
    """
    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        chunks: list[bytes] = []
        downloaded = 0
        for chunk in response.iter_content(chunk_size=8192):
            downloaded += len(chunk)
            if downloaded > max_bytes:
                raise ValueError(f"Response body exceeds {max_bytes} bytes")
            chunks.append(chunk)
        return FetchedBody(
            data=b"".join(chunks),
            content_type=response.headers.get("content-type"),
            content_disposition=response.headers.get("content-disposition"),
        )


class FilesystemWatcher(ABC):
    """
    Interface for something that reports create/modify/delete events for a set of paths.
    Implementations call the callback with (kind, path, byte_size) from the event loop thread.
    """

    @abstractmethod
    def watch(self, paths: list[str], callback: FilesystemChangeCallback) -> None:
        """Start reporting changes under paths."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop reporting and release resources. Must be safe to call more than once."""
        pass
