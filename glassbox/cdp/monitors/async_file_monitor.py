"""
glassbox/cdp/monitors/async_file_monitor.py

Async file monitor for CDP.

Tracks every resource the page loads, saves attachment responses and explicit downloads to
a validated directory, and relays filesystem changes from a FilesystemWatcher.
"""

from __future__ import annotations

import asyncio
import base64
import os
import re
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import unquote, urlparse

from glassbox.cdp.bounded_store import BoundedStore
from glassbox.cdp.filesystem import FilesystemWatcher, ensure_directory, fetch_url_bytes, write_bytes
from glassbox.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from glassbox.config import Config
from glassbox.data_models.cdp import (
    BaseCDPEvent,
    FileDownload,
    FileResource,
    FilesystemChange,
    FilesystemChangeKind,
    ResourceKind,
    dump_events,
)
from glassbox.security.validators import (
    clamp_numeric_limit,
    require_valid,
    validate_file_path,
    validate_filename,
    validate_url,
)
from glassbox.utils.exceptions import InputValidationError, MonitorNotActiveError, UpstreamError
from glassbox.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from glassbox.cdp.async_cdp_session import AsyncCDPSession

logger = get_logger(name=__name__)

KB = 1024
MB = 1024 * KB


class AsyncFileMonitor(AbstractAsyncMonitor):
    """
    Async file monitor for CDP.
    Resources are kept in a store capped by estimated memory, not by count.
    """

    # Class attributes _____________________________________________________________________________________________________

    TOOL_PREFIX: ClassVar[str] = "file"
    DISPLAY_NAME: ClassVar[str] = "File tracking"

    MAX_RESOURCE_BYTES: ClassVar[int] = 50 * MB
    MAX_DOWNLOADS: ClassVar[int] = 1000
    MAX_FILESYSTEM_CHANGES: ClassVar[int] = 1000
    MAX_PENDING_RESOURCES: ClassVar[int] = 5000
    MAX_CAPTURED_CONTENT_CHARS: ClassVar[int] = 100_000
    CONTENT_PREVIEW_CHARS: ClassVar[int] = 200
    MAX_SIZE_FILTER: ClassVar[int] = 10 ** 12

    DOWNLOAD_RATE_LIMIT: ClassVar[tuple[int, float]] = (10, 60.0)
    FS_WATCH_RATE_LIMIT: ClassVar[tuple[int, float]] = (5, 60.0)

    TEXT_CONTENT_TYPES: ClassVar[tuple[str, ...]] = (
        "text/",
        "application/json",
        "application/javascript",
        "application/xml",
    )
    FILENAME_PATTERN: ClassVar[re.Pattern[str]] = re.compile(r'filename="?([^"]+)"?', re.IGNORECASE)


    # Abstract method implementations ______________________________________________________________________________________

    @classmethod
    def get_event_summary(cls, event: BaseCDPEvent) -> dict[str, Any]:
        """
        Extract a lightweight summary of a tracked resource, download or filesystem change.
        Args:
            event: A FileResource, FileDownload or FilesystemChange.
        Returns:
            A simplified dict with fields relevant for a quick overview.
        """
        return {
            "type": cls.get_monitor_category(),
            "kind": type(event).__name__,
            "url": (getattr(event, "url", None) or getattr(event, "path", "") or "")[:150],
            "byte_size": getattr(event, "byte_size", None),
        }

    def _reset_stores(self) -> None:
        self.resources.clear()
        self.downloads.clear()
        self.filesystem_changes.clear()
        self._pending.clear()

    def _get_counts(self) -> dict[str, int]:
        return {
            "resources": len(self.resources),
            "downloads": len(self.downloads),
            "filesystem_changes": len(self.filesystem_changes),
        }

    def _recent_events(self, n: int) -> list[BaseCDPEvent]:
        events: list[BaseCDPEvent] = [
            *self.resources.latest(n),
            *self.downloads.latest(n),
            *self.filesystem_changes.latest(n),
        ]
        events.sort(key=lambda event: event.timestamp)
        return events[-n:]

    def _register_listeners(self, session: AsyncCDPSession, generation: int) -> None:
        self._listen(session, generation, "Network.requestWillBeSent", self._on_request_will_be_sent)
        self._listen(session, generation, "Network.responseReceived", self._on_response_received)
        self._listen(
            session,
            generation,
            "Network.loadingFinished",
            lambda params: self._on_loading_finished(params, session, generation),
        )
        self._listen(session, generation, "Network.loadingFailed", self._on_loading_failed)

    async def _prepare_session(
        self,
        session: AsyncCDPSession,
        download_path: str | None = None,
        capture_content: bool = False,
        **options: Any,
    ) -> None:
        """Create the download directory and enable the Network domain."""
        directory = await asyncio.to_thread(ensure_directory, download_path or self.download_path)
        self.download_path = str(directory.resolve())
        self.capture_content = bool(capture_content)
        await session.enable_domain(domain="Network")
        logger.info("📁 Downloads go to %s (content capture %s)", self.download_path, self.capture_content)

    async def _before_stop(self) -> None:
        if self._watched_paths and self.watcher is not None:
            self.watcher.close()
        self._watched_paths = []

    def _stop_summary(self) -> dict[str, Any]:
        return {
            "total_resources": len(self.resources),
            "total_downloads": len(self.downloads),
            "total_size": sum(resource.byte_size for resource in self.resources),
        }


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, *args: Any, watcher: FilesystemWatcher | None = None, **kwargs: Any) -> None:
        """
        Initialize AsyncFileMonitor.
        Args:
            watcher: Filesystem watcher used by watch_filesystem(); watching is unavailable without one.
            Other arguments are passed to AbstractAsyncMonitor.
        """
        super().__init__(*args, **kwargs)
        self.watcher = watcher
        self.download_path: str = Config.DOWNLOAD_DIR
        self.capture_content: bool = False

        self.resources: BoundedStore[FileResource] = BoundedStore(max_bytes=self.MAX_RESOURCE_BYTES)
        self.downloads: BoundedStore[FileDownload] = BoundedStore(max_items=self.MAX_DOWNLOADS)
        self.filesystem_changes: BoundedStore[FilesystemChange] = BoundedStore(max_items=self.MAX_FILESYSTEM_CHANGES)

        # request_id -> request start time and, once the response arrived, its metadata
        self._pending: dict[str, dict[str, Any]] = {}
        self._watched_paths: list[str] = []


    # Static methods _______________________________________________________________________________________________________

    @staticmethod
    def get_load_time_category(load_time_ms: float) -> str:
        if load_time_ms < 100:
            return "Fast"
        if load_time_ms < 500:
            return "Medium"
        return "Slow"

    @staticmethod
    def get_size_category(byte_size: int) -> str:
        if byte_size < 10 * KB:
            return "Small"
        if byte_size < 100 * KB:
            return "Medium"
        if byte_size < MB:
            return "Large"
        return "Very Large"

    @staticmethod
    def get_optimization_suggestions(resource: FileResource) -> list[str]:
        """Suggest improvements for a resource based on its size, load time, caching and kind."""
        suggestions: list[str] = []
        if resource.byte_size > MB:
            suggestions.append("Consider compressing this resource (over 1MB)")
        if resource.load_time_ms > 1000:
            suggestions.append("Slow loading resource; consider a CDN or optimizing delivery")
        if not resource.from_cache and resource.kind not in (ResourceKind.XHR, ResourceKind.FETCH):
            suggestions.append("Consider adding cache headers")
        if resource.kind == ResourceKind.IMAGE and resource.byte_size > 500 * KB:
            suggestions.append("Consider serving the image as WebP or another modern format")
        if resource.kind == ResourceKind.SCRIPT and resource.byte_size > 100 * KB:
            suggestions.append("Consider code splitting for this large script")
        return suggestions

    @staticmethod
    def is_text_resource(content_type: str | None) -> bool:
        if not content_type:
            return False
        content_type = content_type.lower()
        return any(marker in content_type for marker in AsyncFileMonitor.TEXT_CONTENT_TYPES)

    @staticmethod
    def derive_filename(url: str, content_disposition: str | None = None) -> str:
        """
        Pick a file name from a Content-Disposition header, else the URL's last path segment.
        Returns:
            The raw (unsanitized) name, or "download" if neither source has one.
        """
        if content_disposition:
            match = AsyncFileMonitor.FILENAME_PATTERN.search(content_disposition)
            if match and match.group(1).strip():
                return match.group(1).strip()
        basename = os.path.basename(unquote(urlparse(url).path))
        return basename or "download"

    @staticmethod
    def _decode_body(body: str, base64_encoded: bool) -> bytes:
        return base64.b64decode(body) if base64_encoded else body.encode("utf-8")

    @staticmethod
    def _lookup_header(headers: dict[str, Any] | None, name: str) -> str | None:
        for key, value in (headers or {}).items():
            if str(key).lower() == name:
                return str(value)
        return None


    # Private methods ______________________________________________________________________________________________________

    def _display_resource(self, resource: FileResource) -> dict[str, Any]:
        data = resource.model_dump(mode="json")
        content = data.get("content")
        if content and len(content) > self.CONTENT_PREVIEW_CHARS:
            data["content"] = content[:self.CONTENT_PREVIEW_CHARS] + "..."
        data["size_category"] = self.get_size_category(resource.byte_size)
        data["load_time_category"] = self.get_load_time_category(resource.load_time_ms)
        return data

    def _on_request_will_be_sent(self, params: dict[str, Any]) -> None:
        """Handle Network.requestWillBeSent event."""
        request_id = params.get("requestId")
        if not request_id:
            return
        self._pending[request_id] = {"started": params.get("timestamp")}
        # drop the oldest entries of requests that never finished
        while len(self._pending) > self.MAX_PENDING_RESOURCES:
            self._pending.pop(next(iter(self._pending)), None)

    def _on_response_received(self, params: dict[str, Any]) -> None:
        """Handle Network.responseReceived event."""
        request_id = params.get("requestId")
        if not request_id:
            return
        response = params.get("response", {})
        headers = response.get("headers")
        meta = self._pending.setdefault(request_id, {"started": None})
        meta.update({
            "url": response.get("url", ""),
            "kind": ResourceKind.from_cdp(params.get("type")),
            "status": int(response.get("status", 0)),
            "mime_type": response.get("mimeType") or self._lookup_header(headers, "content-type"),
            "from_cache": bool(response.get("fromDiskCache") or response.get("fromServiceWorker")),
            "content_disposition": self._lookup_header(headers, "content-disposition"),
        })

    def _on_loading_failed(self, params: dict[str, Any]) -> None:
        """Handle Network.loadingFailed event."""
        self._pending.pop(params.get("requestId", ""), None)

    def _on_loading_finished(self, params: dict[str, Any], session: AsyncCDPSession, generation: int) -> Any:
        """
        Handle Network.loadingFinished event.
        Returns a coroutine (scheduled by the session) when the body still has to be fetched.
        """
        meta = self._pending.pop(params.get("requestId", ""), None)
        if not meta or "url" not in meta or meta["url"].startswith("data:"):
            return None

        load_time_ms = 0.0
        if meta.get("started") is not None and params.get("timestamp") is not None:
            load_time_ms = max(0.0, (params["timestamp"] - meta["started"]) * 1000)

        resource = FileResource(
            request_id=params["requestId"],
            url=meta["url"],
            kind=meta["kind"],
            byte_size=int(params.get("encodedDataLength", 0)),
            load_time_ms=load_time_ms,
            from_cache=meta["from_cache"],
            status=meta["status"],
            mime_type=meta["mime_type"],
        )
        is_attachment = "attachment" in (meta.get("content_disposition") or "").lower()
        wants_content = self.capture_content and self.is_text_resource(resource.mime_type)
        if not is_attachment and not wants_content:
            self.resources.append(resource)
            return None
        return self._finish_resource(session, generation, resource, meta.get("content_disposition"), wants_content)

    async def _finish_resource(
        self,
        session: AsyncCDPSession,
        generation: int,
        resource: FileResource,
        content_disposition: str | None,
        wants_content: bool,
    ) -> None:
        """Fetch the body of a finished resource, then store it and/or save it as a download."""
        try:
            body, base64_encoded = await session.get_response_body(resource.request_id)
        except Exception as e:
            logger.debug("⚠️ No body for %s: %s", resource.url, e)
            body, base64_encoded = None, False

        if not self._is_current(generation):
            return
        if wants_content and body is not None:
            text = base64.b64decode(body).decode("utf-8", errors="replace") if base64_encoded else body
            resource = resource.model_copy(update={"content": text[:self.MAX_CAPTURED_CONTENT_CHARS]})
        self.resources.append(resource)

        if body is not None and content_disposition and "attachment" in content_disposition.lower():
            name = self.derive_filename(resource.url, content_disposition)
            validation = validate_filename(name)
            if not validation.is_valid:
                logger.warning("⚠️ Skipping attachment %s: %s", resource.url, validation.error_reason)
                return
            try:
                await self._save_download(
                    generation=generation,
                    url=resource.url,
                    filename=validation.sanitized_value,
                    data=self._decode_body(body, base64_encoded),
                    mime_type=resource.mime_type,
                )
            except (UpstreamError, MonitorNotActiveError) as e:
                logger.warning("⚠️ Could not save attachment %s: %s", resource.url, e)

    async def _save_download(
        self,
        generation: int,
        url: str,
        filename: str,
        data: bytes,
        mime_type: str | None,
    ) -> FileDownload:
        """Write data into the download directory and record it for generation."""
        if not self._is_current(generation):
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} stopped before {filename} was saved")
        destination = Path(self.download_path) / filename
        written = await self._call_upstream("Writing download", asyncio.to_thread(write_bytes, destination, data))
        if not self._is_current(generation):
            logger.warning("⚠️ Tracking restarted while saving %s; download not recorded", destination)
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} stopped while saving {filename}")
        download = FileDownload(
            filename=filename,
            url=url,
            byte_size=written,
            destination_path=str(destination),
            mime_type=mime_type,
        )
        self.downloads.append(download)
        logger.info("💾 Saved %s (%d bytes)", destination, written)
        return download

    async def _read_body(self, session: AsyncCDPSession, url: str) -> tuple[bytes, str | None, str | None]:
        """Body of url from the browser if it was tracked, otherwise fetched directly."""
        tracked = self._find_resource(url)
        if tracked is not None:
            try:
                body, base64_encoded = await session.get_response_body(tracked.request_id)
                return self._decode_body(body, base64_encoded), tracked.mime_type, None
            except Exception as e:
                logger.debug("⚠️ Browser no longer holds the body of %s, fetching it: %s", url, e)
        fetched = await self._call_upstream("Download", asyncio.to_thread(fetch_url_bytes, url))
        return fetched.data, fetched.content_type, fetched.content_disposition

    def _find_resource(self, url: str) -> FileResource | None:
        return self.resources.find(lambda resource: resource.url == url)

    def _filesystem_callback(self, generation: int) -> Any:
        def callback(kind: FilesystemChangeKind, path: str, byte_size: int | None = None) -> None:
            if not self._is_current(generation):
                return
            self.filesystem_changes.append(
                FilesystemChange(kind=FilesystemChangeKind(kind), path=path, byte_size=byte_size)
            )
        return callback


    # Public methods _______________________________________________________________________________________________________

    async def start(
        self,
        url: str,
        headless: bool | None = None,
        download_path: Any = None,
        capture_content: bool = False,
        **options: Any,
    ) -> dict[str, Any]:
        """
        Start tracking resources of url.
        Args:
            url: Page to open; must pass validate_url.
            headless: Override for an auto-launched browser's headless mode.
            download_path: Directory for downloads (must pass validate_file_path); defaults to Config.DOWNLOAD_DIR.
            capture_content: Keep the text content of text resources.
        """
        # a restart stops the old session before any input is validated
        await self._stop_if_running()
        validated_path = require_valid(validate_file_path(download_path or Config.DOWNLOAD_DIR), "download path")
        return await super().start(
            url,
            headless=headless,
            download_path=validated_path,
            capture_content=capture_content,
            **options,
        )

    def get_resources(
        self,
        type: str | None = None,
        min_size: Any = None,
        max_size: Any = None,
        limit: Any = 100,
    ) -> dict[str, Any]:
        """
        Return tracked resources and statistics over the filtered set.
        Args:
            type: Resource kind to keep (e.g. "script", "image"), or None for all.
            min_size: Minimum byte size.
            max_size: Maximum byte size.
            limit: Maximum number of resources listed (clamped to 1..10000).
        """
        if type is not None and type not in {kind.value for kind in ResourceKind}:
            raise InputValidationError(f"Invalid resource type: {type}. Expected one of {[k.value for k in ResourceKind]}")
        max_results = clamp_numeric_limit(limit, minimum=1, maximum=10_000)

        resources = self.resources.snapshot()
        if type is not None:
            resources = [resource for resource in resources if resource.kind == type]
        if min_size is not None:
            lower = clamp_numeric_limit(min_size, minimum=0, maximum=self.MAX_SIZE_FILTER)
            resources = [resource for resource in resources if resource.byte_size >= lower]
        if max_size is not None:
            upper = clamp_numeric_limit(max_size, minimum=0, maximum=self.MAX_SIZE_FILTER)
            resources = [resource for resource in resources if resource.byte_size <= upper]

        total_size = sum(resource.byte_size for resource in resources)
        cached = sum(1 for resource in resources if resource.from_cache)
        return {
            "is_monitoring": self.is_active,
            "total_tracked": len(self.resources),
            "filtered_count": len(resources),
            "total_size": total_size,
            "avg_size": total_size / len(resources) if resources else 0,
            "type_breakdown": dict(Counter(resource.kind.value for resource in resources)),
            "cache_hit_rate": (cached / len(resources) * 100) if resources else 0.0,
            "resources": [self._display_resource(resource) for resource in resources[-max_results:]],
        }

    def get_downloads(self, limit: Any = 50) -> dict[str, Any]:
        """Return the most recent downloads."""
        recent = self.downloads.latest(clamp_numeric_limit(limit, minimum=1, maximum=self.MAX_DOWNLOADS))
        return {
            "total_downloads": len(self.downloads),
            "download_path": self.download_path,
            "recent_downloads": dump_events(recent),
            "total_size": sum(download.byte_size for download in self.downloads),
        }

    def analyze_resource(self, url: Any) -> dict[str, Any]:
        """
        Categorize the most recent resource loaded from url and suggest optimizations.
        Raises:
            InputValidationError: If url is not a string or no such resource was tracked.
        """
        if not isinstance(url, str) or not url:
            raise InputValidationError("Invalid URL: URL must be a non-empty string")
        resource = self._find_resource(url)
        if resource is None:
            raise InputValidationError("Resource not found. Make sure file tracking captured it.")
        return {
            "resource": self._display_resource(resource),
            "analysis": {
                "size_category": self.get_size_category(resource.byte_size),
                "load_time_category": self.get_load_time_category(resource.load_time_ms),
                "cached": resource.from_cache,
                "kind": resource.kind.value,
                "optimization_suggestions": self.get_optimization_suggestions(resource),
            },
        }

    async def download_resource(self, url: Any, filename: Any = None) -> dict[str, Any]:
        """
        Save a resource into the download directory.
        Args:
            url: Resource URL; must pass validate_url.
            filename: Target file name (must pass validate_filename); derived from the response or URL if omitted.
        """
        session = self._require_active()
        generation = self._active_generation
        validated_url = require_valid(validate_url(url), "URL")
        if filename is not None:
            filename = require_valid(validate_filename(filename), "filename")
        self._check_rate("file_download", *self.DOWNLOAD_RATE_LIMIT)

        data, content_type, content_disposition = await self._read_body(session, validated_url)
        if filename is None:
            filename = require_valid(
                validate_filename(self.derive_filename(validated_url, content_disposition)),
                "filename",
            )
        download = await self._save_download(
            generation=generation,
            url=validated_url,
            filename=filename,
            data=data,
            mime_type=content_type,
        )
        return {
            "message": f"Downloaded {download.filename} ({download.byte_size} bytes)",
            "download": download.model_dump(mode="json"),
        }

    def watch_filesystem(self, paths: Any) -> dict[str, Any]:
        """
        Start relaying filesystem changes under paths.
        Args:
            paths: List of paths; each must pass validate_file_path.
        """
        self._require_active()
        if isinstance(paths, str):
            paths = [paths]
        if not isinstance(paths, list) or not paths:
            raise InputValidationError("Invalid paths: expected a non-empty list of paths")
        validated = [require_valid(validate_file_path(path), "path") for path in paths]
        if self.watcher is None:
            raise UpstreamError("Filesystem watching is not available")
        self._check_rate("fs_watch", *self.FS_WATCH_RATE_LIMIT)

        try:
            self.watcher.watch(validated, self._filesystem_callback(self._active_generation))
        except Exception as e:
            logger.error("❌ Filesystem watch failed: %s", e, exc_info=True)
            raise UpstreamError("Filesystem watch failed") from e

        self._watched_paths.extend(path for path in validated if path not in self._watched_paths)
        logger.info("👀 Watching %d path(s)", len(validated))
        return {
            "message": f"Watching {len(validated)} path(s)",
            "watched_paths": list(self._watched_paths),
        }

    def get_filesystem_changes(self, limit: Any = 100) -> dict[str, Any]:
        """Return the most recent filesystem changes."""
        recent = self.filesystem_changes.latest(
            clamp_numeric_limit(limit, minimum=1, maximum=self.MAX_FILESYSTEM_CHANGES)
        )
        return {
            "total_changes": len(self.filesystem_changes),
            "watched_paths": list(self._watched_paths),
            "changes": dump_events(recent),
        }

    def clear_tracking_data(self) -> dict[str, Any]:
        """Empty resources, downloads and filesystem changes."""
        previous = self.clear()
        return {"message": "File tracking data cleared", "previous_counts": previous}
