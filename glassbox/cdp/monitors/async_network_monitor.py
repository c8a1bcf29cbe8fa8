"""
glassbox/cdp/monitors/async_network_monitor.py

Async network monitor for CDP.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, ClassVar

from glassbox.cdp.bounded_store import BoundedStore
from glassbox.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from glassbox.data_models.cdp import (
    BaseCDPEvent,
    NetworkFailure,
    NetworkRequest,
    NetworkResponse,
    dump_events,
)
from glassbox.security.validators import clamp_numeric_limit, require_valid, validate_url
from glassbox.utils.exceptions import InputValidationError, MonitorNotActiveError
from glassbox.utils.js_utils import generate_navigation_timing_js
from glassbox.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from glassbox.cdp.async_cdp_session import AsyncCDPSession, EventPredicate

logger = get_logger(name=__name__)


class AsyncNetworkMonitor(AbstractAsyncMonitor):
    """
    Async Network monitor for CDP.
    Captures requests, responses and failures into three count-capped stores.
    """

    # Class attributes _____________________________________________________________________________________________________

    TOOL_PREFIX: ClassVar[str] = "network"
    DISPLAY_NAME: ClassVar[str] = "Network monitoring"

    MAX_ITEMS_PER_STORE: ClassVar[int] = 1000
    MAX_PENDING_REQUESTS: ClassVar[int] = 5000
    NAVIGATE_RATE_LIMIT: ClassVar[tuple[int, float]] = (30, 60.0)

    SENSITIVE_HEADERS: ClassVar[frozenset[str]] = frozenset({
        "authorization",
        "cookie",
        "x-api-key",
        "x-auth-token",
    })
    REDACTED: ClassVar[str] = "[REDACTED]"

    INTERNAL_URL_PREFIXES: ClassVar[tuple[str, ...]] = ("chrome://", "devtools://", "chrome-extension://")

    ACTIVITY_FILTERS: ClassVar[tuple[str, ...]] = ("all", "requests", "responses", "failures")

    # wait_until -> (CDP event, lifecycle event name or None)
    WAIT_UNTIL_EVENTS: ClassVar[dict[str, tuple[str, str | None]]] = {
        "load": ("Page.loadEventFired", None),
        "domcontentloaded": ("Page.domContentEventFired", None),
        "networkidle0": ("Page.lifecycleEvent", "networkIdle"),
        "networkidle2": ("Page.lifecycleEvent", "networkAlmostIdle"),
    }


    # Abstract method implementations ______________________________________________________________________________________

    @classmethod
    def get_event_summary(cls, event: BaseCDPEvent) -> dict[str, Any]:
        """
        Extract a lightweight summary of a network event.
        Args:
            event: A NetworkRequest, NetworkResponse or NetworkFailure.
        Returns:
            A simplified dict with fields relevant for a quick overview.
        """
        return {
            "type": cls.get_monitor_category(),
            "kind": type(event).__name__,
            "method": getattr(event, "method", None),
            "url": (getattr(event, "url", "") or "")[:150],
            "status": getattr(event, "status", None),
            "failed": isinstance(event, NetworkFailure),
        }

    def _reset_stores(self) -> None:
        self.requests.clear()
        self.responses.clear()
        self.failures.clear()
        self._request_meta.clear()
        self._response_index.clear()

    def _get_counts(self) -> dict[str, int]:
        return {
            "requests": len(self.requests),
            "responses": len(self.responses),
            "failures": len(self.failures),
        }

    def _recent_events(self, n: int) -> list[BaseCDPEvent]:
        events: list[BaseCDPEvent] = [*self.requests.latest(n), *self.responses.latest(n), *self.failures.latest(n)]
        events.sort(key=lambda event: event.timestamp)
        return events[-n:]

    def _register_listeners(self, session: AsyncCDPSession, generation: int) -> None:
        self._listen(session, generation, "Network.requestWillBeSent", self._on_request_will_be_sent)
        self._listen(session, generation, "Network.responseReceived", self._on_response_received)
        self._listen(session, generation, "Network.loadingFinished", self._on_loading_finished)
        self._listen(session, generation, "Network.loadingFailed", self._on_loading_failed)
        self._listen(
            session,
            generation,
            "Fetch.requestPaused",
            lambda params: self._safe_continue_request(params.get("requestId"), session),
        )

    async def _prepare_session(self, session: AsyncCDPSession, intercept_requests: bool = False, **options: Any) -> None:
        """Enable Network (and Fetch interception if asked) before the first navigation."""
        await session.enable_domain(domain="Network", params={"maxPostDataSize": 65_536})
        await session.send_and_wait(method="Page.setLifecycleEventsEnabled", params={"enabled": True})
        if intercept_requests:
            await session.enable_domain(
                domain="Fetch",
                params={"patterns": [{"urlPattern": "*", "requestStage": "Request"}]},
            )
            logger.debug("✅ Fetch interception enabled")


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        """
        Initialize AsyncNetworkMonitor. Arguments are passed to AbstractAsyncMonitor.
        """
        super().__init__(*args, **kwargs)
        self.requests: BoundedStore[NetworkRequest] = BoundedStore(max_items=self.MAX_ITEMS_PER_STORE)
        self.responses: BoundedStore[NetworkResponse] = BoundedStore(max_items=self.MAX_ITEMS_PER_STORE)
        self.failures: BoundedStore[NetworkFailure] = BoundedStore(max_items=self.MAX_ITEMS_PER_STORE)

        # request_id -> {"url", "ts"} for requests without a final event yet
        self._request_meta: dict[str, dict[str, Any]] = {}
        # request_id -> stored response, so loadingFinished can fill in the size
        self._response_index: dict[str, NetworkResponse] = {}


    # Static methods _______________________________________________________________________________________________________

    @staticmethod
    def _is_internal_url(url: str | None) -> bool:
        if not url:
            return False
        return url.startswith(AsyncNetworkMonitor.INTERNAL_URL_PREFIXES)

    @staticmethod
    def _redact_headers(headers: dict[str, Any] | None) -> dict[str, str]:
        """
        Stringify header values and mask credentials.
        Args:
            headers: Raw CDP headers object.
        Returns:
            Headers with sensitive values replaced by REDACTED.
        """
        redacted: dict[str, str] = {}
        for name, value in (headers or {}).items():
            if str(name).lower() in AsyncNetworkMonitor.SENSITIVE_HEADERS:
                redacted[name] = AsyncNetworkMonitor.REDACTED
            else:
                redacted[name] = str(value)
        return redacted

    @staticmethod
    def _average_response_time(responses: list[NetworkResponse]) -> float:
        durations = [response.duration_ms for response in responses if response.duration_ms is not None]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)


    # Private methods ______________________________________________________________________________________________________

    def _remember_request(self, request_id: str, url: str, ts: float | None) -> None:
        self._request_meta[request_id] = {"url": url, "ts": ts}
        # drop the oldest entries of requests that never finished
        while len(self._request_meta) > self.MAX_PENDING_REQUESTS:
            oldest = next(iter(self._request_meta))
            self._request_meta.pop(oldest, None)
            self._response_index.pop(oldest, None)

    def _on_request_will_be_sent(self, params: dict[str, Any]) -> None:
        """Handle Network.requestWillBeSent event."""
        request = params.get("request", {})
        url = request.get("url", "")
        if self._is_internal_url(url):
            return
        request_id = params.get("requestId", "")
        self._remember_request(request_id, url, params.get("timestamp"))
        self.requests.append(
            NetworkRequest(
                request_id=request_id,
                url=url,
                method=request.get("method", "GET"),
                headers=self._redact_headers(request.get("headers")),
                post_data=request.get("postData"),
                resource_type=(params.get("type") or "other").lower(),
            )
        )

    def _on_response_received(self, params: dict[str, Any]) -> None:
        """Handle Network.responseReceived event."""
        response = params.get("response", {})
        url = response.get("url", "")
        if self._is_internal_url(url):
            return
        request_id = params.get("requestId", "")

        duration_ms: float | None = None
        meta = self._request_meta.get(request_id)
        if meta and meta.get("ts") is not None and params.get("timestamp") is not None:
            duration_ms = max(0.0, (params["timestamp"] - meta["ts"]) * 1000)

        entry = NetworkResponse(
            request_id=request_id,
            url=url,
            status=int(response.get("status", 0)),
            status_text=response.get("statusText", "") or "",
            headers=self._redact_headers(response.get("headers")),
            duration_ms=duration_ms,
            from_cache=bool(response.get("fromDiskCache") or response.get("fromServiceWorker")),
            mime_type=response.get("mimeType", "") or "",
        )
        self.responses.append(entry)
        self._response_index[request_id] = entry

    def _on_loading_finished(self, params: dict[str, Any]) -> None:
        """Handle Network.loadingFinished event."""
        request_id = params.get("requestId", "")
        self._request_meta.pop(request_id, None)
        entry = self._response_index.pop(request_id, None)
        if entry is not None:
            entry.size = int(params.get("encodedDataLength", 0))

    def _on_loading_failed(self, params: dict[str, Any]) -> None:
        """Handle Network.loadingFailed event."""
        request_id = params.get("requestId", "")
        meta = self._request_meta.pop(request_id, None) or {}
        self._response_index.pop(request_id, None)
        url = meta.get("url", "")
        if self._is_internal_url(url):
            return
        logger.debug("❌ Network.loadingFailed: request_id=%s, error=%s", request_id, params.get("errorText"))
        self.failures.append(
            NetworkFailure(
                request_id=request_id,
                url=url,
                error_text=params.get("errorText") or "Unknown error",
            )
        )

    async def _safe_continue_request(self, rid: str | None, session: AsyncCDPSession) -> None:
        """Safely continue a paused Fetch request."""
        if not rid:
            return
        try:
            await session.send("Fetch.continueRequest", {"requestId": rid})
        except Exception as e:
            logger.warning("⚠️ Failed to continue Fetch request %s: %s", rid, e)


    # Public methods _______________________________________________________________________________________________________

    def get_activity(self, filter: str = "all", resource_type: str | None = None, limit: Any = 100) -> dict[str, Any]:
        """
        Return captured network activity.
        Args:
            filter: "all", "requests", "responses" or "failures".
            resource_type: Keep only requests of this type (and the responses answering them).
            limit: Maximum number of items per category (clamped to 1..10000).
        """
        if filter not in self.ACTIVITY_FILTERS:
            raise InputValidationError(f"Invalid filter: {filter}. Expected one of {list(self.ACTIVITY_FILTERS)}")
        max_results = clamp_numeric_limit(limit, minimum=1, maximum=10_000)

        requests = self.requests.snapshot()
        responses = self.responses.snapshot()
        failures = self.failures.snapshot()
        if resource_type:
            wanted = str(resource_type).lower()
            requests = [request for request in requests if request.resource_type == wanted]
            request_ids = {request.request_id for request in requests}
            responses = [response for response in responses if response.request_id in request_ids]

        result: dict[str, Any] = {
            "is_monitoring": self.is_active,
            "total_requests": len(self.requests),
            "total_responses": len(self.responses),
            "total_failures": len(self.failures),
        }
        if filter in ("all", "requests"):
            result["requests"] = dump_events(requests[-max_results:])
        if filter in ("all", "responses"):
            result["responses"] = dump_events(responses[-max_results:])
        if filter in ("all", "failures"):
            result["failures"] = dump_events(failures[-max_results:])
        return result

    async def get_performance_metrics(self) -> dict[str, Any]:
        """Return browser performance counters, navigation timing and request statistics."""
        session = self._require_active()

        async def collect() -> tuple[dict[str, float], dict[str, Any]]:
            await session.enable_domain("Performance")
            metrics_reply = await session.send_and_wait(method="Performance.getMetrics") or {}
            metrics = {item["name"]: item["value"] for item in metrics_reply.get("metrics", []) if "name" in item}
            timing = await session.evaluate(
                generate_navigation_timing_js(),
                timeout=self.session_manager.config.script_timeout,
            )
            return metrics, timing or {}

        metrics, timing = await self._call_upstream("Reading performance metrics", collect())

        def span(end: str, start: str) -> float | None:
            if timing.get(end) is None or timing.get(start) is None:
                return None
            return timing[end] - timing[start]

        return {
            "browser_metrics": metrics,
            "navigation_timing": timing,
            "derived_metrics": {
                "dns_lookup": span("domainLookupEnd", "domainLookupStart"),
                "tcp_connect": span("connectEnd", "connectStart"),
                "ttfb": span("responseStart", "requestStart"),
                "page_load": span("loadEventEnd", "navigationStart"),
                "dom_content_loaded": span("domContentLoadedEventEnd", "navigationStart"),
            },
            "network_activity": {
                "total_requests": len(self.requests),
                "total_responses": len(self.responses),
                "total_failures": len(self.failures),
                "avg_response_time_ms": self._average_response_time(self.responses.snapshot()),
            },
        }

    async def navigate(self, url: Any, wait_until: str = "load") -> dict[str, Any]:
        """
        Navigate the monitored page while capture continues.
        Args:
            url: Destination; must pass validate_url.
            wait_until: "load", "domcontentloaded", "networkidle0" or "networkidle2".
        """
        session = self._require_active()
        generation = self._active_generation
        validated_url = require_valid(validate_url(url), "URL")
        if wait_until not in self.WAIT_UNTIL_EVENTS:
            raise InputValidationError(
                f"Invalid wait condition: {wait_until}. Expected one of {list(self.WAIT_UNTIL_EVENTS)}"
            )
        self._check_rate(f"{self.TOOL_PREFIX}:navigate", *self.NAVIGATE_RATE_LIMIT)

        wait_event, lifecycle_name = self.WAIT_UNTIL_EVENTS[wait_until]
        predicate: EventPredicate | None = None
        if lifecycle_name:
            predicate = lambda params: params.get("name") == lifecycle_name  # noqa: E731

        started = time.monotonic()
        page_loaded = await self._call_upstream(
            "Navigation",
            session.navigate(
                url=validated_url,
                wait_event=wait_event,
                wait_predicate=predicate,
                timeout=self.session_manager.config.navigation_timeout,
            ),
        )
        load_time_ms = (time.monotonic() - started) * 1000
        if generation is None or not self._is_current(generation):
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} stopped while navigating")
        self.current_url = validated_url
        return {
            "message": f"Navigated to {validated_url} in {load_time_ms:.0f}ms",
            "url": validated_url,
            "wait_until": wait_until,
            "load_time_ms": load_time_ms,
            "page_loaded": page_loaded,
        }

    def clear_activity(self) -> dict[str, Any]:
        """Empty all three stores."""
        previous = self.clear()
        return {"message": "Network activity cleared", "previous_counts": previous}
