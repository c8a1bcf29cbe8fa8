"""
tests/unit/cdp/test_network_monitor.py

Tests for AsyncNetworkMonitor.
"""

import asyncio
from typing import Any

import pytest

from glassbox.cdp.monitors import AsyncNetworkMonitor
from glassbox.data_models.browser import BrowserConnectionConfig
from glassbox.data_models.cdp import NetworkFailure, NetworkRequest
from glassbox.security.rate_limiter import MonitorContext
from glassbox.utils.exceptions import (
    InputValidationError,
    MonitorNotActiveError,
    RateLimitedError,
    UpstreamError,
)


def request_event(
    request_id: str,
    url: str,
    timestamp: float = 100.0,
    resource_type: str = "Script",
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "requestId": request_id,
        "timestamp": timestamp,
        "type": resource_type,
        "request": {"url": url, "method": "GET", "headers": headers or {}},
    }


def response_event(request_id: str, url: str, timestamp: float = 100.25, status: int = 200) -> dict[str, Any]:
    return {
        "requestId": request_id,
        "timestamp": timestamp,
        "response": {
            "url": url,
            "status": status,
            "statusText": "OK",
            "headers": {"Content-Type": "application/javascript", "Set-Cookie": "a=b"},
            "mimeType": "application/javascript",
        },
    }


@pytest.fixture
def network_monitor(
    monitor_context: MonitorContext,
    browser_config: BrowserConnectionConfig,
    session_factory: Any,
) -> AsyncNetworkMonitor:
    return AsyncNetworkMonitor(context=monitor_context, config=browser_config, session_factory=session_factory)


class TestNetworkCapture:
    """
    Tests for request / response / failure capture.
    """

    @pytest.mark.asyncio
    async def test_start_enables_network(
        self,
        network_monitor: AsyncNetworkMonitor,
        fake_sessions: list[Any],
    ) -> None:
        """Network is enabled and lifecycle events are turned on; Fetch only when intercepting."""
        await network_monitor.start("https://example.com")
        session = fake_sessions[0]
        assert "Network" in session.enabled_domains
        assert "Fetch" not in session.enabled_domains
        assert "Page.setLifecycleEventsEnabled" in session.sent_methods()

    @pytest.mark.asyncio
    async def test_request_headers_redacted(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """Credentials never reach the store; other headers are kept as strings."""
        await network_monitor.start("https://example.com")
        await fake_sessions[0].emit(
            "Network.requestWillBeSent",
            request_event(
                "r1",
                "https://api.example.com/data",
                headers={"Authorization": "Bearer secret", "Cookie": "sid=1", "Accept": "*/*", "X-Api-Key": "k"},
            ),
        )

        request = network_monitor.requests.latest(1)[0]
        assert isinstance(request, NetworkRequest)
        assert request.headers == {
            "Authorization": "[REDACTED]",
            "Cookie": "[REDACTED]",
            "Accept": "*/*",
            "X-Api-Key": "[REDACTED]",
        }
        assert request.resource_type == "script"

    @pytest.mark.asyncio
    async def test_response_duration_and_size(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """Duration comes from the request timestamp; size is filled in by loadingFinished."""
        await network_monitor.start("https://example.com")
        session = fake_sessions[0]
        await session.emit("Network.requestWillBeSent", request_event("r1", "https://example.com/app.js", timestamp=100.0))
        await session.emit("Network.responseReceived", response_event("r1", "https://example.com/app.js", timestamp=100.25))
        await session.emit("Network.loadingFinished", {"requestId": "r1", "encodedDataLength": 2048})

        response = network_monitor.responses.latest(1)[0]
        assert response.duration_ms == pytest.approx(250.0)
        assert response.status == 200
        assert response.size == 2048
        assert network_monitor._request_meta == {}

    @pytest.mark.asyncio
    async def test_response_without_request_has_no_duration(
        self,
        network_monitor: AsyncNetworkMonitor,
        fake_sessions: list[Any],
    ) -> None:
        """A response whose request was never seen is kept with duration None."""
        await network_monitor.start("https://example.com")
        await fake_sessions[0].emit("Network.responseReceived", response_event("orphan", "https://example.com/x"))
        assert network_monitor.responses.latest(1)[0].duration_ms is None

    @pytest.mark.asyncio
    async def test_failures_recorded_with_request_url(
        self,
        network_monitor: AsyncNetworkMonitor,
        fake_sessions: list[Any],
    ) -> None:
        """loadingFailed uses the URL remembered from the request."""
        await network_monitor.start("https://example.com")
        session = fake_sessions[0]
        await session.emit("Network.requestWillBeSent", request_event("r2", "https://cdn.example.com/lib.js"))
        await session.emit("Network.loadingFailed", {"requestId": "r2", "errorText": "net::ERR_NAME_NOT_RESOLVED"})

        failure = network_monitor.failures.latest(1)[0]
        assert isinstance(failure, NetworkFailure)
        assert failure.url == "https://cdn.example.com/lib.js"
        assert failure.error_text == "net::ERR_NAME_NOT_RESOLVED"

    @pytest.mark.asyncio
    async def test_internal_urls_ignored(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """Browser-internal traffic is not captured."""
        await network_monitor.start("https://example.com")
        session = fake_sessions[0]
        await session.emit("Network.requestWillBeSent", request_event("i1", "chrome://settings"))
        await session.emit("Network.responseReceived", response_event("i1", "devtools://devtools/inspector.html"))

        assert network_monitor.get_activity()["total_requests"] == 0
        assert network_monitor.get_activity()["total_responses"] == 0

    @pytest.mark.asyncio
    async def test_fetch_interception_continues_requests(
        self,
        network_monitor: AsyncNetworkMonitor,
        fake_sessions: list[Any],
    ) -> None:
        """Paused requests are continued when interception is on."""
        await network_monitor.start("https://example.com", intercept_requests=True)
        session = fake_sessions[0]
        assert "Fetch" in session.enabled_domains

        await session.emit("Fetch.requestPaused", {"requestId": "interception-1"})
        assert ("Fetch.continueRequest", {"requestId": "interception-1"}) in session.sent

    @pytest.mark.asyncio
    async def test_pending_requests_bounded(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """Requests that never finish do not grow the pending map without bound."""
        network_monitor.MAX_PENDING_REQUESTS = 3
        await network_monitor.start("https://example.com")
        for i in range(10):
            await fake_sessions[0].emit("Network.requestWillBeSent", request_event(f"r{i}", f"https://example.com/{i}"))

        assert list(network_monitor._request_meta) == ["r7", "r8", "r9"]


class TestNetworkQueries:
    """
    Tests for get_activity, clear_activity and get_performance_metrics.
    """

    @pytest.mark.asyncio
    async def test_get_activity_filters(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """filter selects categories; resource_type narrows requests and their responses."""
        await network_monitor.start("https://example.com")
        session = fake_sessions[0]
        await session.emit("Network.requestWillBeSent", request_event("s1", "https://example.com/a.js", resource_type="Script"))
        await session.emit("Network.requestWillBeSent", request_event("x1", "https://example.com/api", resource_type="XHR"))
        await session.emit("Network.responseReceived", response_event("s1", "https://example.com/a.js"))
        await session.emit("Network.responseReceived", response_event("x1", "https://example.com/api"))

        only_requests = network_monitor.get_activity(filter="requests")
        assert "responses" not in only_requests
        assert len(only_requests["requests"]) == 2

        xhr = network_monitor.get_activity(resource_type="xhr")
        assert [request["request_id"] for request in xhr["requests"]] == ["x1"]
        assert [response["request_id"] for response in xhr["responses"]] == ["x1"]
        assert xhr["total_requests"] == 2

        limited = network_monitor.get_activity(limit=1)
        assert [request["request_id"] for request in limited["requests"]] == ["x1"]

    def test_get_activity_invalid_filter(self, network_monitor: AsyncNetworkMonitor) -> None:
        with pytest.raises(InputValidationError, match="Invalid filter"):
            network_monitor.get_activity(filter="websockets")

    @pytest.mark.asyncio
    async def test_clear_activity(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """clear_activity reports the previous counts and empties every store."""
        await network_monitor.start("https://example.com")
        await fake_sessions[0].emit("Network.requestWillBeSent", request_event("r1", "https://example.com/a"))

        result = network_monitor.clear_activity()
        assert result["previous_counts"] == {"requests": 1, "responses": 0, "failures": 0}
        assert network_monitor.get_activity()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_performance_metrics(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """Browser counters, timing spans and request statistics are combined."""
        await network_monitor.start("https://example.com")
        session = fake_sessions[0]
        session.replies["Performance.getMetrics"] = {
            "metrics": [{"name": "JSHeapUsedSize", "value": 1024.0}, {"name": "Nodes", "value": 42}]
        }
        session.evaluate_handler = lambda expression: {
            "navigationStart": 1000,
            "domainLookupStart": 1010,
            "domainLookupEnd": 1030,
            "connectStart": 1030,
            "connectEnd": 1060,
            "requestStart": 1060,
            "responseStart": 1160,
            "domContentLoadedEventEnd": 1500,
            "loadEventEnd": 1800,
        }
        await session.emit("Network.requestWillBeSent", request_event("r1", "https://example.com/a", timestamp=10.0))
        await session.emit("Network.responseReceived", response_event("r1", "https://example.com/a", timestamp=10.1))

        metrics = await network_monitor.get_performance_metrics()
        assert metrics["browser_metrics"] == {"JSHeapUsedSize": 1024.0, "Nodes": 42}
        assert metrics["derived_metrics"] == {
            "dns_lookup": 20,
            "tcp_connect": 30,
            "ttfb": 100,
            "page_load": 800,
            "dom_content_loaded": 500,
        }
        assert metrics["network_activity"]["total_requests"] == 1
        assert metrics["network_activity"]["avg_response_time_ms"] == pytest.approx(100.0)
        assert "Performance" in session.enabled_domains

    @pytest.mark.asyncio
    async def test_performance_metrics_upstream_error(
        self,
        network_monitor: AsyncNetworkMonitor,
        fake_sessions: list[Any],
    ) -> None:
        """A failing CDP call surfaces as a generic UpstreamError."""
        await network_monitor.start("https://example.com")
        fake_sessions[0].replies["Performance.getMetrics"] = RuntimeError("target crashed")
        with pytest.raises(UpstreamError, match="Reading performance metrics failed"):
            await network_monitor.get_performance_metrics()

    @pytest.mark.asyncio
    async def test_performance_metrics_requires_active(self, network_monitor: AsyncNetworkMonitor) -> None:
        with pytest.raises(MonitorNotActiveError):
            await network_monitor.get_performance_metrics()


class TestNetworkNavigate:
    """
    Tests for AsyncNetworkMonitor.navigate.
    """

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "wait_until,expected_event,lifecycle_name",
        [
            ("load", "Page.loadEventFired", None),
            ("domcontentloaded", "Page.domContentEventFired", None),
            ("networkidle0", "Page.lifecycleEvent", "networkIdle"),
            ("networkidle2", "Page.lifecycleEvent", "networkAlmostIdle"),
        ],
    )
    async def test_wait_until_mapping(
        self,
        network_monitor: AsyncNetworkMonitor,
        fake_sessions: list[Any],
        wait_until: str,
        expected_event: str,
        lifecycle_name: str | None,
    ) -> None:
        """Each wait condition maps to the matching CDP event and lifecycle name."""
        await network_monitor.start("https://example.com")
        result = await network_monitor.navigate("https://example.org/next", wait_until=wait_until)

        url, wait_event, predicate = fake_sessions[0].navigate_calls[-1]
        assert url == "https://example.org/next"
        assert wait_event == expected_event
        if lifecycle_name is None:
            assert predicate is None
        else:
            assert predicate({"name": lifecycle_name}) is True
            assert predicate({"name": "load"}) is False
        assert result["page_loaded"] is True
        assert network_monitor.current_url == "https://example.org/next"

    @pytest.mark.asyncio
    async def test_navigate_validation(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """Bad URLs and wait conditions are rejected before navigating."""
        await network_monitor.start("https://example.com")
        with pytest.raises(InputValidationError, match="Invalid URL"):
            await network_monitor.navigate("file:///etc/passwd")
        with pytest.raises(InputValidationError, match="Invalid wait condition"):
            await network_monitor.navigate("https://example.org", wait_until="idle")
        assert len(fake_sessions[0].navigate_calls) == 1

    @pytest.mark.asyncio
    async def test_navigate_requires_active(self, network_monitor: AsyncNetworkMonitor) -> None:
        with pytest.raises(MonitorNotActiveError):
            await network_monitor.navigate("https://example.org")

    @pytest.mark.asyncio
    async def test_restart_during_navigate(self, network_monitor: AsyncNetworkMonitor, fake_sessions: list[Any]) -> None:
        """A navigation that completes after a restart does not overwrite the new page URL."""
        await network_monitor.start("https://one.example.com")
        navigating = asyncio.Event()
        release = asyncio.Event()

        async def slow_navigate(url: str, *args: Any, **kwargs: Any) -> bool:
            navigating.set()
            await release.wait()
            return True

        fake_sessions[0].navigate = slow_navigate
        navigation = asyncio.create_task(coro=network_monitor.navigate("https://one.example.com/next"))
        await navigating.wait()
        await network_monitor.start("https://two.example.com")
        release.set()

        with pytest.raises(MonitorNotActiveError, match="stopped while navigating"):
            await navigation
        assert network_monitor.current_url == "https://two.example.com"

    @pytest.mark.asyncio
    async def test_navigate_rate_limited(
        self,
        network_monitor: AsyncNetworkMonitor,
        monitor_context: MonitorContext,
    ) -> None:
        """The 31st navigation within a minute is rejected."""
        await network_monitor.start("https://example.com")
        for _ in range(30):
            await network_monitor.navigate("https://example.org")
        with pytest.raises(RateLimitedError):
            await network_monitor.navigate("https://example.org")
