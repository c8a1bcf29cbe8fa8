"""
Tests for glassbox/utils/chrome_utils.py

Tests for locating the browser's debugging endpoint.
"""

from typing import Any

import pytest
import requests

from glassbox.utils import chrome_utils
from glassbox.utils.chrome_utils import check_chrome_running, get_browser_websocket_url
from glassbox.utils.exceptions import BrowserConnectionError


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class TestGetBrowserWebsocketUrl:
    """Tests for get_browser_websocket_url."""

    def test_netloc_replaced_with_reached_address(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Chrome may report 0.0.0.0 or another port; the address we reached it on wins."""
        urls: list[str] = []

        def fake_get(url: str, timeout: float) -> FakeResponse:
            urls.append(url)
            return FakeResponse(payload={"webSocketDebuggerUrl": "ws://0.0.0.0:9222/devtools/browser/abc-123"})

        monkeypatch.setattr(chrome_utils.requests, "get", fake_get)
        ws_url = get_browser_websocket_url("http://127.0.0.1:9333/")

        assert urls == ["http://127.0.0.1:9333/json/version"]
        assert ws_url == "ws://127.0.0.1:9333/devtools/browser/abc-123"

    def test_unreachable_endpoint(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_get(url: str, timeout: float) -> FakeResponse:
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(chrome_utils.requests, "get", fake_get)
        with pytest.raises(BrowserConnectionError, match="not reachable"):
            get_browser_websocket_url()

    def test_missing_websocket_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(chrome_utils.requests, "get", lambda url, timeout: FakeResponse(payload={"Browser": "x"}))
        with pytest.raises(BrowserConnectionError, match="did not report"):
            get_browser_websocket_url()

    def test_invalid_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(chrome_utils.requests, "get", lambda url, timeout: FakeResponse(payload=None))
        with pytest.raises(BrowserConnectionError):
            get_browser_websocket_url()


class TestCheckChromeRunning:
    """Tests for check_chrome_running."""

    def test_running(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(chrome_utils.requests, "get", lambda url, timeout: FakeResponse(status_code=200))
        assert check_chrome_running() is True

    def test_not_running(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_get(url: str, timeout: float) -> FakeResponse:
            raise requests.Timeout("timed out")

        monkeypatch.setattr(chrome_utils.requests, "get", fake_get)
        assert check_chrome_running() is False

    def test_ensure_does_not_launch_when_running(self, monkeypatch: pytest.MonkeyPatch) -> None:
        launched: list[int] = []
        monkeypatch.setattr(chrome_utils, "check_chrome_running", lambda address: True)
        monkeypatch.setattr(chrome_utils, "launch_chrome", lambda port, headless: launched.append(port))

        assert chrome_utils.ensure_chrome_running(port=9222) is True
        assert launched == []
