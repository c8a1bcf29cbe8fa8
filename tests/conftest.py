"""
tests/conftest.py

Configuration for pytest.

Provides FakeCDPSession, an in-memory stand-in for AsyncCDPSession, and a session factory
fixture that hands monitors a fresh fake for every connect.
"""

import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable

import pytest

from glassbox.data_models.browser import BrowserConnectionConfig
from glassbox.security.rate_limiter import MonitorContext


class FakeCDPSession:
    """
    Records what monitors send and lets tests emit CDP events.
    Implements the subset of AsyncCDPSession that SessionManager and the monitors use.
    """

    def __init__(self) -> None:
        self.target_id = "FAKE-TARGET"
        self.current_url = "about:blank"
        self.security_state = "secure"
        self.page_loaded = True
        self.closed = False

        self.listeners: dict[str, list[Callable[[dict], Any]]] = defaultdict(list)
        self.enabled_domains: list[str] = []
        self.sent: list[tuple[str, dict | None]] = []
        self.navigations: list[str] = []
        # (url, wait_event, wait_predicate) per navigate call
        self.navigate_calls: list[tuple[str, str | None, Any]] = []
        self.evaluations: list[str] = []
        self.new_document_scripts: list[str] = []

        # method -> reply (or exception to raise) for send_and_wait
        self.replies: dict[str, Any] = {}
        # request_id -> (body, base64_encoded)
        self.response_bodies: dict[str, tuple[str, bool]] = {}
        # expression -> result; raise by returning an exception instance
        self.evaluate_handler: Callable[[str], Any] | None = None

    # event plumbing

    def add_event_listener(self, method: str, listener: Callable[[dict], Any]) -> None:
        self.listeners[method].append(listener)

    def remove_all_listeners(self) -> None:
        self.listeners.clear()

    async def emit(self, method: str, params: dict[str, Any]) -> None:
        """Deliver an event to every listener, awaiting coroutines they return."""
        for listener in list(self.listeners.get(method, [])):
            result = listener(params)
            if inspect.isawaitable(result):
                await result

    def sent_methods(self) -> list[str]:
        return [method for method, _ in self.sent]

    # AsyncCDPSession surface

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def enable_domain(
        self,
        domain: str,
        params: dict | None = None,
        timeout: float = 5.0,
        optional: bool = False,
    ) -> None:
        self.enabled_domains.append(domain)

    async def send(self, method: str, params: dict | None = None, cmd_id: int | None = None) -> int:
        self.sent.append((method, params))
        return len(self.sent)

    async def send_and_wait(self, method: str, params: dict | None = None, timeout: float = 10.0) -> dict | None:
        self.sent.append((method, params))
        reply = self.replies.get(method, {})
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def navigate(
        self,
        url: str,
        wait_event: str | None = "Page.loadEventFired",
        wait_predicate: Callable[[dict], bool] | None = None,
        timeout: float = 30.0,
    ) -> bool:
        self.navigations.append(url)
        self.navigate_calls.append((url, wait_event, wait_predicate))
        self.current_url = url
        return self.page_loaded

    async def evaluate(self, expression: str, timeout: float = 30.0, await_promise: bool = True) -> Any:
        self.evaluations.append(expression)
        if self.evaluate_handler is None:
            return None
        result = self.evaluate_handler(expression)
        if isinstance(result, BaseException):
            raise result
        return result

    async def add_script_on_new_document(self, source: str) -> str | None:
        self.new_document_scripts.append(source)
        return str(len(self.new_document_scripts))

    async def capture_screenshot(self, image_format: str = "png") -> str:
        return "iVBORw0KGgo="

    async def get_response_body(self, request_id: str, timeout: float = 10.0) -> tuple[str, bool]:
        if request_id not in self.response_bodies:
            raise RuntimeError("CDP error: No resource with given identifier found")
        return self.response_bodies[request_id]

    def get_security_state(self) -> str:
        return self.security_state

    async def get_current_url(self, timeout: float = 3.0) -> str | None:
        return self.current_url

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_sessions() -> list[FakeCDPSession]:
    """
    Every FakeCDPSession handed out by session_factory, in creation order.
    """
    return []


@pytest.fixture
def session_factory(fake_sessions: list[FakeCDPSession]) -> Callable[[BrowserConnectionConfig], Awaitable[FakeCDPSession]]:
    """
    Session factory for SessionManager that creates a FakeCDPSession per connect.
    """
    async def factory(config: BrowserConnectionConfig) -> FakeCDPSession:
        session = FakeCDPSession()
        fake_sessions.append(session)
        return session

    return factory


@pytest.fixture
def browser_config() -> BrowserConnectionConfig:
    """
    Default loopback configuration with short timeouts.
    """
    return BrowserConnectionConfig(connect_timeout=2.0, navigation_timeout=2.0, script_timeout=2.0)


@pytest.fixture
def monitor_context() -> MonitorContext:
    """
    Fresh rate-limit and timer services.
    """
    return MonitorContext()


@pytest.fixture
def fake_session_class() -> type[FakeCDPSession]:
    """
    FakeCDPSession itself, for tests that subclass it to inject failures.
    """
    return FakeCDPSession
