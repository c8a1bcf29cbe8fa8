"""
glassbox/cdp/monitors/abstract_async_monitor.py

Abstract base class for asynchronous CDP monitors.

Implements the shared start/query/clear/stop lifecycle. Subclasses supply their stores, the
CDP events they listen to and any variant-specific actions.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ClassVar, TypeVar

from glassbox.cdp.session_manager import SessionFactory, SessionManager
from glassbox.data_models.browser import BrowserConnectionConfig, MonitorState, PageInfo
from glassbox.data_models.cdp import BaseCDPEvent
from glassbox.security.rate_limiter import MonitorContext
from glassbox.security.validators import require_valid, validate_url
from glassbox.utils.exceptions import (
    GlassboxError,
    MonitorNotActiveError,
    RateLimitedError,
    UpstreamError,
)
from glassbox.utils.js_utils import generate_page_info_js
from glassbox.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from glassbox.cdp.async_cdp_session import AsyncCDPSession

logger = get_logger(name=__name__)

R = TypeVar("R")


class AbstractAsyncMonitor(ABC):
    """
    Abstract base class for asynchronous CDP monitors.
    All monitors (AsyncConsoleMonitor, AsyncNetworkMonitor, AsyncVitalsMonitor, AsyncFileMonitor) inherit from this.
    """

    # Class attributes _____________________________________________________________________________________________________

    _subclasses: ClassVar[list[type[AbstractAsyncMonitor]]] = []  # list of all subclasses of AbstractAsyncMonitor

    TOOL_PREFIX: ClassVar[str] = ""  # e.g. "console"; also the rate-key namespace
    DISPLAY_NAME: ClassVar[str] = "Monitoring"
    START_RATE_LIMIT: ClassVar[tuple[int, float]] = (10, 60.0)  # (max calls, window seconds)


    # Magic methods ________________________________________________________________________________________________________

    def __init_subclass__(cls: type[AbstractAsyncMonitor], **kwargs: Any) -> None:
        """
        Add the subclass to the AbstractAsyncMonitor._subclasses list when the subclass is defined.
        """
        super().__init_subclass__(**kwargs)
        cls._subclasses.append(cls)

    def __init__(
        self,
        context: MonitorContext | None = None,
        config: BrowserConnectionConfig | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        """
        Initialize the monitor.
        Args:
            context: Shared rate-limit and timer services.
            config: Browser connection configuration for this monitor's SessionManager.
            session_factory: Optional session factory (see SessionManager).
        """
        self.context = context or MonitorContext()
        self.session_manager = SessionManager(config=config, session_factory=session_factory)
        self.state: MonitorState = MonitorState.IDLE
        self.current_url: str | None = None
        self.started_at: float | None = None

        # generation whose listeners may write into the stores; None while idle
        self._active_generation: int | None = None


    # Class methods ________________________________________________________________________________________________________

    @classmethod
    def get_all_subclasses(cls: type[AbstractAsyncMonitor]) -> list[type[AbstractAsyncMonitor]]:
        """
        Return a copy of the list of all subclasses of AbstractAsyncMonitor.
        """
        return cls._subclasses.copy()

    @classmethod
    def get_monitor_category(cls) -> str:
        """
        Return the category name for this monitor class.
        Returns:
            The class name (e.g., "AsyncNetworkMonitor").
        """
        return cls.__name__

    @classmethod
    @abstractmethod
    def get_event_summary(cls, event: BaseCDPEvent) -> dict[str, Any]:
        """
        Extract a lightweight summary of a captured event.
        Each monitor defines which fields are relevant for a status overview.
        Args:
            event: A captured event from one of the monitor's stores.
        Returns:
            A simplified dict with only the most relevant fields.
        """
        pass


    # Abstract hooks _______________________________________________________________________________________________________

    @abstractmethod
    def _reset_stores(self) -> None:
        """Empty every store and reset derived counters."""
        pass

    @abstractmethod
    def _register_listeners(self, session: AsyncCDPSession, generation: int) -> None:
        """Register CDP event listeners through self._listen()."""
        pass

    @abstractmethod
    def _get_counts(self) -> dict[str, int]:
        """Return the number of items in each store."""
        pass

    @abstractmethod
    def _recent_events(self, n: int) -> list[BaseCDPEvent]:
        """Return up to n of the most recently captured events."""
        pass

    async def _prepare_session(self, session: AsyncCDPSession, **options: Any) -> None:
        """Enable domains / install scripts before the first navigation. No-op by default."""
        return None

    async def _after_start(self, **options: Any) -> None:
        """Run once the monitor is ACTIVE. No-op by default."""
        return None

    async def _before_stop(self) -> None:
        """Release variant resources (timers, watchers). Must not raise. No-op by default."""
        return None

    def _stop_summary(self) -> dict[str, Any]:
        """Extra fields returned by stop()."""
        return {}


    # Private methods ______________________________________________________________________________________________________

    def _listen(
        self,
        session: AsyncCDPSession,
        generation: int,
        method: str,
        handler: Callable[[dict[str, Any]], Any],
    ) -> None:
        """
        Register handler for a CDP event, tagged with generation.
        Events delivered after the generation was superseded or stopped are dropped.
        """
        def listener(params: dict[str, Any]) -> Any:
            if generation != self._active_generation or generation != self.session_manager.generation:
                logger.debug("🗑️ Dropping %s from stale generation %d", method, generation)
                return None
            return handler(params)

        session.add_event_listener(method, listener)

    def _is_current(self, generation: int) -> bool:
        """Whether generation is still the one feeding the stores (for async handlers after an await)."""
        return generation == self._active_generation

    def _is_superseded(self, generation: int | None) -> bool:
        """Whether a stop() or a newer start() took over from the start that connected generation."""
        return generation is not None and not self._is_current(generation)

    def _raise_if_superseded(self, generation: int) -> None:
        if self._is_superseded(generation):
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} start was superseded")

    async def _stop_if_running(self) -> None:
        """Full stop() before a restart, if a session is active or still held."""
        if self.state == MonitorState.ACTIVE or self.session_manager.session is not None:
            await self.stop()

    async def _abandon_start(self, generation: int | None) -> None:
        """Tear down after a failed start, unless the session already belongs to a newer start."""
        if self._is_superseded(generation):
            logger.debug("🗑️ Start of generation %d superseded; leaving the session to its owner", generation)
            return
        await self._teardown()

    def _require_active(self) -> AsyncCDPSession:
        """Return the live session or raise MonitorNotActiveError."""
        session = self.session_manager.session
        if self.state != MonitorState.ACTIVE or session is None:
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} is not active. Start monitoring first.")
        self.session_manager.touch()
        return session

    def _check_rate(self, key: str, max_requests: int, window_seconds: float) -> None:
        """Count one call for key; raise RateLimitedError if over the limit."""
        if not self.context.rate_limiter.check(key, max_requests=max_requests, window_seconds=window_seconds):
            raise RateLimitedError(f"Rate limit exceeded for {key}. Try again later.")

    async def _call_upstream(self, description: str, awaitable: Awaitable[R]) -> R:
        """
        Await a browser/filesystem operation, converting unexpected errors to UpstreamError.
        The original error is logged and chained but never put in the message.
        """
        try:
            return await awaitable
        except GlassboxError:
            raise
        except Exception as e:
            logger.error("❌ %s failed: %s", description, e, exc_info=True)
            raise UpstreamError(f"{description} failed") from e

    async def _teardown(self) -> None:
        """Drop listeners, release variant resources and disconnect. Never raises."""
        self._active_generation = None
        self.state = MonitorState.IDLE
        try:
            await self._before_stop()
        except Exception as e:
            logger.warning("⚠️ Error releasing %s resources: %s", self.get_monitor_category(), e)
        await self.session_manager.disconnect()


    # Public methods _______________________________________________________________________________________________________

    @property
    def is_active(self) -> bool:
        return self.state == MonitorState.ACTIVE

    @property
    def session(self) -> AsyncCDPSession | None:
        return self.session_manager.session

    async def start(self, url: str, headless: bool | None = None, **options: Any) -> dict[str, Any]:
        """
        Start (or restart) monitoring url in a fresh browser session.
        Args:
            url: Page to open; must pass validate_url.
            headless: Override for an auto-launched browser's headless mode.
            **options: Variant-specific options, passed to _prepare_session and _after_start.
        Returns:
            Start summary.
        """
        await self._stop_if_running()

        validated_url = require_valid(validate_url(url), "URL")
        self._check_rate(f"{self.TOOL_PREFIX}:start", *self.START_RATE_LIMIT)

        if headless is not None:
            self.session_manager.config = self.session_manager.config.model_copy(update={"headless": headless})

        logger.info("🚀 Starting %s for %s", self.get_monitor_category(), validated_url)
        generation: int | None = None
        try:
            session = await self.session_manager.connect()
            generation = self.session_manager.generation
            self._reset_stores()
            self._active_generation = generation
            self._register_listeners(session, generation)
            await self._prepare_session(session, **options)
            self._raise_if_superseded(generation)
            page_loaded = await session.navigate(
                url=validated_url,
                timeout=self.session_manager.config.navigation_timeout,
            )
            self._raise_if_superseded(generation)
            self.state = MonitorState.ACTIVE
            self.current_url = validated_url
            self.started_at = time.time()
            await self._after_start(**options)
        except GlassboxError:
            await self._abandon_start(generation)
            raise
        except Exception as e:
            if self._is_superseded(generation):
                logger.debug("🗑️ Ignoring error from superseded start: %s", e)
                raise MonitorNotActiveError(f"{self.DISPLAY_NAME} start was superseded") from e
            await self._teardown()
            logger.error("❌ Failed to start %s: %s", self.get_monitor_category(), e, exc_info=True)
            raise UpstreamError(f"Failed to start {self.DISPLAY_NAME.lower()}") from e
        except BaseException:
            await self._abandon_start(generation)
            raise

        logger.info("✅ %s active (generation=%d)", self.get_monitor_category(), generation)
        return {
            "message": f"{self.DISPLAY_NAME} started for {validated_url}",
            "url": validated_url,
            "generation": generation,
            "page_loaded": page_loaded,
            "options": {key: value for key, value in options.items() if value is not None},
        }

    async def stop(self) -> dict[str, Any]:
        """
        Stop monitoring and close the browser session. Idempotent, never raises.
        Captured data stays queryable until the next start() or clear.
        """
        was_active = self.state == MonitorState.ACTIVE
        summary = self._stop_summary()
        await self._teardown()
        if was_active:
            logger.info("🛑 %s stopped", self.get_monitor_category())
        return {
            "message": f"{self.DISPLAY_NAME} stopped" if was_active else f"{self.DISPLAY_NAME} was not active",
            "was_active": was_active,
            "counts": self._get_counts(),
            **summary,
        }

    def clear(self) -> dict[str, int]:
        """
        Empty every store. Valid in any state.
        Returns:
            The counts before clearing.
        """
        previous = self._get_counts()
        self._reset_stores()
        return previous

    async def get_status(self) -> dict[str, Any]:
        """Return state, connection status, store counts and a few recent events."""
        connection = await self.session_manager.get_connection_status()
        return {
            "monitor": self.get_monitor_category(),
            "state": self.state.value,
            "url": self.current_url,
            "started_at": self.started_at,
            "connection": connection.model_dump(mode="json"),
            "counts": self._get_counts(),
            "recent_events": [self.get_event_summary(event) for event in self._recent_events(5)],
        }

    async def capture_screenshot(self) -> dict[str, Any]:
        """Capture the monitored page (ACTIVE only)."""
        session = self._require_active()
        data = await self._call_upstream("Screenshot capture", session.capture_screenshot())
        return {
            "format": "png",
            "encoding": "base64",
            "data": data,
            "url": self.current_url,
        }

    async def get_page_info(self) -> PageInfo:
        """Read title, URL and ready state of the monitored page (ACTIVE only)."""
        session = self._require_active()
        info = await self._call_upstream(
            "Reading page info",
            session.evaluate(generate_page_info_js(), timeout=self.session_manager.config.script_timeout),
        )
        info = info or {}
        return PageInfo(
            title=info.get("title") or "",
            url=info.get("url") or (self.current_url or ""),
            ready_state=info.get("readyState") or "unknown",
            timestamp=time.time(),
        )

    def get_security_state(self) -> str:
        """Security state reported by the browser for the page, or 'unknown'."""
        session = self.session_manager.session
        if session is None:
            return "unknown"
        return session.get_security_state()
