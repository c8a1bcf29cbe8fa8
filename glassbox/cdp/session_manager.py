"""
glassbox/cdp/session_manager.py

Owns at most one live AsyncCDPSession and its lifecycle: connect, ensure, disconnect.

Every successful connect bumps a generation id. Monitors tag their listeners with it so that
events from a torn-down session are dropped.
"""

import asyncio
import time
from typing import Awaitable, Callable

from glassbox.cdp.async_cdp_session import AsyncCDPSession, open_cdp_session
from glassbox.data_models.browser import (
    LOOPBACK_HOSTS,
    BrowserConnectionConfig,
    ConnectionStatus,
    SessionState,
)
from glassbox.utils.exceptions import (
    BrowserConnectionError,
    ConcurrentConnectError,
    ConnectionTimeoutError,
    GlassboxError,
    InputValidationError,
    NotConnectedError,
)
from glassbox.utils.logger import get_logger

logger = get_logger(name=__name__)

SessionFactory = Callable[[BrowserConnectionConfig], Awaitable[AsyncCDPSession]]


class SessionManager:
    """
    Lifecycle manager for a single browser session.
    """

    # Class attributes _____________________________________________________________________________________________________

    # domains every session gets; Security is enabled best-effort on top
    REQUIRED_DOMAINS: tuple[str, ...] = ("Page", "Runtime")


    # Magic methods ________________________________________________________________________________________________________

    def __init__(
        self,
        config: BrowserConnectionConfig | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        """
        Initialize SessionManager.
        Args:
            config: Connection configuration. Defaults to BrowserConnectionConfig.from_env().
            session_factory: Coroutine function returning an open session for a config.
                Defaults to open_cdp_session.
        """
        self.config = config or BrowserConnectionConfig.from_env()
        self._session_factory = session_factory or open_cdp_session

        self.state: SessionState = SessionState.DISCONNECTED
        self.generation: int = 0
        self.last_activity: float | None = None

        self._session: AsyncCDPSession | None = None
        self._pending_session: AsyncCDPSession | None = None


    # Private methods ______________________________________________________________________________________________________

    async def _establish(self) -> AsyncCDPSession:
        session = await self._session_factory(self.config)
        self._pending_session = session
        for domain in self.REQUIRED_DOMAINS:
            await session.enable_domain(domain)
        await session.enable_domain("Security", optional=True)
        return session

    async def _discard_pending(self) -> None:
        session, self._pending_session = self._pending_session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception as e:
            logger.warning("⚠️ Error closing partially-established session: %s", e)


    # Public methods _______________________________________________________________________________________________________

    @property
    def session(self) -> AsyncCDPSession | None:
        """The live session, if connected."""
        return self._session

    @property
    def is_connected(self) -> bool:
        return self.state == SessionState.CONNECTED and self._session is not None

    def touch(self) -> None:
        """Record session activity."""
        self.last_activity = time.time()

    async def connect(self) -> AsyncCDPSession:
        """
        Establish a new session, tearing down the current one first if connected.
        Returns:
            The new live session.
        Raises:
            ConcurrentConnectError: If a connect is already in progress.
            InputValidationError: If the configured host is not a loopback address.
            ConnectionTimeoutError: If establishment did not finish within config.connect_timeout.
            BrowserConnectionError: For any other establishment failure.
        """
        if self.state == SessionState.CONNECTING:
            raise ConcurrentConnectError("A browser connection is already in progress")

        if self.state == SessionState.CONNECTED or self._session is not None:
            await self.disconnect()

        if self.config.host not in LOOPBACK_HOSTS:
            raise InputValidationError("Only localhost connections are allowed")

        self.state = SessionState.CONNECTING
        logger.info("🔌 Connecting to browser at %s", self.config.remote_debugging_address)
        try:
            session = await asyncio.wait_for(fut=self._establish(), timeout=self.config.connect_timeout)
        except asyncio.TimeoutError as e:
            await self._discard_pending()
            self.state = SessionState.DISCONNECTED
            logger.error("⏱️ Browser connection timed out after %s seconds", self.config.connect_timeout)
            raise ConnectionTimeoutError("Browser connection timed out") from e
        except GlassboxError:
            await self._discard_pending()
            self.state = SessionState.DISCONNECTED
            raise
        except Exception as e:
            await self._discard_pending()
            self.state = SessionState.DISCONNECTED
            logger.error("❌ Failed to connect to browser: %s", e, exc_info=True)
            raise BrowserConnectionError("Failed to connect to browser") from e
        except BaseException:
            # cancelled while connecting
            await self._discard_pending()
            self.state = SessionState.DISCONNECTED
            raise

        self._pending_session = None
        self._session = session
        self.generation += 1
        self.state = SessionState.CONNECTED
        self.touch()
        logger.info("✅ Browser session connected (generation=%d)", self.generation)
        return session

    async def ensure_connection(self) -> AsyncCDPSession:
        """
        Return the live session, connecting first if disconnected.
        Raises:
            NotConnectedError: If there is still no session afterwards.
        """
        if self.state == SessionState.DISCONNECTED:
            await self.connect()
        if self._session is None or self.state != SessionState.CONNECTED:
            raise NotConnectedError("Browser session is not connected")
        self.touch()
        return self._session

    async def disconnect(self) -> None:
        """
        Close the session if any. Idempotent; close errors are logged, never raised.
        """
        session, self._session = self._session, None
        # an in-flight connect still owns the CONNECTING state
        if self.state != SessionState.CONNECTING:
            self.state = SessionState.DISCONNECTED
        if session is None:
            return
        try:
            await session.close()
            logger.info("🔌 Browser session disconnected (generation=%d)", self.generation)
        except Exception as e:
            logger.warning("⚠️ Error while closing browser session: %s", e)

    async def get_connection_status(self) -> ConnectionStatus:
        """Return a snapshot of the connection, including the page URL when connected."""
        url: str | None = None
        target_id: str | None = None
        if self.is_connected:
            target_id = self._session.target_id
            url = await self._session.get_current_url()
        return ConnectionStatus(
            connected=self.is_connected,
            state=self.state,
            generation=self.generation,
            target_id=target_id,
            url=url,
            last_activity=self.last_activity,
        )
