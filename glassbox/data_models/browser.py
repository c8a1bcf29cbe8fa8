"""
glassbox/data_models/browser.py

Data models for the browser connection: configuration, state and status.
"""

from enum import StrEnum

from pydantic import BaseModel, Field

from glassbox.config import Config


LOOPBACK_HOSTS: frozenset[str] = frozenset({"localhost", "127.0.0.1", "::1"})


class SessionState(StrEnum):
    """Connection state of a SessionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MonitorState(StrEnum):
    """Lifecycle state of a monitor."""
    IDLE = "idle"
    ACTIVE = "active"


class BrowserConnectionConfig(BaseModel):
    """
    Configuration for reaching the browser's remote debugging endpoint.
    The host pattern only admits loopback addresses.
    """
    host: str = Field(
        default="127.0.0.1",
        pattern=r"^(localhost|127\.0\.0\.1|::1)$",
        description="Debugging endpoint host (loopback only)",
    )
    port: int = Field(
        default=9222,
        ge=1024,
        le=65535,
        description="Debugging endpoint port",
    )
    connect_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=30.0,
        description="Seconds to wait for the connection to be established",
    )
    navigation_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=120.0,
        description="Seconds to wait for a page load signal",
    )
    script_timeout: float = Field(
        default=30.0,
        ge=0.1,
        le=120.0,
        description="Seconds to wait for a script evaluation",
    )
    auto_launch: bool = Field(
        default=False,
        description="Launch a local Chrome in debug mode if none is listening",
    )
    headless: bool = Field(
        default=True,
        description="Run an auto-launched Chrome headless",
    )

    @property
    def remote_debugging_address(self) -> str:
        """HTTP address of the debugging endpoint, e.g. http://127.0.0.1:9222."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"

    @classmethod
    def from_env(cls) -> "BrowserConnectionConfig":
        """Build the configuration from Config (environment variables)."""
        return cls(
            host=Config.CHROME_HOST,
            port=Config.CHROME_PORT,
            connect_timeout=Config.CONNECT_TIMEOUT_SECONDS,
            navigation_timeout=Config.NAVIGATION_TIMEOUT_SECONDS,
            script_timeout=Config.SCRIPT_TIMEOUT_SECONDS,
            auto_launch=Config.CHROME_AUTO_LAUNCH,
            headless=Config.CHROME_HEADLESS,
        )


class ConnectionStatus(BaseModel):
    """
    Snapshot of a SessionManager's connection.
    """
    connected: bool = Field(
        ...,
        description="Whether a live session exists",
    )
    state: SessionState = Field(
        ...,
        description="Connection state",
    )
    generation: int = Field(
        ...,
        description="Generation id of the current (or last) session",
    )
    target_id: str | None = Field(
        default=None,
        description="CDP target id of the controlled page",
    )
    url: str | None = Field(
        default=None,
        description="Current page URL",
    )
    last_activity: float | None = Field(
        default=None,
        description="Unix timestamp of the last session activity",
    )


class PageInfo(BaseModel):
    """
    Basic information about the controlled page.
    """
    title: str = Field(..., description="Document title")
    url: str = Field(..., description="Current page URL")
    ready_state: str = Field(..., description="document.readyState", examples=["loading", "interactive", "complete"])
    timestamp: float = Field(..., description="Unix timestamp when the info was read")
