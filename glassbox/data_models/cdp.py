"""
glassbox/data_models/cdp.py

Data models for events captured from CDP sessions.
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ConfigDict


## Base event

class BaseCDPEvent(BaseModel):
    """
    Base model for all captured events.
    The timestamp is taken when the model is built, i.e. when the session emitted the event.
    """
    timestamp: float = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc).timestamp(),
        description="Unix timestamp (seconds) when the event was captured"
    )

## Console models

class ConsoleMessageType(StrEnum):
    """Console message levels kept by the console monitor."""
    LOG = "log"
    WARN = "warn"
    ERROR = "error"
    INFO = "info"
    DEBUG = "debug"

    @classmethod
    def from_cdp(cls, cdp_type: str | None) -> "ConsoleMessageType":
        """
        Map a CDP console type (Runtime.consoleAPICalled / Log.entryAdded level) to a message type.
        Unknown types (dir, table, trace, ...) fall back to LOG.
        """
        if not cdp_type:
            return cls.LOG
        aliases = {
            "warning": cls.WARN,
            "assert": cls.ERROR,
            "verbose": cls.DEBUG,
        }
        if cdp_type in aliases:
            return aliases[cdp_type]
        try:
            return cls(cdp_type)
        except ValueError:
            return cls.LOG


class ConsoleMessage(BaseCDPEvent):
    """
    Model for a console line or uncaught page error.
    """
    type: ConsoleMessageType = Field(
        ...,
        description="Console message level",
        examples=["log", "error"]
    )
    text: str = Field(
        ...,
        description="Message text (truncated)",
    )
    url: str | None = Field(
        default=None,
        description="Source URL of the call site, if known",
    )
    line_number: int | None = Field(
        default=None,
        description="Zero-based line number of the call site",
    )
    column_number: int | None = Field(
        default=None,
        description="Zero-based column number of the call site",
    )

## Network models

class NetworkRequest(BaseCDPEvent):
    """
    Model for an outgoing request seen by Network.requestWillBeSent.
    """
    request_id: str = Field(
        ...,
        description="Unique identifier for the network request",
        examples=["15BF081D76D2923D4AA7E645C41FB876"]
    )
    url: str = Field(
        ...,
        description="The requested URL",
    )
    method: str = Field(
        ...,
        description="HTTP method used",
        examples=["GET", "POST"]
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="HTTP request headers (sensitive values redacted)",
    )
    post_data: str | None = Field(
        default=None,
        description="Request body data (for POST/PUT requests)",
    )
    resource_type: str = Field(
        default="other",
        description="Lower-cased CDP resource type",
        examples=["document", "script", "xhr"]
    )


class NetworkResponse(BaseCDPEvent):
    """
    Model for a response seen by Network.responseReceived.
    """
    model_config = ConfigDict(extra='allow')

    request_id: str = Field(
        ...,
        description="Identifier of the request this response answers",
    )
    url: str = Field(
        ...,
        description="The response URL",
    )
    status: int = Field(
        ...,
        description="HTTP response status code",
        examples=[200, 301, 404]
    )
    status_text: str = Field(
        default="",
        description="HTTP response status text",
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="HTTP response headers (sensitive values redacted)",
    )
    duration_ms: float | None = Field(
        default=None,
        description="Milliseconds between the request and its response, if the request was seen",
    )
    from_cache: bool = Field(
        default=False,
        description="Whether the response was served from disk/memory cache",
    )
    mime_type: str = Field(
        default="",
        description="MIME type of the response",
    )
    size: int | None = Field(
        default=None,
        description="Encoded body size in bytes, filled in once loading finishes",
    )


class NetworkFailure(BaseCDPEvent):
    """
    Model for a request that failed (Network.loadingFailed).
    """
    request_id: str | None = Field(
        default=None,
        description="Identifier of the failed request",
    )
    url: str = Field(
        ...,
        description="The URL of the failed request",
    )
    error_text: str = Field(
        ...,
        description="Error text reported by the browser",
        examples=["net::ERR_NAME_NOT_RESOLVED"]
    )

## Vitals models

class VitalsSample(BaseCDPEvent):
    """
    Model for one measurement of the five page-load quality metrics.
    """
    lcp: float | None = Field(default=None, description="Largest Contentful Paint (ms)")
    fid: float | None = Field(default=None, description="First Input Delay (ms)")
    cls: float | None = Field(default=None, description="Cumulative Layout Shift (unitless)")
    fcp: float | None = Field(default=None, description="First Contentful Paint (ms)")
    ttfb: float | None = Field(default=None, description="Time To First Byte (ms)")
    performance_score: float | None = Field(
        default=None,
        description="Audit score (0-100) when one was computed",
    )
    url: str = Field(
        default="",
        description="Page URL at measurement time",
    )

    def metric_values(self) -> dict[str, float | None]:
        """Return the five vitals keyed by their upper-case names."""
        return {
            "LCP": self.lcp,
            "FID": self.fid,
            "CLS": self.cls,
            "FCP": self.fcp,
            "TTFB": self.ttfb,
        }

## File models

class ResourceKind(StrEnum):
    """Resource kinds tracked by the file monitor."""
    DOCUMENT = "document"
    SCRIPT = "script"
    STYLESHEET = "stylesheet"
    IMAGE = "image"
    FONT = "font"
    XHR = "xhr"
    FETCH = "fetch"
    WEBSOCKET = "websocket"
    MANIFEST = "manifest"
    OTHER = "other"

    @classmethod
    def from_cdp(cls, cdp_type: str | None) -> "ResourceKind":
        """Map a CDP Network.ResourceType ("Document", "XHR", ...) to a resource kind."""
        if not cdp_type:
            return cls.OTHER
        try:
            return cls(cdp_type.lower())
        except ValueError:
            return cls.OTHER


class FileResource(BaseCDPEvent):
    """
    Model for a resource loaded by the page.
    """
    request_id: str = Field(
        ...,
        description="CDP request identifier of the resource",
    )
    url: str = Field(
        ...,
        description="Resource URL",
    )
    kind: ResourceKind = Field(
        default=ResourceKind.OTHER,
        description="Resource kind",
    )
    byte_size: int = Field(
        default=0,
        description="Encoded size in bytes",
    )
    load_time_ms: float = Field(
        default=0.0,
        description="Milliseconds from request to loading finished",
    )
    from_cache: bool = Field(
        default=False,
        description="Whether the resource came from cache",
    )
    status: int = Field(
        default=0,
        description="HTTP status code",
    )
    mime_type: str | None = Field(
        default=None,
        description="Content type of the resource",
    )
    content: str | None = Field(
        default=None,
        description="Text content, only captured for text resources when content capture is on",
    )


class FileDownload(BaseCDPEvent):
    """
    Model for a file written to the download directory.
    """
    filename: str = Field(
        ...,
        description="Sanitized file name",
    )
    url: str = Field(
        ...,
        description="Source URL",
    )
    byte_size: int = Field(
        ...,
        description="Number of bytes written",
    )
    destination_path: str = Field(
        ...,
        description="Absolute path the file was written to",
    )
    mime_type: str | None = Field(
        default=None,
        description="Content type of the downloaded resource",
    )


class FilesystemChangeKind(StrEnum):
    """Kinds of filesystem change events."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class FilesystemChange(BaseCDPEvent):
    """
    Model for a change reported by a filesystem watcher.
    """
    kind: FilesystemChangeKind = Field(
        ...,
        description="What happened to the path",
    )
    path: str = Field(
        ...,
        description="Path that changed",
    )
    byte_size: int | None = Field(
        default=None,
        description="File size after the change, if known",
    )


def dump_events(events: list[BaseModel]) -> list[dict[str, Any]]:
    """Serialize a list of captured events to JSON-compatible dicts."""
    return [event.model_dump(mode="json") for event in events]
