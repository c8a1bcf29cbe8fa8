"""
glassbox/utils/exceptions.py

Custom exceptions for glassbox.

Contains:
- GlassboxError: Base class, converted to an error result at the tool boundary
- InputValidationError: Unsafe or malformed external input
- MonitorNotActiveError: Operation needs a running monitor
- ConcurrentConnectError, ConnectionTimeoutError, NotConnectedError: Session establishment failures
- RateLimitedError: Caller must back off
- UpstreamError (BrowserConnectionError, NavigationError, ScriptExecutionError): Browser or filesystem collaborator failures
- UnknownToolError: Tool name is not registered
"""


class GlassboxError(Exception):
    """
    Base exception for all glassbox errors.
    The message is always safe to return to the caller.
    """


class InputValidationError(GlassboxError):
    """
    Raised when an external input (URL, script, path, filename, selector) fails validation.
    """


class MonitorNotActiveError(GlassboxError):
    """
    Raised when an operation requires an active monitor but it has not been started.
    """


class ConcurrentConnectError(GlassboxError):
    """
    Raised when connect() is called while another connect is still in progress.
    """


class ConnectionTimeoutError(GlassboxError):
    """
    Raised when the browser connection is not established within the configured timeout.
    """


class NotConnectedError(GlassboxError):
    """
    Raised when a method requires a live browser session but none is available.
    """


class RateLimitedError(GlassboxError):
    """
    Raised when an operation key exceeded its allowed number of calls in the current window.
    """


class UpstreamError(GlassboxError):
    """
    Raised when the browser session or filesystem collaborator fails.
    Messages are generic; the original error is chained and logged, never echoed.
    """


class BrowserConnectionError(UpstreamError):
    """
    Exception raised when unable to connect to the browser or create a browser tab.
    """


class NavigationError(UpstreamError):
    """
    Raised when a page navigation fails or does not produce a page.
    """


class ScriptExecutionError(UpstreamError):
    """
    Raised when a script evaluated in the page throws or times out.
    """


class UnknownToolError(GlassboxError):
    """
    Raised when attempting to execute a tool that does not exist.
    """
