"""
glassbox/cdp/async_cdp_session.py

One browser connection plus one controlled page target, spoken to over CDP.

Contains:
- AsyncCDPSession: WebSocket transport, command/reply matching, event listeners and the
  page-level primitives monitors need (navigate, evaluate, screenshot, response bodies)
- open_cdp_session(): Default session factory used by SessionManager
"""

import asyncio
import inspect
import json
from typing import Any, Callable

from websockets.asyncio.client import connect, ClientConnection

from glassbox.data_models.browser import BrowserConnectionConfig
from glassbox.utils.chrome_utils import ensure_chrome_running, get_browser_websocket_url
from glassbox.utils.exceptions import BrowserConnectionError, NavigationError, ScriptExecutionError
from glassbox.utils.logger import get_logger

logger = get_logger(name=__name__)

EventListener = Callable[[dict[str, Any]], Any]
EventPredicate = Callable[[dict[str, Any]], bool]


class AsyncCDPSession:
    """
    Asynchronous CDP session bound to a single page target.
    A new page target is created on open() and closed on close(); events for that target are
    dispatched to listeners registered by CDP method name.
    """

    # Class attributes _____________________________________________________________________________________________________

    # browser-level domains are sent without the page sessionId
    BROWSER_LEVEL_DOMAINS: frozenset[str] = frozenset({"Target", "Browser", "SystemInfo"})


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, ws_url: str) -> None:
        """
        Initialize AsyncCDPSession.
        Args:
            ws_url: Browser-level WebSocket URL (from /json/version).
        NOTE:
            The page sessionId is obtained in open() via Target.attachToTarget with flatten=True and is
            only valid on the WebSocket connection that attached it.
        """
        self.ws_url = ws_url
        self.ws: ClientConnection | None = None
        self.seq = 0  # sequence ID for CDP commands

        # response tracking for CDP commands
        self.pending_responses: dict[int, asyncio.Future] = {}  # command ID -> future

        # one-shot waiters for events (e.g. Page.loadEventFired)
        self._event_waiters: dict[str, list[tuple[asyncio.Future, EventPredicate | None]]] = {}

        # persistent listeners by CDP method name
        self._listeners: dict[str, list[EventListener]] = {}
        self._listener_tasks: set[asyncio.Task] = set()

        # track enabled CDP domains to avoid duplicate enables
        self._enabled_domains: set[str] = set()

        self.target_id: str | None = None
        self.page_session_id: str | None = None
        self.security_state: str = "unknown"

        self._receiver_task: asyncio.Task | None = None
        self._closed = False


    # Private methods ______________________________________________________________________________________________________

    async def _message_receiver(self) -> None:
        """Receive and dispatch WebSocket messages until the connection closes."""
        message_count = 0
        try:
            async for message in self.ws:
                message_count += 1
                try:
                    msg = json.loads(message)
                    self.handle_message(msg)
                except Exception as e:
                    logger.error("❌ Error handling message #%d: %s", message_count, e, exc_info=True)
        except asyncio.CancelledError:
            logger.debug("🛑 Message receiver cancelled (processed %d messages)", message_count)
            raise
        except Exception as e:
            logger.warning("⚠️ Message receiver stopped: %s", e)
        finally:
            self._fail_pending(ConnectionError("CDP connection closed"))

    def _fail_pending(self, exc: Exception) -> None:
        for future in self.pending_responses.values():
            if not future.done():
                future.set_exception(exc)
        self.pending_responses.clear()
        for waiters in self._event_waiters.values():
            for future, _ in waiters:
                if not future.done():
                    future.set_exception(exc)
        self._event_waiters.clear()

    def _handle_command_reply(self, msg: dict) -> None:
        """Resolve the future waiting on a command reply."""
        cmd_id = msg.get("id")
        future = self.pending_responses.pop(cmd_id, None)
        if future is None or future.done():
            return
        if "error" in msg:
            logger.debug("📥 CDP error for id=%s: %s", cmd_id, msg["error"])
            future.set_exception(RuntimeError(f"CDP error: {msg['error'].get('message', msg['error'])}"))
        else:
            future.set_result(msg.get("result"))

    def _dispatch_event(self, method: str, params: dict) -> None:
        """Resolve one-shot waiters, then call persistent listeners in registration order."""
        remaining = []
        for future, predicate in self._event_waiters.pop(method, []):
            if future.done():
                continue
            if predicate is None or predicate(params):
                future.set_result(params)
            else:
                remaining.append((future, predicate))
        if remaining:
            self._event_waiters.setdefault(method, []).extend(remaining)

        if method == "Security.visibleSecurityStateChanged":
            state = params.get("visibleSecurityState", {}).get("securityState")
            if state:
                self.security_state = state

        for listener in list(self._listeners.get(method, [])):
            try:
                result = listener(params)
            except Exception as e:
                logger.error("❌ Listener for %s failed: %s", method, e, exc_info=True)
                continue
            # coroutine listeners may issue commands themselves, so never await them inline
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._on_listener_task_done)

    def _on_listener_task_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("❌ Async listener failed: %s", task.exception())


    # Public methods _______________________________________________________________________________________________________

    @property
    def is_open(self) -> bool:
        """Whether the WebSocket is connected and a page target is attached."""
        return self.ws is not None and not self._closed and self.page_session_id is not None

    async def open(self, url: str = "about:blank") -> None:
        """
        Connect the WebSocket, start the receiver and create + attach a fresh page target.
        Args:
            url: Initial URL of the new target.
        Raises:
            BrowserConnectionError: If no page target could be created or attached.
        """
        logger.info("🔌 Connecting to CDP: %s", self.ws_url)
        self.ws = await connect(uri=self.ws_url, max_size=None)
        self._receiver_task = asyncio.create_task(coro=self._message_receiver())

        create_result = await self.send_and_wait(method="Target.createTarget", params={"url": url}, timeout=5.0)
        self.target_id = (create_result or {}).get("targetId")
        if not self.target_id:
            raise BrowserConnectionError("Failed to create a browser tab")

        attach_result = await self.send_and_wait(
            method="Target.attachToTarget",
            params={"targetId": self.target_id, "flatten": True},
            timeout=5.0,
        )
        self.page_session_id = (attach_result or {}).get("sessionId")
        if not self.page_session_id:
            raise BrowserConnectionError("Failed to attach to the browser tab")
        logger.info("✅ Attached to target %s (sessionId=%s)", self.target_id, self.page_session_id)

    async def close(self) -> None:
        """Close the page target and the WebSocket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self.ws is not None and self.target_id:
            try:
                await self.send_and_wait(
                    method="Target.closeTarget",
                    params={"targetId": self.target_id},
                    timeout=2.0,
                )
            except Exception as e:
                logger.debug("⚠️ Target.closeTarget failed: %s", e)

        for task in list(self._listener_tasks):
            task.cancel()
        self._listener_tasks.clear()
        self._listeners.clear()

        if self._receiver_task is not None:
            self._receiver_task.cancel()
            try:
                await self._receiver_task
            except asyncio.CancelledError:
                pass
            self._receiver_task = None

        if self.ws is not None:
            await self.ws.close()
            self.ws = None
        self._fail_pending(ConnectionError("CDP session closed"))
        logger.info("🔌 CDP session closed (target=%s)", self.target_id)

    def add_event_listener(self, method: str, listener: EventListener) -> None:
        """
        Register a listener for a CDP event.
        Args:
            method: CDP event name, e.g. "Runtime.consoleAPICalled".
            listener: Called with the event params. May return an awaitable, which is scheduled as a task.
        """
        self._listeners.setdefault(method, []).append(listener)

    def remove_all_listeners(self) -> None:
        """Drop every registered listener."""
        self._listeners.clear()

    def expect_event(self, method: str, predicate: EventPredicate | None = None) -> asyncio.Future:
        """
        Return a future resolved with the params of the next event named method (matching predicate, if given).
        Create it before sending the command that triggers the event.
        """
        future = asyncio.get_running_loop().create_future()
        self._event_waiters.setdefault(method, []).append((future, predicate))
        return future

    def handle_message(self, msg: dict) -> None:
        """Handle an incoming CDP message (command reply or event)."""
        if "id" in msg:
            self._handle_command_reply(msg)
            return

        method = msg.get("method")
        if not method:
            return

        # in flatten mode, events of other targets carry their own sessionId
        msg_session_id = msg.get("sessionId")
        if msg_session_id and self.page_session_id and msg_session_id != self.page_session_id:
            return

        self._dispatch_event(method, msg.get("params", {}))

    async def send(self, method: str, params: dict | None = None, cmd_id: int | None = None) -> int:
        """
        Send CDP command and return sequence ID.
        Args:
            method (str): The CDP method to send. For example, "Page.navigate".
            params (dict | None): The parameters to send with the command.
            cmd_id (int | None): Pre-allocated sequence ID; a new one is taken if None.
        Returns:
            int: The sequence ID of the command.
        """
        if self.ws is None:
            raise RuntimeError("WebSocket not connected")

        if cmd_id is None:
            self.seq += 1
            cmd_id = self.seq

        msg: dict[str, Any] = {
            "id": cmd_id,
            "method": method,
            "params": params or {},
        }
        domain_name = method.split(".")[0]
        if self.page_session_id and domain_name not in self.BROWSER_LEVEL_DOMAINS:
            msg["sessionId"] = self.page_session_id

        await self.ws.send(json.dumps(msg))
        return cmd_id

    async def send_and_wait(
        self,
        method: str,
        params: dict | None = None,
        timeout: float = 10.0,
    ) -> dict | None:
        """
        Send CDP command and wait for response asynchronously.
        Args:
            method: The CDP method to send.
            params: The parameters to send with the command.
            timeout: Timeout in seconds.
        Returns:
            The result from the CDP command.
        Raises:
            TimeoutError: If no reply arrived in time.
            RuntimeError: If the browser replied with an error.
        """
        # register the future before sending so a fast reply cannot be missed
        self.seq += 1
        cmd_id = self.seq
        future = asyncio.get_running_loop().create_future()
        self.pending_responses[cmd_id] = future
        try:
            await self.send(method, params, cmd_id=cmd_id)
            return await asyncio.wait_for(fut=future, timeout=timeout)
        except asyncio.TimeoutError:
            self.pending_responses.pop(cmd_id, None)
            raise TimeoutError(f"CDP command {method} timed out after {timeout} seconds")
        except Exception:
            self.pending_responses.pop(cmd_id, None)
            raise

    async def enable_domain(
        self,
        domain: str,
        params: dict | None = None,
        timeout: float = 5.0,
        optional: bool = False,
    ) -> None:
        """
        Enable a CDP domain idempotently (skip if already enabled).
        Args:
            domain: The CDP domain name (e.g., "Page", "Network", "Runtime").
            params: Optional parameters for the enable command.
            timeout: Timeout in seconds.
            optional: If True, a failure is logged and swallowed instead of raised.
        """
        if domain in self._enabled_domains:
            logger.debug("⏭️ Domain %s already enabled, skipping", domain)
            return

        try:
            await self.send_and_wait(method=f"{domain}.enable", params=params, timeout=timeout)
        except Exception as e:
            if not optional:
                raise
            logger.warning("⚠️ Failed to enable optional domain %s: %s", domain, e)
            return

        self._enabled_domains.add(domain)
        logger.debug("✅ Domain %s enabled", domain)

    async def navigate(
        self,
        url: str,
        wait_event: str | None = "Page.loadEventFired",
        wait_predicate: EventPredicate | None = None,
        timeout: float = 30.0,
    ) -> bool:
        """
        Navigate the page and optionally wait for a load signal.
        Args:
            url: Destination URL (already validated by the caller).
            wait_event: CDP event that signals the page is loaded, or None to not wait.
            wait_predicate: Optional filter on the wait event's params (e.g. a lifecycle event name).
            timeout: Seconds to wait for the navigation reply and, separately, the load signal.
        Returns:
            True if the load signal was seen (or not awaited), False if waiting for it timed out.
        Raises:
            NavigationError: If the browser rejected the navigation.
        """
        load_future = self.expect_event(wait_event, wait_predicate) if wait_event else None
        try:
            result = await self.send_and_wait(method="Page.navigate", params={"url": url}, timeout=timeout)
        except Exception:
            if load_future is not None:
                load_future.cancel()
            raise

        error_text = (result or {}).get("errorText")
        if error_text:
            if load_future is not None:
                load_future.cancel()
            logger.warning("⚠️ Navigation to %s failed: %s", url, error_text)
            raise NavigationError("Navigation failed")

        if load_future is None:
            return True
        try:
            await asyncio.wait_for(fut=load_future, timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("⏱️ No load event for %s within %s seconds", url, timeout)
            return False

    async def evaluate(
        self,
        expression: str,
        timeout: float = 30.0,
        await_promise: bool = True,
    ) -> Any:
        """
        Evaluate a JavaScript expression in the page and return its value.
        Args:
            expression: JavaScript source.
            timeout: Seconds before the evaluation is abandoned.
            await_promise: Whether to await a returned promise.
        Returns:
            The JSON-serializable result value (None for undefined).
        Raises:
            ScriptExecutionError: If the script threw or timed out.
        """
        try:
            reply = await self.send_and_wait(
                method="Runtime.evaluate",
                params={
                    "expression": expression,
                    "returnByValue": True,
                    "awaitPromise": await_promise,
                },
                timeout=timeout,
            )
        except TimeoutError as e:
            raise ScriptExecutionError("Script execution timed out") from e

        reply = reply or {}
        details = reply.get("exceptionDetails")
        if details:
            description = (details.get("exception") or {}).get("description") or details.get("text") or "Error"
            first_line = description.splitlines()[0][:200] if description else "Error"
            raise ScriptExecutionError(f"Script threw: {first_line}")

        remote_object = reply.get("result", {})
        if "value" in remote_object:
            return remote_object["value"]
        if remote_object.get("type") == "undefined":
            return None
        return remote_object.get("description")

    async def add_script_on_new_document(self, source: str) -> str | None:
        """Install a script evaluated before any page script on every new document."""
        result = await self.send_and_wait(
            method="Page.addScriptToEvaluateOnNewDocument",
            params={"source": source},
        )
        return (result or {}).get("identifier")

    async def capture_screenshot(self, image_format: str = "png") -> str:
        """
        Capture the viewport.
        Returns:
            Base64-encoded image data.
        """
        result = await self.send_and_wait(method="Page.captureScreenshot", params={"format": image_format})
        return (result or {}).get("data", "")

    async def get_response_body(self, request_id: str, timeout: float = 10.0) -> tuple[str, bool]:
        """
        Fetch a response body captured by the Network domain.
        Returns:
            (body, base64_encoded)
        """
        result = await self.send_and_wait(
            method="Network.getResponseBody",
            params={"requestId": request_id},
            timeout=timeout,
        ) or {}
        return result.get("body", ""), bool(result.get("base64Encoded", False))

    def get_security_state(self) -> str:
        """Return the last security state reported by the Security domain, or 'unknown'."""
        return self.security_state

    async def get_current_url(self, timeout: float = 3.0) -> str | None:
        """
        Return the current page URL using CDP. Uses navigation history first, then JS evaluation.
        Args:
            timeout: Timeout per CDP call.
        """
        try:
            browser_history = await self.send_and_wait(method="Page.getNavigationHistory", timeout=timeout)
            current_url: str | None = None
            if browser_history:
                current_index = browser_history.get("currentIndex", 0)
                entries = browser_history.get("entries", [])
                current_entry = entries[current_index] if 0 <= current_index < len(entries) else None
                current_url = current_entry.get("url") if current_entry else None
            if not current_url:
                current_url = await self.evaluate("window.location.href", timeout=timeout)
            return current_url
        except Exception as e:
            logger.debug("⚠️ Failed to get current URL: %s", e)
            return None


async def open_cdp_session(config: BrowserConnectionConfig) -> AsyncCDPSession:
    """
    Default session factory: find (or launch) the browser, then open a session on a new tab.
    Args:
        config: Connection configuration (host already checked against the loopback allow-list).
    Returns:
        An open AsyncCDPSession.
    """
    if config.auto_launch:
        running = await asyncio.to_thread(ensure_chrome_running, config.port, config.headless)
        if not running:
            raise BrowserConnectionError("Could not launch a local Chrome")

    ws_url = await asyncio.to_thread(get_browser_websocket_url, config.remote_debugging_address)
    session = AsyncCDPSession(ws_url=ws_url)
    try:
        await session.open()
    except BaseException:
        await session.close()
        raise
    return session
