"""
glassbox/cdp/monitors/async_console_monitor.py

Async console monitor for CDP.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import TYPE_CHECKING, Any, ClassVar

from glassbox.cdp.bounded_store import BoundedStore
from glassbox.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from glassbox.data_models.cdp import BaseCDPEvent, ConsoleMessage, ConsoleMessageType, dump_events
from glassbox.security.validators import clamp_numeric_limit, require_valid, validate_script
from glassbox.utils.exceptions import InputValidationError, MonitorNotActiveError
from glassbox.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from glassbox.cdp.async_cdp_session import AsyncCDPSession

logger = get_logger(name=__name__)


class AsyncConsoleMonitor(AbstractAsyncMonitor):
    """
    Async console monitor for CDP.
    Captures console API calls, uncaught exceptions and browser log entries, and runs scripts in the page.
    """

    # Class attributes _____________________________________________________________________________________________________

    TOOL_PREFIX: ClassVar[str] = "console"
    DISPLAY_NAME: ClassVar[str] = "Console monitoring"

    MAX_MESSAGES: ClassVar[int] = 1000
    MESSAGE_MAX_CHARS: ClassVar[int] = 1000
    SCRIPT_RATE_LIMIT: ClassVar[tuple[int, float]] = (20, 60.0)
    # time given to console output of an executed script to arrive
    SCRIPT_CONSOLE_SETTLE_SECONDS: ClassVar[float] = 0.1


    # Abstract method implementations ______________________________________________________________________________________

    @classmethod
    def get_event_summary(cls, event: BaseCDPEvent) -> dict[str, Any]:
        """
        Extract a lightweight summary of a console message.
        Args:
            event: A ConsoleMessage.
        Returns:
            Type and the first 100 characters of the text.
        """
        return {
            "type": cls.get_monitor_category(),
            "level": getattr(event, "type", None),
            "text": (getattr(event, "text", "") or "")[:100],
        }

    def _reset_stores(self) -> None:
        self.messages.clear()

    def _get_counts(self) -> dict[str, int]:
        return {"messages": len(self.messages)}

    def _recent_events(self, n: int) -> list[BaseCDPEvent]:
        return self.messages.latest(n)

    def _register_listeners(self, session: AsyncCDPSession, generation: int) -> None:
        self._listen(session, generation, "Runtime.consoleAPICalled", self._on_console_api_called)
        self._listen(session, generation, "Runtime.exceptionThrown", self._on_exception_thrown)
        self._listen(session, generation, "Log.entryAdded", self._on_log_entry_added)

    async def _prepare_session(self, session: AsyncCDPSession, **options: Any) -> None:
        await session.enable_domain("Log", optional=True)


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        """
        Initialize AsyncConsoleMonitor. Arguments are passed to AbstractAsyncMonitor.
        """
        super().__init__(*args, **kwargs)
        self.messages: BoundedStore[ConsoleMessage] = BoundedStore(max_items=self.MAX_MESSAGES)


    # Static methods _______________________________________________________________________________________________________

    @staticmethod
    def _format_remote_object(arg: dict[str, Any]) -> str:
        """Render a Runtime.RemoteObject the way the console would print it."""
        if "value" in arg:
            value = arg["value"]
            return value if isinstance(value, str) else str(value)
        if "unserializableValue" in arg:
            return str(arg["unserializableValue"])
        if arg.get("type") == "undefined":
            return "undefined"
        return str(arg.get("description") or arg.get("type") or "")

    @staticmethod
    def _top_frame(stack_trace: dict[str, Any] | None) -> dict[str, Any]:
        frames = (stack_trace or {}).get("callFrames") or []
        return frames[0] if frames else {}


    # Private methods ______________________________________________________________________________________________________

    def _append(
        self,
        message_type: ConsoleMessageType,
        text: str,
        url: str | None = None,
        line_number: int | None = None,
        column_number: int | None = None,
    ) -> None:
        self.messages.append(
            ConsoleMessage(
                type=message_type,
                text=text[:self.MESSAGE_MAX_CHARS],
                url=url or None,
                line_number=line_number,
                column_number=column_number,
            )
        )

    def _on_console_api_called(self, params: dict[str, Any]) -> None:
        """Handle Runtime.consoleAPICalled event."""
        text = " ".join(self._format_remote_object(arg) for arg in params.get("args", []))
        frame = self._top_frame(params.get("stackTrace"))
        self._append(
            message_type=ConsoleMessageType.from_cdp(params.get("type")),
            text=text,
            url=frame.get("url"),
            line_number=frame.get("lineNumber"),
            column_number=frame.get("columnNumber"),
        )

    def _on_exception_thrown(self, params: dict[str, Any]) -> None:
        """Handle Runtime.exceptionThrown event (uncaught page errors)."""
        details = params.get("exceptionDetails", {})
        description = (details.get("exception") or {}).get("description")
        text = description or details.get("text") or "Uncaught exception"
        self._append(
            message_type=ConsoleMessageType.ERROR,
            text=text,
            url=details.get("url"),
            line_number=details.get("lineNumber"),
            column_number=details.get("columnNumber"),
        )

    def _on_log_entry_added(self, params: dict[str, Any]) -> None:
        """Handle Log.entryAdded event (browser-generated messages, e.g. failed resource loads)."""
        entry = params.get("entry", {})
        self._append(
            message_type=ConsoleMessageType.from_cdp(entry.get("level")),
            text=entry.get("text", ""),
            url=entry.get("url"),
            line_number=entry.get("lineNumber"),
        )


    # Public methods _______________________________________________________________________________________________________

    def get_messages(self, type: str = "all", limit: Any = 100) -> dict[str, Any]:
        """
        Return captured console messages, newest last.
        Args:
            type: Message type to keep ("log", "warn", "error", "info", "debug") or "all".
            limit: Maximum number of messages returned (clamped to 1..10000).
        """
        allowed = {"all", *(member.value for member in ConsoleMessageType)}
        if type not in allowed:
            raise InputValidationError(f"Invalid message type: {type}. Expected one of {sorted(allowed)}")
        max_results = clamp_numeric_limit(limit, minimum=1, maximum=10_000)

        messages = self.messages.snapshot()
        if type != "all":
            messages = [message for message in messages if message.type == type]
        selected = messages[-max_results:]

        return {
            "is_monitoring": self.is_active,
            "total_messages": len(self.messages),
            "filtered_count": len(selected),
            "type_counts": dict(Counter(message.type.value for message in self.messages)),
            "messages": dump_events(selected),
        }

    def clear_messages(self) -> dict[str, Any]:
        """Empty the message store."""
        cleared = self.messages.clear()
        return {"message": f"Cleared {cleared} console messages", "cleared": cleared}

    async def execute_script(self, script: Any) -> dict[str, Any]:
        """
        Evaluate a script in the monitored page.
        Args:
            script: JavaScript source; must pass validate_script.
        Returns:
            The script's result and the console messages captured while it ran.
        """
        session = self._require_active()
        generation = self._active_generation
        validated_script = require_valid(validate_script(script), "script")
        self._check_rate("script_execution", *self.SCRIPT_RATE_LIMIT)

        appended_before = self.messages.total_appended
        result = await self._call_upstream(
            "Script execution",
            session.evaluate(validated_script, timeout=self.session_manager.config.script_timeout),
        )
        await asyncio.sleep(self.SCRIPT_CONSOLE_SETTLE_SECONDS)
        if generation is None or not self._is_current(generation):
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} stopped while the script ran")

        new_count = max(0, self.messages.total_appended - appended_before)
        captured = self.messages.latest(min(new_count, len(self.messages)))
        logger.info("🧪 Script executed (%d console messages)", len(captured))
        return {
            "result": result,
            "console_messages": dump_events(captured),
        }
