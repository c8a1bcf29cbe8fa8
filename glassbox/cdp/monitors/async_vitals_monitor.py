"""
glassbox/cdp/monitors/async_vitals_monitor.py

Async web vitals monitor for CDP.

Contains:
- AuditScorer: Interface of the audit engine that turns a vitals sample into category scores
- ThresholdAuditScorer: Default scorer (100 minus 20 per vital over its "good" threshold)
- AsyncVitalsMonitor: Measures LCP, FID, CLS, FCP and TTFB through an injected observer script
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar

from glassbox.cdp.bounded_store import BoundedStore
from glassbox.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from glassbox.data_models.cdp import BaseCDPEvent, VitalsSample, dump_events
from glassbox.security.validators import clamp_numeric_limit, require_valid, validate_css_selector
from glassbox.utils.exceptions import GlassboxError, InputValidationError, MonitorNotActiveError
from glassbox.utils.js_utils import (
    generate_element_center_js,
    generate_performance_entries_js,
    generate_read_vitals_js,
    generate_scroll_page_js,
    generate_vitals_observer_js,
)
from glassbox.utils.logger import get_logger

if TYPE_CHECKING:  # avoid circular import
    from glassbox.cdp.async_cdp_session import AsyncCDPSession

logger = get_logger(name=__name__)

# metric -> (good upper bound, needs-improvement upper bound)
VITALS_THRESHOLDS: dict[str, tuple[float, float]] = {
    "LCP": (2500, 4000),
    "FID": (100, 300),
    "CLS": (0.1, 0.25),
    "FCP": (1800, 3000),
    "TTFB": (800, 1800),
}


class AuditScorer(ABC):
    """
    Audit engine collaborator. Implementations may run a real auditing tool.
    """

    @abstractmethod
    async def score(self, vitals: VitalsSample, categories: list[str], device: str) -> dict[str, float | None]:
        """
        Score a page.
        Args:
            vitals: The latest vitals sample of the page.
            categories: Audit categories requested (e.g. "performance", "seo").
            device: "mobile" or "desktop".
        Returns:
            Category name -> score in 0..100 (None when the category is not scored).
        """
        pass


class ThresholdAuditScorer(AuditScorer):
    """
    Scores only the performance category: 100, minus 20 for each vital over its "good" threshold.
    """

    @staticmethod
    def calculate_performance_score(vitals: VitalsSample) -> float:
        score = 100
        for metric, value in vitals.metric_values().items():
            if value and value > VITALS_THRESHOLDS[metric][0]:
                score -= 20
        return float(max(0, score))

    async def score(self, vitals: VitalsSample, categories: list[str], device: str) -> dict[str, float | None]:
        return {
            category: self.calculate_performance_score(vitals) if category == "performance" else None
            for category in categories
        }


class AsyncVitalsMonitor(AbstractAsyncMonitor):
    """
    Async web vitals monitor for CDP.
    Installs a PerformanceObserver script on every document and samples it on demand or periodically.
    """

    # Class attributes _____________________________________________________________________________________________________

    TOOL_PREFIX: ClassVar[str] = "wcv"
    DISPLAY_NAME: ClassVar[str] = "Web Core Vitals monitoring"

    MAX_HISTORY: ClassVar[int] = 500
    CONTINUOUS_INTERVAL_SECONDS: ClassVar[float] = 30.0
    CONTINUOUS_WAIT_SECONDS: ClassVar[int] = 1
    MAX_WAIT_SECONDS: ClassVar[int] = 60
    MAX_PERFORMANCE_ENTRIES: ClassVar[int] = 50
    INTERACTION_SETTLE_SECONDS: ClassVar[float] = 0.1
    INTERACTION_RATE_LIMIT: ClassVar[tuple[int, float]] = (30, 60.0)

    AUDIT_CATEGORIES: ClassVar[tuple[str, ...]] = ("performance", "accessibility", "best-practices", "seo")
    AUDIT_DEVICES: ClassVar[tuple[str, ...]] = ("mobile", "desktop")
    INTERACTION_ACTIONS: ClassVar[tuple[str, ...]] = ("click", "scroll", "keypress")
    PERFORMANCE_ENTRY_TYPES: ClassVar[frozenset[str]] = frozenset({
        "navigation",
        "resource",
        "measure",
        "mark",
        "paint",
        "layout-shift",
        "largest-contentful-paint",
    })


    # Abstract method implementations ______________________________________________________________________________________

    @classmethod
    def get_event_summary(cls, event: BaseCDPEvent) -> dict[str, Any]:
        """
        Extract a lightweight summary of a vitals sample.
        Args:
            event: A VitalsSample.
        Returns:
            The five vitals and the audit score, if any.
        """
        values = event.metric_values() if isinstance(event, VitalsSample) else {}
        return {
            "type": cls.get_monitor_category(),
            **values,
            "performance_score": getattr(event, "performance_score", None),
        }

    def _reset_stores(self) -> None:
        self.history.clear()

    def _get_counts(self) -> dict[str, int]:
        return {"measurements": len(self.history)}

    def _recent_events(self, n: int) -> list[BaseCDPEvent]:
        return self.history.latest(n)

    def _register_listeners(self, session: AsyncCDPSession, generation: int) -> None:
        # vitals are pulled from the page, not pushed as events
        return None

    async def _prepare_session(self, session: AsyncCDPSession, **options: Any) -> None:
        await session.add_script_on_new_document(generate_vitals_observer_js())

    async def _after_start(self, continuous: bool = False, **options: Any) -> None:
        if continuous:
            self.context.timers.set_interval(
                key=self._timer_key,
                callback=self._sample_continuously,
                interval=self.CONTINUOUS_INTERVAL_SECONDS,
            )
            logger.info("⏱️ Continuous vitals sampling every %ss", self.CONTINUOUS_INTERVAL_SECONDS)

    async def _before_stop(self) -> None:
        self.context.timers.clear_timeout(self._timer_key)

    def _stop_summary(self) -> dict[str, Any]:
        return {
            "total_measurements": len(self.history),
            "final_summary": self.calculate_summary_stats(self.history.snapshot()) if self.history else None,
        }


    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, *args: Any, audit_scorer: AuditScorer | None = None, **kwargs: Any) -> None:
        """
        Initialize AsyncVitalsMonitor.
        Args:
            audit_scorer: Audit engine; defaults to ThresholdAuditScorer.
            Other arguments are passed to AbstractAsyncMonitor.
        """
        super().__init__(*args, **kwargs)
        self.audit_scorer = audit_scorer or ThresholdAuditScorer()
        self.history: BoundedStore[VitalsSample] = BoundedStore(max_items=self.MAX_HISTORY)
        self._timer_key = f"{self.TOOL_PREFIX}:continuous:{id(self)}"


    # Static methods _______________________________________________________________________________________________________

    @staticmethod
    def grade_vitals(vitals: VitalsSample) -> dict[str, str]:
        """Grade each measured vital as Good / Needs Improvement / Poor."""
        grades: dict[str, str] = {}
        for metric, value in vitals.metric_values().items():
            if value is None:
                continue
            good, needs_improvement = VITALS_THRESHOLDS[metric]
            if value <= good:
                grades[metric] = "Good"
            elif value <= needs_improvement:
                grades[metric] = "Needs Improvement"
            else:
                grades[metric] = "Poor"
        return grades

    @staticmethod
    def calculate_trends(samples: list[VitalsSample]) -> dict[str, dict[str, Any]]:
        """
        Compare first and last measured value of each vital.
        Only vitals with at least two measurements get a trend.
        """
        trends: dict[str, dict[str, Any]] = {}
        if len(samples) < 2:
            return trends
        for metric in VITALS_THRESHOLDS:
            values = [sample.metric_values()[metric] for sample in samples]
            values = [value for value in values if value is not None]
            if len(values) < 2:
                continue
            first, last = values[0], values[-1]
            trends[metric] = {
                "trend": "increasing" if last > first else "decreasing" if last < first else "stable",
                "change": last - first,
                "average": sum(values) / len(values),
            }
        return trends

    @staticmethod
    def calculate_summary_stats(samples: list[VitalsSample]) -> dict[str, dict[str, Any]]:
        """Count, average, min, max and latest of each vital over samples."""
        summary: dict[str, dict[str, Any]] = {}
        for metric in VITALS_THRESHOLDS:
            values = [sample.metric_values()[metric] for sample in samples]
            values = [value for value in values if value is not None]
            if not values:
                continue
            summary[metric] = {
                "count": len(values),
                "average": sum(values) / len(values),
                "min": min(values),
                "max": max(values),
                "latest": values[-1],
            }
        return summary


    # Private methods ______________________________________________________________________________________________________

    async def _read_vitals(self, session: AsyncCDPSession) -> dict[str, Any]:
        raw = await self._call_upstream(
            "Reading vitals",
            session.evaluate(generate_read_vitals_js(), timeout=self.session_manager.config.script_timeout),
        )
        return raw or {}

    async def _build_sample(self, session: AsyncCDPSession, performance_score: float | None = None) -> VitalsSample:
        raw = await self._read_vitals(session)
        url = await session.get_current_url() or self.current_url or ""
        return VitalsSample(
            lcp=raw.get("LCP"),
            fid=raw.get("FID"),
            cls=raw.get("CLS"),
            fcp=raw.get("FCP"),
            ttfb=raw.get("TTFB"),
            performance_score=performance_score,
            url=url,
        )

    async def _sample_continuously(self) -> None:
        if not self.is_active:
            self.context.timers.clear_timeout(self._timer_key)
            return
        try:
            await self.measure_vitals(wait_seconds=self.CONTINUOUS_WAIT_SECONDS)
        except GlassboxError as e:
            logger.warning("⚠️ Continuous vitals sample failed: %s", e)

    async def _click(self, session: AsyncCDPSession, selector: str) -> None:
        position = await self._call_upstream(
            "Locating element",
            session.evaluate(generate_element_center_js(selector), timeout=self.session_manager.config.script_timeout),
        ) or {}
        if position.get("error"):
            raise InputValidationError(position["error"])
        for event_type in ("mousePressed", "mouseReleased"):
            await self._call_upstream(
                "Dispatching click",
                session.send_and_wait(
                    method="Input.dispatchMouseEvent",
                    params={
                        "type": event_type,
                        "x": position["x"],
                        "y": position["y"],
                        "button": "left",
                        "clickCount": 1,
                    },
                ),
            )

    def _raise_if_stale_audit(self, generation: int | None) -> None:
        # the monitor may have been stopped or restarted while scoring
        if generation is None or not self._is_current(generation):
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} stopped while auditing")

    async def _press_tab(self, session: AsyncCDPSession) -> None:
        for event_type in ("keyDown", "keyUp"):
            await self._call_upstream(
                "Dispatching key press",
                session.send_and_wait(
                    method="Input.dispatchKeyEvent",
                    params={"type": event_type, "key": "Tab", "code": "Tab", "windowsVirtualKeyCode": 9},
                ),
            )


    # Public methods _______________________________________________________________________________________________________

    async def measure_vitals(self, wait_seconds: Any = 3) -> dict[str, Any]:
        """
        Wait for the page to settle, then record one vitals sample.
        Args:
            wait_seconds: Seconds to wait first (clamped to 0..60).
        """
        self._require_active()
        generation = self._active_generation
        await asyncio.sleep(clamp_numeric_limit(wait_seconds, minimum=0, maximum=self.MAX_WAIT_SECONDS))
        # the monitor may have been stopped or restarted while waiting
        if generation is None or not self._is_current(generation):
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} stopped while measuring")
        session = self._require_active()

        sample = await self._build_sample(session)
        if not self._is_current(generation):
            raise MonitorNotActiveError(f"{self.DISPLAY_NAME} stopped while measuring")
        self.history.append(sample)
        return {
            "current_vitals": sample.model_dump(mode="json"),
            "vitals_grading": self.grade_vitals(sample),
            "measurement_time": datetime.now(tz=timezone.utc).isoformat(),
        }

    async def run_audit(self, categories: list[str] | None = None, device: str = "mobile") -> dict[str, Any]:
        """
        Score the page through the audit scorer.
        Args:
            categories: Categories to audit; defaults to all of AUDIT_CATEGORIES.
            device: "mobile" or "desktop".
        """
        session = self._require_active()
        generation = self._active_generation
        selected = list(categories) if categories else list(self.AUDIT_CATEGORIES)
        unknown = [category for category in selected if category not in self.AUDIT_CATEGORIES]
        if unknown:
            raise InputValidationError(f"Invalid audit categories: {unknown}")
        if device not in self.AUDIT_DEVICES:
            raise InputValidationError(f"Invalid device: {device}. Expected one of {list(self.AUDIT_DEVICES)}")

        sample = await self._build_sample(session)
        scores = await self._call_upstream("Audit", self.audit_scorer.score(sample, selected, device))
        self._raise_if_stale_audit(generation)

        async def read_metrics() -> dict[str, float]:
            await session.enable_domain("Performance")
            reply = await session.send_and_wait(method="Performance.getMetrics") or {}
            return {item["name"]: item["value"] for item in reply.get("metrics", []) if "name" in item}

        metrics = await self._call_upstream("Reading performance metrics", read_metrics())
        self._raise_if_stale_audit(generation)

        scored_sample = sample.model_copy(update={"performance_score": scores.get("performance")})
        self.history.append(scored_sample)
        return {
            "url": scored_sample.url,
            "timestamp": scored_sample.timestamp,
            "device": device,
            "categories": selected,
            "scores": scores,
            "metrics": {**scored_sample.metric_values(), **metrics},
            "web_core_vitals": scored_sample.metric_values(),
        }

    def get_vitals_history(self, limit: Any = 10) -> dict[str, Any]:
        """
        Return the most recent samples and per-vital trends over them.
        Args:
            limit: Number of samples (clamped to 1..MAX_HISTORY).
        """
        recent = self.history.latest(clamp_numeric_limit(limit, minimum=1, maximum=self.MAX_HISTORY))
        return {
            "total_measurements": len(self.history),
            "recent_measurements": dump_events(recent),
            "trends": self.calculate_trends(recent),
            "is_monitoring": self.is_active,
        }

    async def get_performance_entries(self, entry_type: str | None = None) -> dict[str, Any]:
        """
        List Performance API entries of the page (the last MAX_PERFORMANCE_ENTRIES).
        Args:
            entry_type: One of PERFORMANCE_ENTRY_TYPES, or None for all.
        """
        session = self._require_active()
        if entry_type is not None and entry_type not in self.PERFORMANCE_ENTRY_TYPES:
            raise InputValidationError(
                f"Invalid entry type: {entry_type}. Expected one of {sorted(self.PERFORMANCE_ENTRY_TYPES)}"
            )
        entries = await self._call_upstream(
            "Reading performance entries",
            session.evaluate(
                generate_performance_entries_js(entry_type),
                timeout=self.session_manager.config.script_timeout,
            ),
        ) or []
        return {
            "entry_type": entry_type or "all",
            "total_entries": len(entries),
            "entries": entries[-self.MAX_PERFORMANCE_ENTRIES:],
        }

    async def simulate_interaction(self, action: str, target: Any = "body") -> dict[str, Any]:
        """
        Perform a user interaction and report how the vitals changed.
        Args:
            action: "click", "scroll" or "keypress".
            target: CSS selector clicked for "click"; must pass validate_css_selector.
        """
        session = self._require_active()
        if action not in self.INTERACTION_ACTIONS:
            raise InputValidationError(f"Invalid action: {action}. Expected one of {list(self.INTERACTION_ACTIONS)}")
        selector = require_valid(validate_css_selector(target), "selector")
        self._check_rate("interaction", *self.INTERACTION_RATE_LIMIT)

        vitals_before = await self._read_vitals(session)
        if action == "click":
            await self._click(session, selector)
        elif action == "scroll":
            await self._call_upstream(
                "Scrolling",
                session.evaluate(generate_scroll_page_js(), timeout=self.session_manager.config.script_timeout),
            )
        else:
            await self._press_tab(session)

        await asyncio.sleep(self.INTERACTION_SETTLE_SECONDS)
        vitals_after = await self._read_vitals(session)
        return {
            "action": action,
            "target": selector,
            "vitals_before": vitals_before,
            "vitals_after": vitals_after,
            "fid_measured": vitals_after.get("FID") is not None and vitals_before.get("FID") is None,
        }
