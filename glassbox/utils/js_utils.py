"""
glassbox/utils/js_utils.py

JavaScript injection utilities for CDP operations.

All JavaScript code that gets injected into the browser should be generated
through functions in this module for consistency and maintainability.
"""

import json

VITALS_GLOBAL = "__glassboxVitals"


def generate_vitals_observer_js() -> str:
    """Generate the script installed on every new document to collect the five vitals.

    Populates window.__glassboxVitals with LCP, FID, CLS, FCP and TTFB (null until observed).

    Returns:
        JavaScript code for Page.addScriptToEvaluateOnNewDocument.
    """
    return f"""
(function() {{
    const vitals = {{ LCP: null, FID: null, CLS: null, FCP: null, TTFB: null }};
    window.{VITALS_GLOBAL} = vitals;

    function observe(type, callback) {{
        try {{
            const observer = new PerformanceObserver((list) => callback(list.getEntries()));
            observer.observe({{ type: type, buffered: true }});
        }} catch (e) {{
            // entry type not supported by this browser
        }}
    }}

    if ('PerformanceObserver' in window) {{
        observe('largest-contentful-paint', (entries) => {{
            const last = entries[entries.length - 1];
            if (last) vitals.LCP = last.startTime;
        }});
        observe('paint', (entries) => {{
            for (const entry of entries) {{
                if (entry.name === 'first-contentful-paint') vitals.FCP = entry.startTime;
            }}
        }});
        let clsValue = 0;
        observe('layout-shift', (entries) => {{
            for (const entry of entries) {{
                if (!entry.hadRecentInput) clsValue += entry.value;
            }}
            vitals.CLS = clsValue;
        }});
        observe('first-input', (entries) => {{
            for (const entry of entries) {{
                vitals.FID = entry.processingStart - entry.startTime;
            }}
        }});
    }}

    window.addEventListener('load', () => {{
        const nav = performance.getEntriesByType('navigation')[0];
        if (nav) vitals.TTFB = nav.responseStart - nav.requestStart;
    }});
}})();
"""


def generate_read_vitals_js() -> str:
    """Generate JavaScript returning a copy of the collected vitals (or all-null if the observer is missing)."""
    return f"""
(function() {{
    const vitals = window.{VITALS_GLOBAL};
    if (!vitals) {{
        return {{ LCP: null, FID: null, CLS: null, FCP: null, TTFB: null }};
    }}
    return Object.assign({{}}, vitals);
}})()
"""


def generate_performance_entries_js(entry_type: str | None) -> str:
    """Generate JavaScript to list performance entries.

    Args:
        entry_type: Entry type to filter on (e.g. "resource"), or None for all entries.

    Returns:
        JavaScript code that returns a JSON-safe list of entries.
    """
    return f"""
(function() {{
    const type = {json.dumps(entry_type)};
    const entries = type ? performance.getEntriesByType(type) : performance.getEntries();
    return entries.map(entry => {{
        const plain = (typeof entry.toJSON === 'function') ? entry.toJSON() : {{}};
        plain.name = entry.name;
        plain.entryType = entry.entryType;
        plain.startTime = entry.startTime;
        plain.duration = entry.duration;
        return plain;
    }});
}})()
"""


def generate_navigation_timing_js() -> str:
    """Generate JavaScript returning the legacy navigation timing fields."""
    return """
(function() {
    const timing = performance.timing;
    return {
        navigationStart: timing.navigationStart,
        domainLookupStart: timing.domainLookupStart,
        domainLookupEnd: timing.domainLookupEnd,
        connectStart: timing.connectStart,
        connectEnd: timing.connectEnd,
        requestStart: timing.requestStart,
        responseStart: timing.responseStart,
        responseEnd: timing.responseEnd,
        domContentLoadedEventStart: timing.domContentLoadedEventStart,
        domContentLoadedEventEnd: timing.domContentLoadedEventEnd,
        loadEventStart: timing.loadEventStart,
        loadEventEnd: timing.loadEventEnd
    };
})()
"""


def generate_page_info_js() -> str:
    """Generate JavaScript returning the document title, URL and ready state."""
    return """
(function() {
    return {
        title: document.title,
        url: window.location.href,
        readyState: document.readyState
    };
})()
"""


def generate_element_center_js(selector: str) -> str:
    """Generate JavaScript to find an element and get its click coordinates.

    Args:
        selector: CSS selector for the element (already validated).

    Returns:
        JavaScript code that returns element coordinates or error info.
    """
    return f"""
(function() {{
    const selector = {json.dumps(selector)};
    const element = document.querySelector(selector);

    if (!element) {{
        return {{ error: 'Element not found: ' + selector }};
    }}

    element.scrollIntoView({{ behavior: 'auto', block: 'center', inline: 'center' }});
    const rect = element.getBoundingClientRect();

    if (rect.width === 0 || rect.height === 0) {{
        return {{ error: 'Element has no dimensions: ' + selector }};
    }}

    return {{
        x: rect.left + rect.width / 2,
        y: rect.top + rect.height / 2
    }};
}})()
"""


def generate_scroll_page_js() -> str:
    """Generate JavaScript to scroll the window down by one viewport height."""
    return """
(function() {
    window.scrollBy({ left: 0, top: window.innerHeight, behavior: 'auto' });
    return { success: true, scrollY: window.scrollY };
})()
"""
