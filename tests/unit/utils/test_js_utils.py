"""
Tests for glassbox/utils/js_utils.py
"""

from glassbox.utils.js_utils import (
    VITALS_GLOBAL,
    generate_element_center_js,
    generate_performance_entries_js,
    generate_read_vitals_js,
    generate_vitals_observer_js,
)


class TestJsGenerators:
    """Tests for the injected JavaScript generators."""

    def test_observer_and_reader_share_global(self) -> None:
        assert f"window.{VITALS_GLOBAL} = vitals" in generate_vitals_observer_js()
        assert f"window.{VITALS_GLOBAL}" in generate_read_vitals_js()

    def test_selector_is_json_encoded(self) -> None:
        """Quotes in a selector cannot break out of the string literal."""
        js = generate_element_center_js("a[title='x\"y']")
        assert 'const selector = "a[title=\'x\\"y\']";' in js

    def test_performance_entries_type(self) -> None:
        assert 'const type = "paint";' in generate_performance_entries_js("paint")
        assert "const type = null;" in generate_performance_entries_js(None)
