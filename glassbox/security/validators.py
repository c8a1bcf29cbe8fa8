"""
glassbox/security/validators.py

Validation and sanitization for every external input that reaches the browser or filesystem.

Each validator takes one untyped input and returns a ValidationResult; malformed input is a
negative result, never an exception. Script validation is a deny-list (pattern matching), not
a sandbox.
"""

import base64
import binascii
import math
import re
from typing import Any
from urllib.parse import unquote, urlparse

from glassbox.data_models.security import ValidationResult
from glassbox.utils.exceptions import InputValidationError


# URLs
MAX_URL_LENGTH = 2048
ALLOWED_URL_SCHEMES: frozenset[str] = frozenset({"http", "https", "data"})
BLOCKED_HOSTS: tuple[str, ...] = ("localhost", "127.0.0.1", "0.0.0.0", "::1")

# scripts
MAX_SCRIPT_LENGTH = 10_000
DANGEROUS_SCRIPT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"while\s*\(\s*true\s*\)", re.IGNORECASE),
    re.compile(r"for\s*\(\s*;\s*;\s*\)", re.IGNORECASE),
    re.compile(r"\beval\s*\(", re.IGNORECASE),
    # "function(" literals are fine; only the Function constructor is dynamic code
    re.compile(r"(?<![\w$])Function\s*\("),
    re.compile(r"setTimeout\s*\(\s*function\s*\(\s*\)\s*\{[^}]*while", re.IGNORECASE),
    re.compile(r"window\.location\s*=(?!=)", re.IGNORECASE),
    re.compile(r"document\.write(ln)?\s*\(", re.IGNORECASE),
)

# file paths (compared on the normalized, forward-slash form)
DANGEROUS_PATH_PREFIXES: tuple[str, ...] = (
    "/etc/",
    "/proc/",
    "/sys/",
    "/root",
    "/home/",
    "c:/windows",
    "c:/system32",
)

# filenames
MAX_FILENAME_LENGTH = 255
ILLEGAL_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
BLOCKED_EXTENSIONS: frozenset[str] = frozenset({".exe", ".bat", ".cmd", ".scr", ".pif", ".msi"})
RESERVED_FILENAMES: frozenset[str] = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{i}" for i in range(1, 10)}
    | {f"LPT{i}" for i in range(1, 10)}
)

# CSS selectors
DANGEROUS_SELECTOR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<\s*script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"expression\s*\(", re.IGNORECASE),
)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _decode_data_url_payload(url: str) -> str:
    """Return the decoded payload of a data: URL (best effort)."""
    _, _, rest = url.partition(":")
    meta, _, payload = rest.partition(",")
    payload = unquote(payload)
    if meta.lower().endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False).decode(encoding="utf-8", errors="ignore")
        except (binascii.Error, ValueError):
            return payload
    return payload


def validate_url(url: Any, max_length: int = MAX_URL_LENGTH) -> ValidationResult:
    """
    Validate a URL before it is navigated to or fetched.
    Args:
        url: The candidate URL.
        max_length: Maximum accepted length.
    Returns:
        ValidationResult carrying the original string unchanged on success.
    """
    if not isinstance(url, str) or not url:
        return ValidationResult.fail("URL must be a non-empty string")

    if len(url) > max_length:
        return ValidationResult.fail("URL exceeds maximum length")

    try:
        parsed = urlparse(url)
        hostname = (parsed.hostname or "").lower()
        _ = parsed.port  # raises ValueError on a malformed port
    except ValueError:
        return ValidationResult.fail("Invalid URL format")

    scheme = parsed.scheme.lower()
    if not scheme:
        return ValidationResult.fail("Invalid URL format")

    if scheme not in ALLOWED_URL_SCHEMES:
        return ValidationResult.fail(f"Protocol {scheme}: is not allowed")

    if scheme in ("http", "https") and not hostname:
        return ValidationResult.fail("Invalid URL format")

    if any(blocked in hostname for blocked in BLOCKED_HOSTS):
        return ValidationResult.fail("Access to local/internal addresses is not allowed")

    if scheme == "data" and "<script" in _decode_data_url_payload(url).lower():
        return ValidationResult.fail("Script injection in data URLs is not allowed")

    return ValidationResult.ok(url)


def validate_script(script: Any, max_length: int = MAX_SCRIPT_LENGTH) -> ValidationResult:
    """
    Check a script against the deny-list of dangerous patterns.
    This is a best-effort input gate; isolation is left to the browser's own sandbox.
    Args:
        script: JavaScript source text.
        max_length: Maximum accepted length.
    Returns:
        ValidationResult carrying the script unchanged on success.
    """
    if not isinstance(script, str) or not script:
        return ValidationResult.fail("Script must be a non-empty string")

    if len(script) > max_length:
        return ValidationResult.fail("Script exceeds maximum length")

    for pattern in DANGEROUS_SCRIPT_PATTERNS:
        if pattern.search(script):
            return ValidationResult.fail("Script contains potentially dangerous patterns")

    return ValidationResult.ok(script)


def normalize_path(file_path: str) -> str:
    """Convert backslashes to forward slashes and collapse repeated separators."""
    return re.sub(r"/+", "/", file_path.replace("\\", "/"))


def validate_file_path(file_path: Any) -> ValidationResult:
    """
    Validate a filesystem path (download directory, watch path).
    Args:
        file_path: The candidate path.
    Returns:
        ValidationResult carrying the normalized path on success.
    """
    if not isinstance(file_path, str) or not file_path:
        return ValidationResult.fail("File path must be a non-empty string")

    normalized = normalize_path(file_path)

    if "../" in normalized or "..\\" in normalized or normalized == ".." or normalized.endswith("/.."):
        return ValidationResult.fail("Path traversal is not allowed")

    lowered = normalized.lower()
    if any(lowered.startswith(prefix) for prefix in DANGEROUS_PATH_PREFIXES):
        return ValidationResult.fail("Access to system directories is not allowed")

    return ValidationResult.ok(normalized)


def validate_filename(filename: Any, max_length: int = MAX_FILENAME_LENGTH) -> ValidationResult:
    """
    Sanitize a filename, then check the sanitized form.
    Illegal characters are replaced with underscores before the extension and
    reserved-name checks run.
    Args:
        filename: The candidate filename.
        max_length: Maximum accepted length.
    Returns:
        ValidationResult carrying the sanitized filename on success.
    """
    if not isinstance(filename, str) or not filename:
        return ValidationResult.fail("Filename must be a non-empty string")

    if len(filename) > max_length:
        return ValidationResult.fail("Filename exceeds maximum length")

    sanitized = ILLEGAL_FILENAME_CHARS.sub("_", filename)
    if not sanitized.strip(" ."):
        return ValidationResult.fail("Filename must name a file")

    stem, dot, extension = sanitized.rpartition(".")
    if dot and f".{extension.lower()}" in BLOCKED_EXTENSIONS:
        return ValidationResult.fail("File extension is not allowed")

    base_name = stem if dot else sanitized
    if base_name.upper() in RESERVED_FILENAMES:
        return ValidationResult.fail("Reserved filename is not allowed")

    return ValidationResult.ok(sanitized)


def validate_css_selector(selector: Any) -> ValidationResult:
    """
    Reject selectors carrying markup or script-injection markers.
    Args:
        selector: The candidate CSS selector.
    Returns:
        ValidationResult carrying the selector unchanged on success.
    """
    if not isinstance(selector, str) or not selector:
        return ValidationResult.fail("Selector must be a non-empty string")

    for pattern in DANGEROUS_SELECTOR_PATTERNS:
        if pattern.search(selector):
            return ValidationResult.fail("Selector contains potentially dangerous patterns")

    return ValidationResult.ok(selector)


def clamp_numeric_limit(value: Any, minimum: int = 0, maximum: int = 10_000) -> int:
    """
    Parse a value as an integer and clamp it into [minimum, maximum].
    Unparsable values yield the minimum. Strings use their leading integer ("75px" -> 75),
    floats are truncated.
    """
    parsed: int | None = None
    if isinstance(value, bool):
        parsed = None
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        parsed = int(value) if math.isfinite(value) else None
    elif isinstance(value, str):
        match = _LEADING_INT.match(value)
        parsed = int(match.group(1)) if match else None

    if parsed is None or parsed < minimum:
        return minimum
    if parsed > maximum:
        return maximum
    return parsed


def require_valid(result: ValidationResult, label: str) -> Any:
    """
    Unwrap a ValidationResult or raise InputValidationError with a caller-facing message.
    Args:
        result: The validation outcome.
        label: Name of the input, used as the message prefix (e.g. "URL").
    Returns:
        The sanitized value.
    """
    if not result.is_valid:
        raise InputValidationError(f"Invalid {label}: {result.error_reason}")
    return result.sanitized_value
