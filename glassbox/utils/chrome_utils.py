"""
glassbox/utils/chrome_utils.py

Utilities for locating a Chrome remote-debugging endpoint, launching one if asked to.

All functions are blocking; async callers run them through asyncio.to_thread().
"""

import os
import platform
import shutil
import subprocess
import tempfile
import time
from urllib.parse import urlparse, urlunparse

import requests

from glassbox.utils.exceptions import BrowserConnectionError
from glassbox.utils.logger import get_logger


logger = get_logger(name=__name__)

DEFAULT_ADDRESS = "http://127.0.0.1:9222"


def check_chrome_running(remote_debugging_address: str = DEFAULT_ADDRESS) -> bool:
    """Check if a debugging endpoint answers /json/version at the given address."""
    try:
        response = requests.get(f"{remote_debugging_address.rstrip('/')}/json/version", timeout=1)
        return response.status_code == 200
    except requests.RequestException:
        return False


def get_browser_websocket_url(remote_debugging_address: str = DEFAULT_ADDRESS, timeout: float = 5.0) -> str:
    """
    Get the browser-level WebSocket URL from the debugging endpoint.
    The netloc reported by Chrome is replaced with the address we reached it on.
    Args:
        remote_debugging_address: The Chrome debugging server address (e.g., 'http://127.0.0.1:9222').
        timeout: HTTP timeout in seconds.
    Returns:
        The WebSocket URL for connecting to the browser.
    Raises:
        BrowserConnectionError: If the endpoint is unreachable or does not report a WebSocket URL.
    """
    base = remote_debugging_address.rstrip("/")
    try:
        response = requests.get(f"{base}/json/version", timeout=timeout)
        response.raise_for_status()
        raw_ws = response.json().get("webSocketDebuggerUrl")
    except (requests.RequestException, ValueError) as e:
        logger.error("❌ Could not read /json/version from %s: %s", base, e)
        raise BrowserConnectionError("Browser debugging endpoint is not reachable") from e

    if not raw_ws:
        raise BrowserConnectionError("Browser debugging endpoint did not report a WebSocket URL")

    parsed = urlparse(raw_ws)
    fixed_netloc = urlparse(base).netloc
    ws_url = urlunparse(parsed._replace(netloc=fixed_netloc))
    logger.debug("🔗 Browser WebSocket URL: %s (raw: %s)", ws_url, raw_ws)
    return ws_url


def find_chrome_path() -> str | None:
    """Find Chrome executable path based on OS."""
    system = platform.system()

    if system == "Darwin":
        chrome_path = "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"
        if os.path.isfile(chrome_path):
            return chrome_path
    elif system == "Linux":
        for name in ["google-chrome", "chromium-browser", "chromium", "chrome"]:
            chrome_path = shutil.which(name)
            if chrome_path:
                return chrome_path
    elif system == "Windows":
        possible_paths = [
            os.path.expandvars(r"%ProgramFiles%\Google\Chrome\Application\chrome.exe"),
            os.path.expandvars(r"%ProgramFiles(x86)%\Google\Chrome\Application\chrome.exe"),
            os.path.expandvars(r"%LocalAppData%\Google\Chrome\Application\chrome.exe"),
        ]
        for path in possible_paths:
            if os.path.isfile(path):
                return path
        return shutil.which("chrome") or shutil.which("google-chrome")

    return None


def launch_chrome(port: int = 9222, headless: bool = True) -> subprocess.Popen | None:
    """
    Launch Chrome with remote debugging bound to 127.0.0.1.
    Returns the Popen process if the endpoint came up, None otherwise.
    """
    chrome_path = find_chrome_path()
    if not chrome_path:
        logger.warning("⚠️ Chrome not found automatically.")
        return None

    user_data_dir = tempfile.mkdtemp(prefix="glassbox-chrome-")
    chrome_args = [
        chrome_path,
        "--remote-debugging-address=127.0.0.1",
        f"--remote-debugging-port={port}",
        f"--user-data-dir={user_data_dir}",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-dev-shm-usage",
    ]
    if headless:
        chrome_args.append("--headless=new")

    logger.info("🚀 Launching Chrome on port %d (headless=%s)...", port, headless)
    try:
        creation_flags = subprocess.CREATE_NEW_PROCESS_GROUP if platform.system() == "Windows" else 0
        process = subprocess.Popen(
            chrome_args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            creationflags=creation_flags,
        )
    except OSError as e:
        logger.error("❌ Error launching Chrome: %s", e)
        return None

    address = f"http://127.0.0.1:{port}"
    for _ in range(10):
        if check_chrome_running(address):
            logger.info("✅ Chrome is ready on port %d", port)
            return process
        time.sleep(1)

    logger.warning("⚠️ Chrome failed to start within timeout.")
    process.kill()
    return None


def ensure_chrome_running(port: int = 9222, headless: bool = True) -> bool:
    """
    Ensure Chrome is running in debug mode on 127.0.0.1:port, launching it if needed.
    Returns True if the endpoint is reachable afterwards.
    """
    address = f"http://127.0.0.1:{port}"
    if check_chrome_running(address):
        return True
    launch_chrome(port=port, headless=headless)
    return check_chrome_running(address)
