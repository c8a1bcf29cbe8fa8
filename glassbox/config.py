"""
glassbox/config.py

Centralized environment variable configuration.
"""

import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config():
    """
    Centralized configuration for environment variables.
    """

    # browser connection
    CHROME_HOST: str = os.getenv("GLASSBOX_CHROME_HOST", "127.0.0.1")
    CHROME_PORT: int = int(os.getenv("GLASSBOX_CHROME_PORT", "9222"))
    CHROME_AUTO_LAUNCH: bool = _get_bool("GLASSBOX_CHROME_AUTO_LAUNCH")
    CHROME_HEADLESS: bool = _get_bool("GLASSBOX_CHROME_HEADLESS", default="true")
    CONNECT_TIMEOUT_SECONDS: float = float(os.getenv("GLASSBOX_CONNECT_TIMEOUT_SECONDS", "10"))

    # page operations
    NAVIGATION_TIMEOUT_SECONDS: float = float(os.getenv("GLASSBOX_NAVIGATION_TIMEOUT_SECONDS", "30"))
    SCRIPT_TIMEOUT_SECONDS: float = float(os.getenv("GLASSBOX_SCRIPT_TIMEOUT_SECONDS", "30"))

    # file tracking
    DOWNLOAD_DIR: str = os.getenv("GLASSBOX_DOWNLOAD_DIR", "/tmp/glassbox-downloads")

    # logging
    LOG_LEVEL: str = os.getenv("GLASSBOX_LOG_LEVEL", "INFO")

    @classmethod
    def as_dict(cls) -> dict[str, Any]:
        """
        Return a dictionary of all UPPERCASE class attributes and their values.
        Return:
            dict[str, Any]: A dictionary of all UPPERCASE class attributes and their values.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }
