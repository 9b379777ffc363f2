"""Environment settings for the pattern scanner"""

import os
import logging
from typing import Optional
try:
    from dotenv import load_dotenv, find_dotenv  # type: ignore
    # Load environment variables from a .env file if present
    _env_path = find_dotenv(usecwd=True)
    if _env_path:
        load_dotenv(_env_path)
    else:
        # Fallback to default search (current working directory)
        load_dotenv()
except Exception:
    # dotenv is optional; environment can still be provided by the OS
    pass

from .constants import DEFAULT_RELEVANCE_DAYS

_WARNED_KEYS = set()


class ScanSettings:
    """Process-level settings read from the environment.

    These only seed defaults; every detection run receives an explicit
    DetectorConfig and never reads the environment itself.
    """

    def __init__(self):
        self.max_windows = self._int_env("PATTERNSCAN_MAX_WINDOWS", 20000, minimum=1)
        self.debug_cap = self._int_env("PATTERNSCAN_DEBUG_CAP", 200, minimum=0)
        self.relevance_days = self._int_env("PATTERNSCAN_RELEVANCE_DAYS", DEFAULT_RELEVANCE_DAYS, minimum=0)
        self.log_level = (os.getenv("PATTERNSCAN_LOG_LEVEL") or "WARNING").strip().upper()

    @staticmethod
    def _int_env(name: str, default: int, minimum: Optional[int] = None) -> int:
        raw = os.getenv(name)
        if raw is None or str(raw).strip() == "":
            return int(default)
        try:
            val = int(str(raw).strip())
        except Exception:
            _warn_once(name, f"{name}={raw!r} is not an integer; using default {default}.")
            return int(default)
        if minimum is not None and val < minimum:
            _warn_once(name, f"{name}={val} is below {minimum}; using default {default}.")
            return int(default)
        return val

    def get_log_level(self) -> int:
        level = logging.getLevelName(self.log_level)
        return level if isinstance(level, int) else logging.WARNING


def _warn_once(key: str, message: str) -> None:
    """Warn once per key for invalid environment values."""
    if key in _WARNED_KEYS:
        return
    _WARNED_KEYS.add(key)
    logging.getLogger(__name__).warning(message)


# Global settings instance
scan_settings = ScanSettings()
