"""Classical chart pattern detection over OHLC bars."""

from __future__ import annotations

__version__ = "0.1.0"

from .core.errors import InputError, PatternScanError
from .patterns.config import DetectorConfig, apply_overrides
from .patterns.engine import ScanResult, detect_patterns

__all__ = [
    "__version__",
    "DetectorConfig",
    "InputError",
    "PatternScanError",
    "ScanResult",
    "apply_overrides",
    "detect_patterns",
]
