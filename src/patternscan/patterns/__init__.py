from .config import DetectorConfig, StrictnessProfile, apply_overrides
from .common import ALL_TYPES, Bars, Diagnostic, PatternResult, Pivot, bars_from_frame
from .engine import ScanResult, detect_patterns

__all__ = [
    "ALL_TYPES",
    "Bars",
    "DetectorConfig",
    "Diagnostic",
    "PatternResult",
    "Pivot",
    "ScanResult",
    "StrictnessProfile",
    "apply_overrides",
    "bars_from_frame",
    "detect_patterns",
]
