"""Error types raised for whole-request failures."""


class PatternScanError(Exception):
    """Base exception for pattern scanning errors."""
    pass


class InputError(PatternScanError):
    """Custom exception for malformed or too-short bar input."""
    pass
