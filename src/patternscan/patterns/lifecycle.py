from __future__ import annotations

from typing import Optional, Tuple

# Direction a breakout is expected to take for each family.
# Families mapped to None follow the prior trend or the flagpole.
EXPECTED_DIRECTION = {
    "falling_wedge": "up",
    "rising_wedge": "down",
    "triangle_ascending": "up",
    "triangle_descending": "down",
    "triangle_symmetrical": None,
    "pennant": None,
    "flag": None,
    "double_top": "down",
    "double_bottom": "up",
    "head_and_shoulders": "down",
    "inverse_head_and_shoulders": "up",
    "triple_top": "down",
    "triple_bottom": "up",
}


def expected_direction(pattern_type: str, trend: Optional[str] = None) -> Optional[str]:
    """Expected breakout direction; `trend` (prior trend or pole direction) fills in for neutral families."""
    exp = EXPECTED_DIRECTION.get(pattern_type)
    return exp if exp is not None else trend


def resolve_status(breakout_direction: Optional[str], expected: Optional[str],
                   bars_to_apex: Optional[int] = None, near_completion_bars: int = 10) -> Tuple[str, Optional[str]]:
    """Return (status, outcome).

    With a breakout the pattern is terminal: completed/success when the
    direction matches the expected one (or none is expected), else
    invalid/failure. Without one it is near_completion once the apex is
    within `near_completion_bars`, otherwise forming.
    """
    if breakout_direction is not None:
        if expected is None or breakout_direction == expected:
            return "completed", "success"
        return "invalid", "failure"
    if bars_to_apex is not None and 0 < bars_to_apex <= int(near_completion_bars):
        return "near_completion", None
    return "forming", None


def prior_trend(close, start: int, lookback: int) -> Optional[str]:
    """Direction of the move into `start` over `lookback` bars; None when flat or unknown."""
    s = int(start)
    if s <= 0:
        return None
    ref = max(0, s - int(lookback))
    delta = float(close[s]) - float(close[ref])
    if delta > 0:
        return "up"
    if delta < 0:
        return "down"
    return None


def wedge_outcome_label(pattern_type: str, direction: Optional[str]) -> Optional[str]:
    """Descriptive label for a wedge's breakout (e.g. a falling wedge breaking up is a bullish breakout)."""
    if direction is None:
        return None
    if pattern_type == "falling_wedge":
        return "bullish_breakout" if direction == "up" else "bearish_breakdown"
    if pattern_type == "rising_wedge":
        return "bearish_breakout" if direction == "down" else "bullish_breakdown"
    return None
