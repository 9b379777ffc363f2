from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .common import Line, clamp01


def apex_of(upper: Line, lower: Line, end: int) -> Tuple[Optional[int], Optional[int]]:
    """Intersection bar of the two lines and the bars remaining after `end`.

    Parallel (or numerically parallel) lines have no apex: (None, None).
    """
    diff = float(upper.slope) - float(lower.slope)
    if abs(diff) < 1e-15:
        return None, None
    x = (float(lower.intercept) - float(upper.intercept)) / diff
    if not np.isfinite(x):
        return None, None
    idx = int(round(x))
    return idx, int(idx - int(end))


@dataclass(frozen=True)
class Convergence:
    gap_start: float
    gap_end: float
    ratio: float
    accelerating: bool
    converges: bool
    score: float


def convergence_of(upper: Line, lower: Line, start: int, end: int,
                   ratio_max: float = 0.70, accel_factor: float = 1.2) -> Convergence:
    mid = (int(start) + int(end)) // 2
    g0 = upper.value_at(start) - lower.value_at(start)
    gm = upper.value_at(mid) - lower.value_at(mid)
    g1 = upper.value_at(end) - lower.value_at(end)
    ratio = g1 / max(1e-12, g0)
    first = g0 - gm
    second = gm - g1
    accelerating = bool(second > first * float(accel_factor))
    converges = bool(g1 > 0 and ratio < float(ratio_max))
    score = clamp01(0.4 * (1.0 - ratio)
                    + 0.35 * (1.0 if converges else 0.3)
                    + 0.25 * (1.0 if accelerating else 0.4))
    return Convergence(float(g0), float(g1), float(ratio), accelerating, converges, float(score))


def containment_ratio(upper: Line, lower: Line, close: np.ndarray, start: int, end: int, tol_pct: float) -> float:
    """Share of closes between the lines, allowing a tolerance scaled by channel width."""
    idx = np.arange(int(start), int(end) + 1)
    if idx.size == 0:
        return 0.0
    u = upper.values(idx)
    lo = lower.values(idx)
    tol = np.abs(u - lo) * float(tol_pct)
    c = np.asarray(close, dtype=float)[idx]
    inside = (c <= u + tol) & (c >= lo - tol)
    return float(np.mean(inside))


def inside_ratio(upper: Line, lower: Line, high: np.ndarray, low: np.ndarray, start: int, end: int) -> float:
    """Share of bars whose whole range stays within the lines."""
    idx = np.arange(int(start), int(end) + 1)
    if idx.size == 0:
        return 0.0
    h = np.asarray(high, dtype=float)[idx]
    lo = np.asarray(low, dtype=float)[idx]
    return float(np.mean((h <= upper.values(idx)) & (lo >= lower.values(idx))))


@dataclass(frozen=True)
class Touch:
    index: int
    side: str  # "upper" | "lower"
    is_break: bool = False


@dataclass
class Touches:
    upper: List[Touch] = field(default_factory=list)
    lower: List[Touch] = field(default_factory=list)

    @property
    def upper_quality(self) -> int:
        return sum(1 for t in self.upper if not t.is_break)

    @property
    def lower_quality(self) -> int:
        return sum(1 for t in self.lower if not t.is_break)

    def indices(self, side: str) -> List[int]:
        src = self.upper if side == "upper" else self.lower
        return [t.index for t in src if not t.is_break]

    def score(self) -> float:
        return clamp01((self.upper_quality + self.lower_quality) / 8.0)


def collect_touches(upper: Line, lower: Line, high: np.ndarray, low: np.ndarray,
                    start: int, end: int, tol_pct: float) -> Touches:
    """Bars touching each line within tol_pct of the line value; pierces count as breaks."""
    out = Touches()
    for i in range(int(start), int(end) + 1):
        u = upper.value_at(i)
        thr_u = abs(u) * float(tol_pct)
        hi = float(high[i])
        if hi > u + thr_u:
            out.upper.append(Touch(i, "upper", True))
        elif abs(hi - u) < thr_u:
            out.upper.append(Touch(i, "upper", False))
        lv = lower.value_at(i)
        thr_l = abs(lv) * float(tol_pct)
        lo = float(low[i])
        if lo < lv - thr_l:
            out.lower.append(Touch(i, "lower", True))
        elif abs(lo - lv) < thr_l:
            out.lower.append(Touch(i, "lower", False))
    return out


def max_gap(indices: List[int]) -> float:
    if len(indices) < 2:
        return float("inf")
    return float(np.max(np.diff(np.asarray(sorted(indices), dtype=float))))


def alternation_ratio(touches: Touches) -> float:
    """Share of side changes along the merged touch sequence (breaks included)."""
    merged = sorted(touches.upper + touches.lower, key=lambda t: (t.index, t.side))
    if len(merged) < 2:
        return 0.0
    changes = sum(1 for a, b in zip(merged, merged[1:]) if a.side != b.side)
    return float(changes) / float(len(merged) - 1)


def duration_score(bars: int, lo: int, hi: int) -> float:
    if bars < lo or bars > hi:
        return 0.0
    half = (float(hi) - float(lo)) / 2.0
    if half <= 0:
        return 1.0
    mid = (float(hi) + float(lo)) / 2.0
    return clamp01(1.0 - abs(float(bars) - mid) / half)


def average_true_range(high: np.ndarray, low: np.ndarray, close: np.ndarray,
                       start: int, end: int, period: int = 14) -> float:
    """Mean true range of the last `period` bars in [start, end]; 0 when undefined."""
    s = max(1, int(start))
    e = min(len(close) - 1, max(s + 1, int(end)))
    if e < s:
        return 0.0
    h = np.asarray(high, dtype=float)[s:e + 1]
    lo = np.asarray(low, dtype=float)[s:e + 1]
    pc = np.asarray(close, dtype=float)[s - 1:e]
    tr = np.maximum(h - lo, np.maximum(np.abs(h - pc), np.abs(lo - pc)))
    if tr.size == 0:
        return 0.0
    tail = tr[-int(max(1, period)):]
    return float(np.mean(tail))


@dataclass(frozen=True)
class Breakout:
    index: int
    price: float
    direction: str  # "up" | "down"


def scan_breakout(close: np.ndarray, upper: Line, lower: Line, scan_from: int, scan_to: int,
                  atr: float, margin: float, direction_margin: float) -> Optional[Breakout]:
    """First close beyond a line by more than atr * margin, scanning forward."""
    c = np.asarray(close, dtype=float)
    s = max(0, int(scan_from))
    e = min(c.size - 1, int(scan_to))
    for i in range(s, e + 1):
        u = upper.value_at(i)
        lo = lower.value_at(i)
        px = float(c[i])
        if px > u + atr * margin or px < lo - atr * margin:
            if px < lo - atr * direction_margin:
                direction = "down"
            elif px > u + atr * direction_margin:
                direction = "up"
            else:
                direction = "up" if px > u else "down"
            return Breakout(int(i), px, direction)
    return None


def relative_slope(line: Line, bars: int, avg_price: float) -> float:
    """Slope expressed as the fractional price move over the window."""
    if abs(avg_price) <= 1e-12:
        return 0.0
    return float(line.slope) * float(bars) / float(avg_price)


def line_summary(line: Line, start: int, end: int) -> Dict[str, float]:
    return {
        "slope": float(line.slope),
        "intercept": float(line.intercept),
        "r2": float(line.r2),
        "startPrice": line.value_at(start),
        "endPrice": line.value_at(end),
    }
