from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy.signal import savgol_filter

from .common import Bars, Pivot
from .config import DetectorConfig


def savgol_window(n: int) -> int:
    """Odd smoothing window scaled to the series length (5..11)."""
    return int(max(5, min(11, (int(n) // 20) * 2 + 1)))


def smooth_series(values: np.ndarray, window: Optional[int] = None, polyorder: int = 2) -> np.ndarray:
    """Savitzky-Golay smoothing that leaves the half-window edges untouched."""
    x = np.asarray(values, dtype=float)
    w = savgol_window(x.size) if window is None else int(window)
    if w % 2 == 0:
        w += 1
    if x.size < w or w <= polyorder:
        return x.copy()
    out = savgol_filter(x, window_length=w, polyorder=polyorder)
    half = w // 2
    out[:half] = x[:half]
    out[-half:] = x[-half:]
    return out


def _strict_extrema(values: np.ndarray, depth: int, highs: bool) -> np.ndarray:
    """Indices i in [depth, n-depth) strictly above (or below) all neighbours within depth."""
    x = np.asarray(values, dtype=float)
    d = int(depth)
    n = x.size
    if d < 1 or n < 2 * d + 1:
        return np.array([], dtype=int)
    win = np.lib.stride_tricks.sliding_window_view(x, 2 * d + 1)
    centre = win[:, d]
    others = np.delete(win, d, axis=1)
    if highs:
        ok = np.all(centre[:, None] > others, axis=1)
    else:
        ok = np.all(centre[:, None] < others, axis=1)
    return np.nonzero(ok)[0].astype(int) + d


def find_pivots(high: np.ndarray, low: np.ndarray, depth: int,
                time: Optional[np.ndarray] = None,
                high_price: Optional[np.ndarray] = None,
                low_price: Optional[np.ndarray] = None) -> List[Pivot]:
    """Swing highs/lows over a symmetric depth; ties are not pivots.

    Extremum tests run on `high`/`low`; the recorded price comes from
    `high_price`/`low_price` when given (e.g. raw prices for smoothed tests).
    """
    h = np.asarray(high, dtype=float)
    lo = np.asarray(low, dtype=float)
    hp = h if high_price is None else np.asarray(high_price, dtype=float)
    lp = lo if low_price is None else np.asarray(low_price, dtype=float)
    t = np.arange(h.size, dtype=float) if time is None else np.asarray(time, dtype=float)
    out: List[Pivot] = []
    for i in _strict_extrema(h, depth, highs=True).tolist():
        out.append(Pivot(index=int(i), price=float(hp[i]), kind="H", time=float(t[i])))
    for i in _strict_extrema(lo, depth, highs=False).tolist():
        out.append(Pivot(index=int(i), price=float(lp[i]), kind="L", time=float(t[i])))
    out.sort(key=lambda p: (p.index, 0 if p.kind == "H" else 1))
    return out


def base_pivots(bars: Bars, depth: int) -> List[Pivot]:
    return find_pivots(bars.high, bars.low, depth, time=bars.time)


def smoothed_pivots(bars: Bars, depth: int) -> List[Pivot]:
    """Pivots found on smoothed extremes, priced at the close.

    A bar that qualifies as a swing high is not also recorded as a swing low.
    """
    d = max(2, int(depth))
    sh = smooth_series(bars.high)
    sl = smooth_series(bars.low)
    hi_idx = set(_strict_extrema(sh, d, highs=True).tolist())
    lo_idx = [i for i in _strict_extrema(sl, d, highs=False).tolist() if i not in hi_idx]
    out = [Pivot(index=int(i), price=float(bars.close[i]), kind="H", time=float(bars.time[i])) for i in sorted(hi_idx)]
    out.extend(Pivot(index=int(i), price=float(bars.close[i]), kind="L", time=float(bars.time[i])) for i in lo_idx)
    out.sort(key=lambda p: p.index)
    return out


def relaxed_pivots(bars: Bars, smoothed: bool = True) -> List[Pivot]:
    """Depth-1 pivots (over smoothed extremes by default) priced at the raw high/low."""
    h = smooth_series(bars.high) if smoothed else bars.high
    lo = smooth_series(bars.low) if smoothed else bars.low
    return find_pivots(h, lo, 1, time=bars.time, high_price=bars.high, low_price=bars.low)


def split_pivots(pivots: List[Pivot]) -> Tuple[List[Pivot], List[Pivot]]:
    return [p for p in pivots if p.kind == "H"], [p for p in pivots if p.kind == "L"]


@dataclass(frozen=True)
class PivotSet:
    """Pivot sources shared (read-only) by every window evaluation."""
    base: Tuple[Pivot, ...]
    channel: Tuple[Pivot, ...]
    relaxed: Tuple[Pivot, ...]
    smoothed_used: bool

    def for_source(self, source: str) -> Tuple[Pivot, ...]:
        return self.relaxed if source == "relaxed" else self.channel


def build_pivot_set(bars: Bars, cfg: DetectorConfig) -> PivotSet:
    base = base_pivots(bars, cfg.swing_depth)
    channel = base
    used = False
    if cfg.smoothing:
        sm = smoothed_pivots(bars, cfg.swing_depth)
        highs, lows = split_pivots(sm)
        if len(highs) >= cfg.min_smoothed_pivots and len(lows) >= cfg.min_smoothed_pivots:
            channel = sm
            used = True
    relaxed = relaxed_pivots(bars, smoothed=cfg.smoothing)
    return PivotSet(base=tuple(base), channel=tuple(channel), relaxed=tuple(relaxed), smoothed_used=used)


def alternate(pivots: List[Pivot]) -> List[Pivot]:
    """Collapse runs of same-kind pivots to their most extreme member (H,L,H,... sequence)."""
    out: List[Pivot] = []
    for p in pivots:
        if out and out[-1].kind == p.kind:
            prev = out[-1]
            better = p.price > prev.price if p.kind == "H" else p.price < prev.price
            if better:
                out[-1] = p
            continue
        out.append(p)
    return out
