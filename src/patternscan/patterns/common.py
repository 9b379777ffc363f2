from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.constants import MIN_BARS, TIMEFRAME_SECONDS, DEFAULT_TIMEFRAME
from ..core.errors import InputError
from ..utils.utils import _format_time_iso, _round, to_epoch_seconds, to_float_np


WEDGE_TYPES = ("rising_wedge", "falling_wedge")
TRIANGLE_TYPES = ("triangle_ascending", "triangle_descending", "triangle_symmetrical")
CHANNEL_TYPES = WEDGE_TYPES + TRIANGLE_TYPES + ("pennant",)
ALL_TYPES = CHANNEL_TYPES + (
    "flag",
    "double_top",
    "double_bottom",
    "head_and_shoulders",
    "inverse_head_and_shoulders",
    "triple_top",
    "triple_bottom",
)
TYPE_ALIASES = {
    "triangle": TRIANGLE_TYPES,
    "wedge": WEDGE_TYPES,
    "all": ALL_TYPES,
}


@dataclass(frozen=True)
class Bars:
    """Immutable OHLC arrays, oldest first; index i is Bar i."""
    time: np.ndarray
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray

    def __len__(self) -> int:
        return int(self.close.size)

    @property
    def last_index(self) -> int:
        return len(self) - 1

    def iso(self, idx: int) -> str:
        return _format_time_iso(float(self.time[int(idx)]))


@dataclass(frozen=True)
class Pivot:
    index: int
    price: float
    kind: str  # "H" | "L"
    time: float

    def to_dict(self) -> Dict[str, Any]:
        return {"idx": int(self.index), "price": _round(self.price), "kind": self.kind}


@dataclass(frozen=True)
class Line:
    slope: float
    intercept: float
    r2: float
    n_points: int = 0

    def value_at(self, idx: float) -> float:
        return float(self.slope * float(idx) + self.intercept)

    def values(self, idxs: np.ndarray) -> np.ndarray:
        return self.slope * np.asarray(idxs, dtype=float) + self.intercept


@dataclass(frozen=True)
class Window:
    start: int
    end: int

    @property
    def bars(self) -> int:
        return int(self.end - self.start)


@dataclass
class Diagnostic:
    type: str
    accepted: bool
    reason: str
    indices: Dict[str, Any] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)
    profile: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.type,
            "accepted": bool(self.accepted),
            "reason": self.reason,
            "indices": dict(self.indices),
            "metrics": {k: _round(v) if isinstance(v, (float, np.floating)) else v for k, v in self.metrics.items()},
        }
        if self.profile:
            d["profile"] = self.profile
        return d


@dataclass
class PatternResult:
    type: str
    confidence: float
    start_index: int
    end_index: int
    start_time: str
    end_time: str
    status: str = "forming"
    breakout_direction: Optional[str] = None
    outcome: Optional[str] = None
    pivots: List[Pivot] = field(default_factory=list)
    neckline: List[Tuple[int, float]] = field(default_factory=list)
    apex: Optional[Dict[str, Any]] = None
    lines: Dict[str, Any] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)
    aftermath: Optional[Dict[str, Any]] = None

    @property
    def resolved(self) -> bool:
        return self.breakout_direction is not None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.type,
            "confidence": float(max(0.0, min(1.0, self.confidence))),
            "range": {"start": self.start_time, "end": self.end_time},
            "indices": {"start": int(self.start_index), "end": int(self.end_index)},
            "status": self.status,
        }
        if self.breakout_direction is not None:
            d["breakoutDirection"] = self.breakout_direction
        if self.outcome is not None:
            d["outcome"] = self.outcome
        if self.pivots:
            d["pivots"] = [p.to_dict() for p in self.pivots]
        if self.neckline:
            d["neckline"] = [{"idx": int(i), "price": _round(y)} for i, y in self.neckline]
        if self.apex is not None:
            d["apex"] = dict(self.apex)
        if self.lines:
            d["lines"] = {k: {kk: _round(vv) for kk, vv in v.items()} for k, v in self.lines.items()}
        for k, v in self.details.items():
            d[k] = _round(v) if isinstance(v, (float, np.floating)) else v
        if self.aftermath is not None:
            d["aftermath"] = self.aftermath
        return d


def clamp01(x: float) -> float:
    try:
        v = float(x)
    except Exception:
        return 0.0
    if not np.isfinite(v):
        return 0.0
    return max(0.0, min(1.0, v))


def rel_dev(a: float, b: float) -> float:
    """Relative difference of two levels, guarded against zero."""
    denom = max(abs(float(a)), abs(float(b)))
    if denom <= 1e-12:
        return 0.0
    return abs(float(a) - float(b)) / denom


def near(a: float, b: float, tol: float) -> bool:
    """Two price levels are equal when they differ by at most tol of the larger one."""
    return abs(float(a) - float(b)) <= max(float(a), float(b)) * float(tol)


def expand_types(requested: Optional[Sequence[str]]) -> Tuple[str, ...]:
    """Resolve requested type names and aliases into concrete pattern types."""
    if not requested:
        return ALL_TYPES
    if isinstance(requested, str):
        requested = [t for t in requested.replace(';', ',').split(',')]
    out: List[str] = []
    for raw in requested:
        name = str(raw).strip().lower()
        if not name:
            continue
        for t in TYPE_ALIASES.get(name, (name,)):
            if t in ALL_TYPES and t not in out:
                out.append(t)
    return tuple(out)


def bars_from_frame(data: Any, timeframe: str = DEFAULT_TIMEFRAME, min_bars: int = MIN_BARS,
                    raise_on_short: bool = False) -> Bars:
    """Normalise a DataFrame (or list of dicts) with OHLC columns into Bars.

    Rows with non-finite prices are dropped. Missing times are synthesised
    from the timeframe. Raises InputError on malformed or empty input, and on
    short input when raise_on_short is set.
    """
    if isinstance(data, (list, tuple)):
        df = pd.DataFrame(list(data))
    elif isinstance(data, pd.DataFrame):
        df = data
    else:
        raise InputError(f"Unsupported bar input type: {type(data).__name__}")
    if df.empty:
        raise InputError("Empty bar sequence")
    cols = {str(c).lower(): c for c in df.columns}
    missing = [c for c in ("open", "high", "low", "close") if c not in cols]
    if missing:
        raise InputError(f"Missing price columns: {', '.join(missing)}")
    o = to_float_np(df[cols["open"]])
    h = to_float_np(df[cols["high"]])
    lo = to_float_np(df[cols["low"]])
    c = to_float_np(df[cols["close"]])
    tcol = cols.get("time", cols.get("timestamp"))
    if tcol is not None:
        t = to_epoch_seconds(df[tcol])
    else:
        step = float(TIMEFRAME_SECONDS.get(str(timeframe).upper(), TIMEFRAME_SECONDS[DEFAULT_TIMEFRAME]))
        t = np.arange(c.size, dtype=float) * step
    mask = np.isfinite(o) & np.isfinite(h) & np.isfinite(lo) & np.isfinite(c) & np.isfinite(t)
    if not mask.any():
        raise InputError("No bars with finite prices")
    bars = Bars(time=t[mask], open=o[mask], high=h[mask], low=lo[mask], close=c[mask])
    if raise_on_short and len(bars) < int(min_bars):
        raise InputError(f"At least {int(min_bars)} bars are required, got {len(bars)}")
    return bars
