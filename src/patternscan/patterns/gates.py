"""Ordered accept/reject gates for two-line (channel) candidates.

Each gate is a pure function ``gate(candidate, ctx) -> Accept | Reject``.
``run_gates`` folds a candidate through the ordered list and stops at the
first rejection; the rejection carries every metric computed so far.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

import numpy as np

from .common import Bars, Line, Pivot, Window
from .config import DetectorConfig, StrictnessProfile
from .geometry import (
    Convergence,
    Touches,
    alternation_ratio,
    apex_of,
    collect_touches,
    containment_ratio,
    convergence_of,
    duration_score,
    inside_ratio,
    max_gap,
    relative_slope,
)
from .scoring import composite_score
from .trendline import envelope_lower, envelope_upper, fit_pivots


@dataclass(frozen=True)
class GateContext:
    bars: Bars
    cfg: DetectorConfig
    profile: StrictnessProfile
    allowed: FrozenSet[str]


@dataclass(frozen=True)
class Candidate:
    window: Window
    highs: Tuple[Pivot, ...] = ()
    lows: Tuple[Pivot, ...] = ()
    upper: Optional[Line] = None
    lower: Optional[Line] = None
    type: Optional[str] = None
    apex_index: Optional[int] = None
    bars_to_apex: Optional[int] = None
    convergence: Optional[Convergence] = None
    touches: Optional[Touches] = None
    score: Optional[float] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    def provisional_type(self) -> str:
        if self.type:
            return self.type
        if self.upper is None or self.lower is None:
            return "channel"
        if self.upper.slope > 0 and self.lower.slope > 0:
            return "rising_wedge"
        if self.upper.slope < 0 and self.lower.slope < 0:
            return "falling_wedge"
        return "triangle_symmetrical"


@dataclass(frozen=True)
class Accept:
    candidate: Candidate


@dataclass(frozen=True)
class Reject:
    reason: str
    candidate: Candidate


GateResult = Union[Accept, Reject]
Gate = Callable[[Candidate, GateContext], GateResult]


def _with(cand: Candidate, metrics: Optional[Dict[str, Any]] = None, **updates: Any) -> Candidate:
    merged = dict(cand.metrics)
    if metrics:
        merged.update(metrics)
    return replace(cand, metrics=merged, **updates)


def gate_lines(cand: Candidate, ctx: GateContext) -> GateResult:
    prof = ctx.profile
    m = {"pivotsHigh": len(cand.highs), "pivotsLow": len(cand.lows)}
    if len(cand.highs) < prof.min_pivots_per_side or len(cand.lows) < prof.min_pivots_per_side:
        return Reject("insufficient_pivots", _with(cand, m))
    if prof.line_method == "envelope":
        s, e = cand.window.start, cand.window.end
        tol = (float(ctx.bars.close[s]) + float(ctx.bars.close[e])) / 2.0 * prof.envelope_tol_pct
        upper = envelope_upper(cand.highs, prof.envelope_split, prof.envelope_max_violations, tol)
        lower = envelope_lower(cand.lows, prof.envelope_split, prof.envelope_max_violations, tol)
        if upper is None or lower is None:
            m["upperFound"] = upper is not None
            m["lowerFound"] = lower is not None
            return Reject("trendline_not_found", _with(cand, m))
    else:
        upper = fit_pivots(cand.highs)
        lower = fit_pivots(cand.lows)
    m.update({
        "slopeHigh": upper.slope,
        "slopeLow": lower.slope,
        "r2High": upper.r2,
        "r2Low": lower.r2,
    })
    return Accept(_with(cand, m, upper=upper, lower=lower))


def gate_fit_quality(cand: Candidate, ctx: GateContext) -> GateResult:
    if min(cand.upper.r2, cand.lower.r2) < ctx.profile.min_r2:
        return Reject("r2_below_threshold", _with(cand, {"minR2": ctx.profile.min_r2}))
    return Accept(cand)


def _classify_wedge(slope_hi: float, slope_lo: float, ctx: GateContext) -> Tuple[Optional[str], Optional[str]]:
    wc = ctx.cfg.wedge
    a_hi, a_lo = abs(slope_hi), abs(slope_lo)
    if a_hi < wc.min_slope or a_lo < wc.min_slope:
        return None, "slopes_too_flat"
    weaker = min(a_hi, a_lo) / max(a_hi, a_lo)
    if slope_hi > 0 and slope_lo > 0:
        if a_lo < a_hi * wc.rising_steeper_factor:
            return None, "wrong_side_steeper"
        if slope_hi < slope_lo * wc.rising_upper_share or weaker < wc.min_weaker_ratio:
            return None, "slope_ratio_too_small"
        return "rising_wedge", None
    if a_hi < a_lo * wc.falling_steeper_factor:
        return None, "wrong_side_steeper"
    if weaker < wc.min_weaker_ratio:
        return None, "slope_ratio_too_small"
    return "falling_wedge", None


def gate_classify(cand: Candidate, ctx: GateContext) -> GateResult:
    w = cand.window
    bars = ctx.bars
    seg = slice(w.start, w.end + 1)
    span = max(1, w.bars)
    avg_price = float(np.mean(bars.close[seg]))
    price_range = float(np.max(bars.high[seg]) - np.min(bars.low[seg]))
    hi, lo = cand.upper.slope, cand.lower.slope
    hi_rel = relative_slope(cand.upper, span, avg_price)
    lo_rel = relative_slope(cand.lower, span, avg_price)
    m: Dict[str, Any] = {"upperRelSlope": hi_rel, "lowerRelSlope": lo_rel}
    tc = ctx.cfg.triangle
    ptype: Optional[str] = None
    failure: Optional[str] = None
    if abs(hi_rel) <= tc.flat_rel_max and lo_rel >= tc.move_rel_min:
        ptype = "triangle_ascending"
    elif abs(lo_rel) <= tc.flat_rel_max and hi_rel <= -tc.move_rel_min:
        ptype = "triangle_descending"
    elif hi > 0 and lo > 0:
        if abs(hi) < price_range * ctx.cfg.wedge.min_upper_rise_pct / span:
            return Reject("upper_line_barely_rising", _with(cand, m, type="rising_wedge"))
        prices = [p.price for p in cand.highs]
        half = len(prices) // 2
        if half >= 1:
            first = float(np.mean(prices[:half]))
            second = float(np.mean(prices[half:]))
            ratio = round(second / first, 4) if first else 1.0
            m["highsTrendRatio"] = ratio
            if ratio < ctx.cfg.wedge.declining_highs_ratio:
                return Reject("declining_highs", _with(cand, m, type="rising_wedge"))
        ptype, failure = _classify_wedge(hi, lo, ctx)
    elif hi < 0 and lo < 0:
        ptype, failure = _classify_wedge(hi, lo, ctx)
    elif hi < 0 < lo:
        if hi_rel <= -tc.sym_rel_min and lo_rel >= tc.sym_rel_min:
            ptype = "triangle_symmetrical"
        else:
            failure = "slopes_too_flat"
    elif hi > 0 > lo:
        failure = "diverging_lines"
    else:
        failure = "slopes_too_flat"
    if ptype is None:
        m["failureReason"] = failure
        return Reject("type_classification_failed", _with(cand, m))
    if ptype not in ctx.allowed:
        return Reject("type_not_requested", _with(cand, m, type=ptype))
    return Accept(_with(cand, m, type=ptype))


def gate_apex(cand: Candidate, ctx: GateContext) -> GateResult:
    apex, to_apex = apex_of(cand.upper, cand.lower, cand.window.end)
    m = {"apexIdx": apex, "barsToApex": to_apex}
    if apex is None or to_apex is None or to_apex <= 0:
        return Reject("apex_not_in_future", _with(cand, m))
    return Accept(_with(cand, m, apex_index=apex, bars_to_apex=to_apex))


def gate_convergence(cand: Candidate, ctx: GateContext) -> GateResult:
    prof = ctx.profile
    conv = convergence_of(cand.upper, cand.lower, cand.window.start, cand.window.end,
                          prof.converge_ratio_max, prof.accel_factor)
    m = {
        "gapStart": conv.gap_start,
        "gapEnd": conv.gap_end,
        "convRatio": conv.ratio,
        "accelerating": conv.accelerating,
        "convergenceScore": conv.score,
    }
    if not conv.converges or conv.gap_start <= 0:
        return Reject("convergence_failed", _with(cand, m, convergence=conv))
    return Accept(_with(cand, m, convergence=conv))


def gate_containment(cand: Candidate, ctx: GateContext) -> GateResult:
    ratio = containment_ratio(cand.upper, cand.lower, ctx.bars.close,
                              cand.window.start, cand.window.end, ctx.profile.containment_tol_pct)
    m = {"closeInsideRatio": ratio}
    if ratio < ctx.profile.min_containment:
        return Reject("containment_violated", _with(cand, m))
    return Accept(_with(cand, m))


def gate_touches(cand: Candidate, ctx: GateContext) -> GateResult:
    t = collect_touches(cand.upper, cand.lower, ctx.bars.high, ctx.bars.low,
                        cand.window.start, cand.window.end, ctx.profile.touch_tol_pct)
    m = {
        "touchesUpper": t.upper_quality,
        "touchesLower": t.lower_quality,
        "breaksUpper": len(t.upper) - t.upper_quality,
        "breaksLower": len(t.lower) - t.lower_quality,
        "touchScore": t.score(),
    }
    need = ctx.profile.min_touches_per_line
    if t.upper_quality < need or t.lower_quality < need:
        return Reject("insufficient_touches", _with(cand, m, touches=t))
    return Accept(_with(cand, m, touches=t))


def gate_touch_gaps(cand: Candidate, ctx: GateContext) -> GateResult:
    up = cand.touches.indices("upper")
    lo = cand.touches.indices("lower")
    gap = max(max_gap(up), max_gap(lo))
    start_gap = abs(up[0] - lo[0]) if up and lo else float("inf")
    m = {"maxTouchGap": gap, "startGap": start_gap}
    if gap > ctx.profile.max_touch_gap:
        return Reject("touch_gap_too_large", _with(cand, m))
    if start_gap > ctx.profile.max_start_gap:
        return Reject("start_gap_too_large", _with(cand, m))
    return Accept(_with(cand, m))


def gate_balance(cand: Candidate, ctx: GateContext) -> GateResult:
    uq, lq = cand.touches.upper_quality, cand.touches.lower_quality
    balance = min(uq, lq) / max(uq, lq, 1)
    m = {"touchBalance": balance}
    if balance < ctx.profile.min_touch_balance:
        return Reject("unbalanced_touches", _with(cand, m))
    return Accept(_with(cand, m))


def gate_alternation(cand: Candidate, ctx: GateContext) -> GateResult:
    alt = alternation_ratio(cand.touches)
    m = {"alternation": alt}
    if alt < ctx.profile.min_alternation:
        return Reject("insufficient_alternation", _with(cand, m))
    return Accept(_with(cand, m))


def gate_score(cand: Candidate, ctx: GateContext) -> GateResult:
    prof = ctx.profile
    w = cand.window
    inside = inside_ratio(cand.upper, cand.lower, ctx.bars.high, ctx.bars.low, w.start, w.end)
    parts = {
        "fit": (cand.upper.r2 + cand.lower.r2) / 2.0,
        "convergence": cand.convergence.score,
        "touch": cand.touches.score(),
        "alternation": cand.metrics.get("alternation", 0.0),
        "inside": inside,
        "duration": duration_score(w.bars, prof.duration_min, prof.duration_max),
    }
    score = composite_score(parts, ctx.cfg.weights)
    m = {"insideRatio": inside, "durationScore": parts["duration"], "score": score}
    if score < prof.min_score:
        return Reject("score_below_threshold", _with(cand, m, score=score))
    return Accept(_with(cand, m, score=score))


CHANNEL_GATES: Sequence[Gate] = (
    gate_lines,
    gate_fit_quality,
    gate_classify,
    gate_apex,
    gate_convergence,
    gate_containment,
    gate_touches,
    gate_touch_gaps,
    gate_balance,
    gate_alternation,
    gate_score,
)

# Geometry gates for a triangle read off the latest pivots
FORMING_GATES: Sequence[Gate] = (
    gate_lines,
    gate_fit_quality,
    gate_classify,
    gate_apex,
    gate_convergence,
)


def run_gates(cand: Candidate, ctx: GateContext, gates: Sequence[Gate] = CHANNEL_GATES) -> GateResult:
    """Fold the candidate through the gates, stopping at the first rejection."""
    for gate in gates:
        out = gate(cand, ctx)
        if isinstance(out, Reject):
            return out
        cand = out.candidate
    return Accept(cand)


def gather_pivots(pivots: Sequence[Pivot], window: Window) -> Tuple[Tuple[Pivot, ...], Tuple[Pivot, ...]]:
    inside = [p for p in pivots if window.start <= p.index <= window.end]
    return tuple(p for p in inside if p.kind == "H"), tuple(p for p in inside if p.kind == "L")


def reason_counts(reasons: List[str]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for r in reasons:
        out[r] = out.get(r, 0) + 1
    return dict(sorted(out.items(), key=lambda kv: (-kv[1], kv[0])))
