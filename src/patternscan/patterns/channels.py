"""Two-line formations: wedges, triangles and pennants.

Every (window, profile) pair is evaluated independently through the gate
pipeline and yields one Diagnostic plus, when accepted, one PatternResult.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .common import Bars, Diagnostic, PatternResult, TRIANGLE_TYPES, Window, WEDGE_TYPES
from .config import DetectorConfig, StrictnessProfile
from .flags import find_pole_before, flag_params
from .gates import FORMING_GATES, Accept, Candidate, GateContext, gather_pivots, run_gates
from .geometry import average_true_range, line_summary, scan_breakout
from .lifecycle import expected_direction, prior_trend, resolve_status, wedge_outcome_label
from .pivots import PivotSet
from .windows import WindowBudget, take_windows

logger = logging.getLogger(__name__)

Evaluation = Tuple[Optional[PatternResult], Diagnostic]


def channel_types_for(wanted: Iterable[str]) -> FrozenSet[str]:
    """Types the classifier may emit; pennants are found as re-typed triangles."""
    wanted = set(wanted)
    allowed = {t for t in wanted if t in WEDGE_TYPES or t in TRIANGLE_TYPES}
    if "pennant" in wanted:
        allowed.update(TRIANGLE_TYPES)
    return frozenset(allowed)


def _diagnostic(cand: Candidate, accepted: bool, reason: str, profile: str) -> Diagnostic:
    idx: Dict = {"start": cand.window.start, "end": cand.window.end}
    if cand.highs:
        idx["highs"] = [p.index for p in cand.highs]
    if cand.lows:
        idx["lows"] = [p.index for p in cand.lows]
    return Diagnostic(type=cand.provisional_type(), accepted=accepted, reason=reason,
                      indices=idx, metrics=dict(cand.metrics), profile=profile)


def _build_pattern(cand: Candidate, ctx: GateContext, wanted: FrozenSet[str]) -> Tuple[Optional[PatternResult], str]:
    bars = ctx.bars
    cfg = ctx.cfg
    prof = ctx.profile
    w = cand.window
    ptype = cand.type
    details: Dict = {"profile": prof.name}

    trend = None
    if ptype in TRIANGLE_TYPES and "pennant" in wanted and w.bars <= cfg.triangle.pennant_max_bars:
        pole = find_pole_before(bars, w.start, cfg.triangle.pennant_pole_gap, flag_params(cfg.flag, cfg.timeframe))
        if pole is not None:
            ptype = "pennant"
            trend = pole.direction
            details.update({
                "poleDirection": pole.direction,
                "flagpoleHeight": pole.height,
                "poleStartIndex": pole.start,
                "poleEndIndex": pole.end,
            })
    if ptype not in wanted:
        return None, "type_not_requested"
    if ptype == "triangle_symmetrical":
        trend = prior_trend(bars.close, w.start, cfg.triangle.prior_trend_bars)
        details["priorTrend"] = trend

    atr = average_true_range(bars.high, bars.low, bars.close, w.start, w.end, prof.atr_period)
    scan_from = w.start + max(prof.breakout_scan_min, int(np.floor(w.bars * prof.breakout_scan_frac)))
    bo = scan_breakout(bars.close, cand.upper, cand.lower, scan_from, max(w.end, bars.last_index),
                       atr, prof.breakout_margin_atr, prof.direction_margin_atr)
    direction = bo.direction if bo is not None else None
    status, outcome = resolve_status(direction, expected_direction(ptype, trend),
                                     cand.bars_to_apex, cfg.near_completion_bars)
    end_idx = bo.index if bo is not None else w.end
    start_idx = w.start
    if ptype == "pennant":
        start_idx = min(start_idx, int(details["poleStartIndex"]))
    if bo is not None:
        details["breakoutBarIndex"] = bo.index
        details["breakoutPrice"] = bo.price
        label = wedge_outcome_label(ptype, bo.direction)
        if label:
            details["breakoutLabel"] = label
        if ptype == "pennant":
            details["breakoutTarget"] = bo.price + details["flagpoleHeight"] if bo.direction == "up" else bo.price - details["flagpoleHeight"]
            details["targetMethod"] = "flagpole_projection"
    details["atr"] = atr
    for key in ("convRatio", "closeInsideRatio", "touchesUpper", "touchesLower", "alternation", "score"):
        if key in cand.metrics:
            details[key] = cand.metrics[key]

    apex = {"idx": int(cand.apex_index), "barsToApex": int(cand.bars_to_apex)}
    if 0 <= cand.apex_index <= bars.last_index:
        apex["time"] = bars.iso(cand.apex_index)
    pat = PatternResult(
        type=ptype,
        confidence=round(float(cand.score), 2),
        start_index=start_idx,
        end_index=end_idx,
        start_time=bars.iso(start_idx),
        end_time=bars.iso(end_idx),
        status=status,
        breakout_direction=direction,
        outcome=outcome,
        pivots=sorted(cand.highs + cand.lows, key=lambda p: p.index),
        apex=apex,
        lines={"upper": line_summary(cand.upper, w.start, w.end),
               "lower": line_summary(cand.lower, w.start, w.end)},
        details=details,
    )
    return pat, "accepted"


def evaluate_window(window: Window, pivots: Sequence, ctx: GateContext,
                    wanted: FrozenSet[str]) -> Tuple[Optional[PatternResult], Diagnostic]:
    """Evaluate one window under one profile: (pattern or None, diagnostic)."""
    highs, lows = gather_pivots(pivots, window)
    cand = Candidate(window=window, highs=highs, lows=lows)
    out = run_gates(cand, ctx)
    if not isinstance(out, Accept):
        return None, _diagnostic(out.candidate, False, out.reason, ctx.profile.name)
    pat, reason = _build_pattern(out.candidate, ctx, wanted)
    diag = _diagnostic(out.candidate, pat is not None, reason, ctx.profile.name)
    if pat is not None:
        diag.type = pat.type
        diag.metrics["status"] = pat.status
        diag.metrics["confidence"] = pat.confidence
    return pat, diag


def scan_profile(bars: Bars, pivot_set: PivotSet, cfg: DetectorConfig, profile: StrictnessProfile,
                 wanted: FrozenSet[str], budget: WindowBudget) -> Tuple[List[Evaluation], bool]:
    allowed = channel_types_for(wanted)
    if not allowed:
        return [], False
    ctx = GateContext(bars=bars, cfg=cfg, profile=profile, allowed=allowed)
    windows, truncated = take_windows(len(bars), profile.window_min, profile.window_max,
                                      profile.window_step, profile.anchor_last, budget)
    pivots = pivot_set.for_source(profile.pivot_source)
    results = [evaluate_window(w, pivots, ctx, wanted) for w in windows]
    logger.debug("channels[%s]: %d windows, %d accepted", profile.name, len(windows),
                 sum(1 for p, _ in results if p is not None))
    return results, truncated


def drop_nested_pennants(results: List[Evaluation]) -> List[Evaluation]:
    """Reject pennants whose pole is a leg inside an accepted triangle.

    Triangles filtered out only because their type was not requested still
    count; their diagnostic carries the final score.
    """
    spans = [(p.start_index, p.end_index) for p, _ in results
             if p is not None and p.type in TRIANGLE_TYPES]
    spans += [(d.indices["start"], d.indices["end"]) for p, d in results
              if p is None and d.reason == "type_not_requested" and d.type in TRIANGLE_TYPES
              and "score" in d.metrics]
    out: List[Evaluation] = []
    for p, d in results:
        if p is not None and p.type == "pennant":
            pole_start = int(p.details["poleStartIndex"])
            pole_end = int(p.details["poleEndIndex"])
            host = next((s for s in spans if s[0] <= pole_start and s[1] >= pole_end), None)
            if host is not None:
                d.accepted = False
                d.reason = "pole_inside_triangle"
                d.metrics["triangleRange"] = [int(host[0]), int(host[1])]
                out.append((None, d))
                continue
        out.append((p, d))
    return out


def detect_channels(bars: Bars, pivot_set: PivotSet, cfg: DetectorConfig, wanted: FrozenSet[str],
                    budget: WindowBudget) -> Tuple[List[PatternResult], List[Diagnostic], bool]:
    profiles = [cfg.strict] + ([cfg.relaxed] if cfg.use_relaxed_profile else [])
    results: List[Evaluation] = []
    truncated = False
    for prof in profiles:
        r, t = scan_profile(bars, pivot_set, cfg, prof, wanted, budget)
        results.extend(r)
        truncated = truncated or t
    if "pennant" in wanted:
        results = drop_nested_pennants(results)
    patterns = [p for p, _ in results if p is not None]
    diags = [d for _, d in results]
    return patterns, diags, truncated


def _forming_profile(cfg: DetectorConfig) -> StrictnessProfile:
    return replace(cfg.relaxed, name="forming", line_method="ols", min_pivots_per_side=2,
                   min_r2=0.0, converge_ratio_max=cfg.triangle.forming_converge)


def detect_forming_triangle(bars: Bars, pivot_set: PivotSet, cfg: DetectorConfig,
                            wanted: FrozenSet[str]) -> Tuple[Optional[PatternResult], Diagnostic]:
    """Triangle still in progress, read off the most recent confirmed pivots.

    The lines run through the leading gates (fit, classification, apex,
    convergence) under a forming profile; only the completion share is
    checked here.
    """
    tc = cfg.triangle
    last = bars.last_index
    highs = tuple(p for p in pivot_set.base if p.kind == "H" and p.index < last - 1)[-tc.forming_pivots:]
    lows = tuple(p for p in pivot_set.base if p.kind == "L" and p.index < last - 1)[-tc.forming_pivots:]
    idx = {"highs": [p.index for p in highs], "lows": [p.index for p in lows]}
    if len(highs) < 2 or len(lows) < 2:
        return None, Diagnostic("triangle_forming", False, "insufficient_pivots", idx, profile="forming")
    first = min(highs[0].index, lows[0].index)
    span = last - first
    if span < tc.forming_min_bars or span > tc.forming_max_bars:
        return None, Diagnostic("triangle_forming", False, "span_out_of_range", idx, {"bars": span}, "forming")
    ctx = GateContext(bars=bars, cfg=cfg, profile=_forming_profile(cfg),
                      allowed=frozenset(t for t in TRIANGLE_TYPES if t in wanted))
    out = run_gates(Candidate(window=Window(first, last), highs=highs, lows=lows), ctx, FORMING_GATES)
    if not isinstance(out, Accept):
        return None, _diagnostic(out.candidate, False, out.reason, "forming")
    cand = out.candidate
    to_apex = int(cand.bars_to_apex)
    completion = min(100, int(round((1.0 - to_apex / max(1, span)) * 100)))
    if completion < tc.forming_min_completion * 100:
        diag = _diagnostic(cand, False, "completion_too_low", "forming")
        diag.metrics["completionPct"] = completion
        return None, diag
    conf = round(min(0.9, 0.6 + 0.2 * cand.convergence.score + (0.1 if to_apex <= 14 else 0.0)), 2)
    status, _ = resolve_status(None, None, to_apex, cfg.near_completion_bars)
    pat = PatternResult(
        type=cand.type,
        confidence=conf,
        start_index=first,
        end_index=last,
        start_time=bars.iso(first),
        end_time=bars.iso(last),
        status=status,
        pivots=sorted(highs + lows, key=lambda p: p.index),
        apex={"idx": int(cand.apex_index), "barsToApex": to_apex},
        lines={"upper": line_summary(cand.upper, first, last), "lower": line_summary(cand.lower, first, last)},
        details={"completionPct": completion, "profile": "forming", "convRatio": cand.convergence.ratio},
    )
    diag = _diagnostic(cand, True, "accepted_forming", "forming")
    diag.metrics.update({"completionPct": completion, "status": status, "confidence": conf})
    return pat, diag
