from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..core.constants import bars_per_day
from .common import Bars, Diagnostic, PatternResult, Pivot, clamp01
from .config import DetectorConfig, FlagConfig
from .geometry import average_true_range, line_summary, scan_breakout
from .lifecycle import resolve_status
from .pivots import find_pivots, split_pivots
from .scoring import finalize_conf
from .trendline import fit_pivots

logger = logging.getLogger(__name__)

# (ATR multiple, minimum close-to-close change) a flagpole must reach, per timeframe
_POLE_THRESHOLDS = {
    "M1": (1.5, 0.01),
    "M5": (1.5, 0.01),
    "M15": (1.5, 0.015),
    "M30": (1.5, 0.015),
    "H1": (1.5, 0.02),
    "D1": (2.0, 0.05),
    "W1": (2.0, 0.06),
    "MN1": (2.5, 0.08),
}
_DEFAULT_POLE_THRESHOLD = (1.5, 0.03)


@dataclass(frozen=True)
class FlagParams:
    pole_min: int
    pole_max: int
    cons_min: int
    cons_max: int
    atr_mult: float
    change_pct: float


def flag_params(fc: FlagConfig, timeframe: str) -> FlagParams:
    bpd = bars_per_day(timeframe)
    mult, pct = _POLE_THRESHOLDS.get(str(timeframe).upper(), _DEFAULT_POLE_THRESHOLD)
    return FlagParams(
        pole_min=max(fc.pole_min_bars, int(round(fc.pole_min_days * bpd))),
        pole_max=max(fc.pole_max_bars, int(round(fc.pole_max_days * bpd))),
        cons_min=max(fc.cons_min_bars, int(round(fc.cons_min_days * bpd))),
        cons_max=max(fc.cons_max_bars, int(round(fc.cons_max_days * bpd))),
        atr_mult=fc.pole_atr_mult if fc.pole_atr_mult > 0 else mult,
        change_pct=fc.pole_change_pct if fc.pole_change_pct > 0 else pct,
    )


@dataclass(frozen=True)
class Pole:
    start: int
    end: int
    direction: str
    height: float
    change_pct: float
    atr_mult: float


def find_pole(bars: Bars, pole_end: int, params: FlagParams) -> Optional[Pole]:
    """Strongest impulsive close-to-close move (in ATR multiples) ending at pole_end."""
    best: Optional[Pole] = None
    step = 2 if params.pole_max > 50 else 1
    for length in range(params.pole_min, min(params.pole_max, pole_end) + 1, step):
        ps = pole_end - length
        start_px = float(bars.close[ps])
        move = float(bars.close[pole_end]) - start_px
        change = abs(move) / max(1e-12, start_px)
        atr = average_true_range(bars.high, bars.low, bars.close, max(1, ps), pole_end)
        if atr <= 0:
            continue
        mult = abs(move) / atr
        if mult < params.atr_mult or change < params.change_pct:
            continue
        if best is None or mult > best.atr_mult:
            best = Pole(ps, int(pole_end), "up" if move > 0 else "down", abs(move), change, mult)
    return best


def find_pole_before(bars: Bars, start: int, gap: int, params: FlagParams) -> Optional[Pole]:
    """Pole ending within `gap` bars before (or at) `start`, strongest first."""
    best: Optional[Pole] = None
    for end in range(max(params.pole_min, start - gap), start + 1):
        pole = find_pole(bars, end, params)
        if pole is not None and (best is None or pole.atr_mult > best.atr_mult):
            best = pole
    return best


def _reject(reason: str, idxs: List[int], metrics: Dict) -> Diagnostic:
    return Diagnostic(type="flag", accepted=False, reason=reason,
                      indices={"start": idxs[0], "end": idxs[-1]}, metrics=metrics)


def detect_flags(bars: Bars, cfg: DetectorConfig) -> Tuple[List[PatternResult], List[Diagnostic]]:
    fc = cfg.flag
    params = flag_params(fc, cfg.timeframe)
    last = bars.last_index
    patterns: List[PatternResult] = []
    diags: List[Diagnostic] = []
    if last < 15:
        return patterns, diags
    highs, lows = split_pivots(find_pivots(bars.high, bars.low, 1, time=bars.time))
    outer = 2 if params.pole_max > 100 else 1
    for pole_end in range(params.pole_min, last - params.cons_min + 1, outer):
        pole = find_pole(bars, pole_end, params)
        if pole is None:
            continue
        atr = average_true_range(bars.high, bars.low, bars.close, max(1, pole.start), pole_end)
        cons_start = pole_end + 1
        if atr <= 0 or cons_start > last - 2:
            continue
        cons_max_end = min(last, pole_end + params.cons_max)
        ch = [p for p in highs if cons_start <= p.index <= cons_max_end]
        cl = [p for p in lows if cons_start <= p.index <= cons_max_end]
        base_m = {"poleATRMult": round(pole.atr_mult, 2), "highs": len(ch), "lows": len(cl)}
        if len(ch) < fc.min_swings_per_side or len(cl) < fc.min_swings_per_side:
            diags.append(_reject("insufficient_consolidation_swings", [pole.start, pole_end], base_m))
            continue
        cons_end = max(ch[-1].index, cl[-1].index)
        width = max(1, cons_end - cons_start)
        up_span = ch[-1].index - ch[0].index
        lo_span = cl[-1].index - cl[0].index
        if up_span < width * fc.min_span_ratio or lo_span < width * fc.min_span_ratio:
            diags.append(_reject("trendline_span_too_short", [pole.start, pole_end],
                                 dict(base_m, upperSpan=up_span, lowerSpan=lo_span, zoneWidth=width)))
            continue
        upper = fit_pivots(ch)
        lower = fit_pivots(cl)
        if upper.r2 < fc.min_r2 or lower.r2 < fc.min_r2:
            diags.append(_reject("poor_trendline_fit", [pole.start, cons_max_end],
                                 dict(base_m, r2Upper=upper.r2, r2Lower=lower.r2)))
            continue
        gap_start = upper.value_at(cons_start) - lower.value_at(cons_start)
        gap_end = upper.value_at(cons_end) - lower.value_at(cons_end)
        if gap_start <= 0 or gap_end <= 0:
            diags.append(_reject("lines_crossed", [pole.start, cons_end],
                                 dict(base_m, gapStart=gap_start, gapEnd=gap_end)))
            continue
        if gap_start > pole.height * fc.max_width_ratio:
            diags.append(_reject("consolidation_too_wide", [pole.start, cons_end],
                                 dict(base_m, consRange=gap_start, poleRange=pole.height)))
            continue
        conv = gap_end / gap_start
        avg_slope = (upper.slope + lower.slope) / 2.0
        slope_diff = abs(upper.slope - lower.slope)
        parallel = slope_diff < abs(avg_slope) * fc.parallel_tol or conv > fc.parallel_conv_ratio
        against = avg_slope < 0 if pole.direction == "up" else avg_slope > 0
        if not (parallel and against and conv > fc.min_conv_ratio):
            diags.append(_reject("classification_failed", [pole.start, cons_end],
                                 dict(base_m, convergenceRatio=conv, isParallel=parallel,
                                      isAgainstPole=against, poleDirection=pole.direction)))
            continue

        scan_from = cons_start + max(fc.breakout_scan_min, int(np.floor((cons_end - cons_start) * fc.breakout_scan_frac)))
        bo = scan_breakout(bars.close, upper, lower, scan_from, last, atr,
                           fc.breakout_margin_atr, fc.breakout_margin_atr)
        end_idx = bo.index if bo is not None else cons_end
        if bo is not None:
            status, outcome = resolve_status(bo.direction, pole.direction)
        else:
            status = "near_completion" if (cons_end - cons_start) > params.cons_max * fc.near_completion_frac else "forming"
            outcome = None

        pole_score = clamp01(pole.atr_mult / (params.atr_mult * 3.0))
        conv_score = clamp01(1.0 - abs(1.0 - conv) / 0.5)
        fit_score = (upper.r2 + lower.r2) / 2.0
        touch_score = clamp01((len(ch) + len(cl)) / 6.0)
        base = pole_score * 0.30 + conv_score * 0.25 + fit_score * 0.20 + touch_score * 0.25
        conf = finalize_conf(base, "flag")

        details: Dict = {
            "poleDirection": pole.direction,
            "flagpoleHeight": pole.height,
            "poleATRMult": round(pole.atr_mult, 2),
            "convergenceRatio": conv,
        }
        if bo is not None:
            target = bo.price + pole.height if bo.direction == "up" else bo.price - pole.height
            details["breakoutBarIndex"] = bo.index
            details["breakoutTarget"] = target
            details["targetMethod"] = "flagpole_projection"
            if abs(target - bo.price) > 1e-12:
                details["targetReachedPct"] = int(round((float(bars.close[last]) - bo.price) / (target - bo.price) * 100))
        piv = [Pivot(pole.start, float(bars.close[pole.start]), "L" if pole.direction == "up" else "H", float(bars.time[pole.start])),
               Pivot(pole_end, float(bars.close[pole_end]), "H" if pole.direction == "up" else "L", float(bars.time[pole_end]))]
        pat = PatternResult(
            type="flag",
            confidence=conf,
            start_index=pole.start,
            end_index=end_idx,
            start_time=bars.iso(pole.start),
            end_time=bars.iso(end_idx),
            status=status,
            breakout_direction=bo.direction if bo is not None else None,
            outcome=outcome,
            pivots=piv + sorted(ch + cl, key=lambda p: p.index),
            lines={"upper": line_summary(upper, cons_start, cons_end),
                   "lower": line_summary(lower, cons_start, cons_end)},
            details=details,
        )
        patterns.append(pat)
        diags.append(Diagnostic(type="flag", accepted=True, reason="accepted",
                                indices={"start": pole.start, "end": end_idx},
                                metrics=dict(base_m, convergenceRatio=conv, r2Upper=upper.r2, r2Lower=lower.r2,
                                             status=status, confidence=conf)))
    logger.debug("flags: %d accepted of %d evaluated", len(patterns), len(diags))
    return patterns, diags
