from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from .common import Bars, Diagnostic, PatternResult, Pivot, clamp01, near, rel_dev
from .config import DetectorConfig
from .pivots import alternate, split_pivots
from .scoring import finalize_conf, margin_from_rel_dev, period_score

logger = logging.getLogger(__name__)

# (pattern type, pivot kinds, middle-pivot shallow reason, unequal-extremes reason)
_SHAPES = (
    ("double_top", ("H", "L", "H"), "valley_too_shallow", "peaks_not_equal"),
    ("double_bottom", ("L", "H", "L"), "peak_too_shallow", "valleys_not_equal"),
)


def _diag(ptype: str, accepted: bool, reason: str, pts: Sequence[Pivot], metrics: Optional[Dict] = None) -> Diagnostic:
    return Diagnostic(type=ptype, accepted=accepted, reason=reason,
                      indices={"pivots": [p.index for p in pts]}, metrics=dict(metrics or {}))


def _neckline_break(bars: Bars, after: int, neck: float, top: bool, window: int, buffer: float) -> Optional[int]:
    for k in range(after + 1, min(after + window + 1, len(bars))):
        c = float(bars.close[k])
        if (top and c < neck * (1 - buffer)) or (not top and c > neck * (1 + buffer)):
            return k
    return None


def _scan_completed(seq: List[Pivot], bars: Bars, cfg: DetectorConfig, ptype: str, kinds: Tuple[str, str, str],
                    shallow_reason: str, unequal_reason: str, tol: float, conf_mult: float,
                    first_only: bool, record: bool) -> Tuple[List[PatternResult], List[Diagnostic]]:
    dc = cfg.double
    top = ptype == "double_top"
    min_dist = cfg.min_bars_between_swings
    out: List[PatternResult] = []
    diags: List[Diagnostic] = []
    for i in range(len(seq) - 2):
        a, b, c = seq[i], seq[i + 1], seq[i + 2]
        if (a.kind, b.kind, c.kind) != kinds:
            continue
        if b.index - a.index < min_dist or c.index - b.index < min_dist:
            continue
        height = rel_dev(a.price, b.price)
        if height < dc.min_height_pct:
            if record:
                diags.append(_diag(ptype, False, "pattern_too_small", (a, b, c), {"heightPct": height}))
            continue
        outer = (a.price + c.price) / 2.0
        depth = (outer - b.price) / outer if top else (b.price - outer) / outer
        if depth < dc.min_valley_depth:
            if record:
                diags.append(_diag(ptype, False, shallow_reason, (a, b, c), {"depthPct": depth}))
            continue
        dev = rel_dev(a.price, c.price)
        if not near(a.price, c.price, tol):
            if record:
                diags.append(_diag(ptype, False, unequal_reason, (a, b, c), {"diffPct": dev, "tolerancePct": tol}))
            continue
        neck = b.price
        bk = _neckline_break(bars, c.index, neck, top, dc.breakout_window, dc.breakout_buffer)
        if bk is None:
            if record:
                diags.append(_diag(ptype, False, "no_breakout", (a, b, c), {"neckline": neck}))
            continue
        base = (margin_from_rel_dev(dev, tol) + clamp01(1.0 - dev) + period_score(bars.time[a.index], bars.time[bk])) / 3.0
        conf = finalize_conf(base * conf_mult, ptype)
        extreme = max(a.price, c.price) if top else min(a.price, c.price)
        target = neck - (extreme - neck)
        pat = PatternResult(
            type=ptype,
            confidence=conf,
            start_index=a.index,
            end_index=bk,
            start_time=bars.iso(a.index),
            end_time=bars.iso(bk),
            status="completed",
            breakout_direction="down" if top else "up",
            outcome="success",
            pivots=[a, b, c],
            neckline=[(a.index, neck), (bk, neck)],
            details={
                "breakoutBarIndex": bk,
                "breakoutPrice": float(bars.close[bk]),
                "breakoutTarget": target,
                "targetMethod": "neckline_projection",
                "heightPct": height,
            },
        )
        out.append(pat)
        diags.append(_diag(ptype, True, "accepted", (a, b, c), {"breakoutIdx": bk, "confidence": conf}))
        if first_only:
            break
    return out, diags


def _forming_top(bars: Bars, peaks: List[Pivot], valleys: List[Pivot], cfg: DetectorConfig) -> Tuple[Optional[PatternResult], Diagnostic]:
    dc = cfg.double
    last = bars.last_index
    cur = float(bars.close[last])
    confirmed = [p for p in peaks if p.index < last - 2]
    if not confirmed:
        return None, _diag("double_top", False, "no_confirmed_peak", ())
    left = confirmed[-1]
    after = [v for v in valleys if v.index > left.index]
    if not after:
        return None, _diag("double_top", False, "no_valley_after_peak", (left,))
    valley = min(after, key=lambda v: v.price)
    pts = (left, valley)
    ratio = cur / left.price if left.price else 0.0
    if abs(ratio - 1.0) > dc.forming_price_band or cur <= valley.price:
        return None, _diag("double_top", False, "price_not_near_peak", pts, {"leftPct": ratio})
    depth = (left.price - valley.price) / left.price
    if depth < dc.forming_min_depth:
        return None, _diag("double_top", False, "valley_too_shallow", pts, {"depthPct": depth})
    span = last - left.index
    if span < dc.forming_min_bars or span > dc.forming_max_bars:
        return None, _diag("double_top", False, "span_out_of_range", pts, {"bars": span})
    progress = clamp01((cur - valley.price) / max(1e-12, left.price - valley.price))
    completion = 0.66 + 0.34 * progress
    conf = round(clamp01((1.0 - abs(ratio - 1.0)) * 0.6 + progress * 0.4), 2)
    neck = valley.price
    pat = PatternResult(
        type="double_top",
        confidence=conf,
        start_index=left.index,
        end_index=last,
        start_time=bars.iso(left.index),
        end_time=bars.iso(last),
        status="forming",
        pivots=[left, valley],
        neckline=[(left.index, neck), (last, neck)],
        details={
            "completionPct": int(round(completion * 100)),
            "breakoutTarget": neck - (left.price - neck),
            "targetMethod": "neckline_projection",
        },
    )
    return pat, _diag("double_top", True, "accepted_forming", pts, {"confidence": conf})


def _forming_bottom(bars: Bars, peaks: List[Pivot], valleys: List[Pivot], cfg: DetectorConfig) -> Tuple[Optional[PatternResult], Diagnostic]:
    dc = cfg.double
    last = bars.last_index
    cur = float(bars.close[last])
    tol = cfg.tolerance_pct * 1.5
    for j in range(len(valleys) - 1, 0, -1):
        right = valleys[j]
        for i in range(j - 1, -1, -1):
            left = valleys[i]
            if right.index - left.index < 5:
                continue
            mids = [p for p in peaks if left.index < p.index < right.index]
            if not mids:
                continue
            mid = max(mids, key=lambda p: p.price)
            d1 = (mid.price - left.price) / mid.price
            d2 = (mid.price - right.price) / mid.price
            if d1 < dc.forming_min_depth or d2 < dc.forming_min_depth:
                continue
            if rel_dev(left.price, right.price) > tol:
                continue
            if cur < right.price * 0.98:
                continue
            span = last - left.index
            if span < dc.forming_min_bars or span > dc.forming_max_bars:
                continue
            progress = clamp01((cur - right.price) / max(1e-12, mid.price - right.price))
            completion = 0.66 + 0.34 * progress
            conf = round(clamp01(0.5 + 0.5 * progress), 2)
            neck = mid.price
            bottom = min(left.price, right.price)
            pat = PatternResult(
                type="double_bottom",
                confidence=conf,
                start_index=left.index,
                end_index=last,
                start_time=bars.iso(left.index),
                end_time=bars.iso(last),
                status="forming",
                pivots=[left, mid, right],
                neckline=[(left.index, neck), (last, neck)],
                details={
                    "completionPct": int(round(completion * 100)),
                    "breakoutTarget": neck + (neck - bottom),
                    "targetMethod": "neckline_projection",
                },
            )
            return pat, _diag("double_bottom", True, "accepted_forming", (left, mid, right), {"confidence": conf})
    return None, _diag("double_bottom", False, "no_forming_candidate", ())


def detect_doubles(bars: Bars, base: Sequence[Pivot], cfg: DetectorConfig, wanted: FrozenSet[str],
                   include_forming: bool = False) -> Tuple[List[PatternResult], List[Diagnostic]]:
    seq = alternate(list(base))
    peaks, valleys = split_pivots(list(base))
    patterns: List[PatternResult] = []
    diags: List[Diagnostic] = []
    for ptype, kinds, shallow, unequal in _SHAPES:
        if ptype not in wanted:
            continue
        found, d = _scan_completed(seq, bars, cfg, ptype, kinds, shallow, unequal,
                                   cfg.tolerance_pct, 1.0, False, True)
        diags.extend(d)
        if not found:
            # Looser level equality, first placement only
            found, d = _scan_completed(seq, bars, cfg, ptype, kinds, shallow, unequal,
                                       cfg.tolerance_pct * cfg.double.fallback_tol_mult,
                                       cfg.double.fallback_conf_mult, True, False)
            for p in found:
                p.details["fallback"] = "relaxed_tolerance"
            diags.extend(d)
        patterns.extend(found)
        if include_forming:
            builder = _forming_top if ptype == "double_top" else _forming_bottom
            pat, diag = builder(bars, peaks, valleys, cfg)
            diags.append(diag)
            if pat is not None:
                patterns.append(pat)
    logger.debug("doubles: %d patterns", len(patterns))
    return patterns, diags
