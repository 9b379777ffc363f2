from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from .common import Bars, Diagnostic, PatternResult, Pivot, clamp01, rel_dev
from .config import DetectorConfig
from .lifecycle import resolve_status
from .pivots import alternate, split_pivots
from .scoring import finalize_conf, margin_from_rel_dev, period_score
from .trendline import line_through

logger = logging.getLogger(__name__)


def _diag(ptype: str, accepted: bool, reason: str, pts: Sequence[Pivot], metrics: Optional[Dict] = None) -> Diagnostic:
    return Diagnostic(type=ptype, accepted=accepted, reason=reason,
                      indices={"pivots": [p.index for p in pts]}, metrics=dict(metrics or {}))


def _resolve(bars: Bars, right: Pivot, head: Pivot, neck: Tuple[Tuple[int, float], Tuple[int, float]],
             inverse: bool, window: int) -> Tuple[Optional[int], Optional[str]]:
    """First close through the neckline (or back beyond the head) after the right shoulder."""
    line = line_through(neck[0][0], neck[0][1], neck[1][0], neck[1][1])
    for k in range(right.index + 1, min(right.index + window + 1, len(bars))):
        c = float(bars.close[k])
        if not inverse:
            if c < line.value_at(k):
                return k, "down"
            if c > head.price:
                return k, "up"
        else:
            if c > line.value_at(k):
                return k, "up"
            if c < head.price:
                return k, "down"
    return None, None


def _scan(seq: List[Pivot], bars: Bars, cfg: DetectorConfig, inverse: bool, shoulder_tol: float,
          head_margin: float, conf_mult: float, relaxed_neck: Optional[List[Pivot]], record: bool,
          first_only: bool) -> Tuple[List[PatternResult], List[Diagnostic]]:
    ptype = "inverse_head_and_shoulders" if inverse else "head_and_shoulders"
    kinds = ("L", "H", "L", "H", "L") if inverse else ("H", "L", "H", "L", "H")
    min_dist = cfg.min_bars_between_swings
    out: List[PatternResult] = []
    diags: List[Diagnostic] = []
    for i in range(len(seq) - 4):
        p0, p1, p2, p3, p4 = seq[i:i + 5]
        if tuple(p.kind for p in (p0, p1, p2, p3, p4)) != kinds:
            continue
        if any(b.index - a.index < min_dist for a, b in ((p0, p1), (p1, p2), (p2, p3), (p3, p4))):
            continue
        pts = (p0, p1, p2, p3, p4)
        dev = rel_dev(p0.price, p4.price)
        shoulders_near = dev <= shoulder_tol
        if inverse:
            head_ok = p2.price < min(p0.price, p4.price) * (1 - head_margin)
        else:
            head_ok = p2.price > max(p0.price, p4.price) * (1 + head_margin)
        if not (shoulders_near and head_ok):
            if record:
                reason = "shoulders_not_near" if not shoulders_near else ("head_not_lower" if inverse else "head_not_higher")
                diags.append(_diag(ptype, False, reason, pts, {
                    "leftShoulder": p0.price, "rightShoulder": p4.price, "head": p2.price,
                    "shouldersDiffPct": dev, "thresholdPct": shoulder_tol,
                }))
            continue
        if relaxed_neck is not None:
            between = [p for p in relaxed_neck if p0.index < p.index < p4.index]
            if between:
                ref = max(between, key=lambda p: p.price) if inverse else min(between, key=lambda p: p.price)
                level = ref.price
            else:
                level = max(p1.price, p3.price) if inverse else min(p1.price, p3.price)
            neck = ((p1.index, level), (p3.index, level))
        else:
            neck = ((p1.index, p1.price), (p3.index, p3.price))
        nl_avg = (neck[0][1] + neck[1][1]) / 2.0
        base = (margin_from_rel_dev(dev, shoulder_tol) + clamp01(1.0 - dev)
                + period_score(bars.time[p0.index], bars.time[p4.index])) / 3.0
        conf = finalize_conf(base * conf_mult, ptype)
        bk, direction = _resolve(bars, p4, p2, neck, inverse, cfg.head_shoulders.breakout_window)
        status, outcome = resolve_status(direction, "up" if inverse else "down")
        end_idx = bk if bk is not None else p4.index
        details: Dict = {
            "breakoutTarget": nl_avg + (nl_avg - p2.price) if inverse else nl_avg - (p2.price - nl_avg),
            "targetMethod": "neckline_projection",
        }
        if bk is not None:
            details["breakoutBarIndex"] = bk
            details["breakoutPrice"] = float(bars.close[bk])
        out.append(PatternResult(
            type=ptype,
            confidence=conf,
            start_index=p0.index,
            end_index=end_idx,
            start_time=bars.iso(p0.index),
            end_time=bars.iso(end_idx),
            status=status,
            breakout_direction=direction,
            outcome=outcome,
            pivots=list(pts),
            neckline=[neck[0], neck[1]],
            details=details,
        ))
        diags.append(_diag(ptype, True, "accepted", pts, {"confidence": conf, "status": status}))
        if first_only:
            break
    return out, diags


def _forming(bars: Bars, peaks: List[Pivot], valleys: List[Pivot], cfg: DetectorConfig,
             inverse: bool) -> Tuple[Optional[PatternResult], Diagnostic]:
    """Head and left shoulder confirmed, right shoulder confirmed or provisional at the last close."""
    hc = cfg.head_shoulders
    ptype = "inverse_head_and_shoulders" if inverse else "head_and_shoulders"
    last = bars.last_index
    cur = float(bars.close[last])
    tops = valleys if inverse else peaks
    bottoms = peaks if inverse else valleys
    confirmed = [p for p in tops if p.index < last - 2]
    if len(confirmed) < 2:
        return None, _diag(ptype, False, "insufficient_confirmed_pivots", ())
    # Mirror prices for the inverse pattern so comparisons read the same way
    sgn = -1.0 if inverse else 1.0
    head = max(confirmed, key=lambda p: sgn * p.price)
    lefts = [p for p in confirmed if p.index < head.index and sgn * head.price > sgn * p.price * (1 + sgn * hc.head_min_excess)]
    if not lefts:
        return None, _diag(ptype, False, "no_left_shoulder", (head,))
    left = lefts[-1]
    post = [v for v in bottoms if head.index < v.index < last - 1]
    if not post:
        return None, _diag(ptype, False, "no_post_head_pivot", (left, head))
    trough = post[0]
    tol = hc.shoulder_match
    rights = [p for p in tops if p.index > trough.index and sgn * p.price < sgn * head.price
              and rel_dev(p.price, left.price) <= tol]
    right: Optional[Pivot] = rights[-1] if rights else None
    provisional = False
    if right is None:
        if rel_dev(cur, left.price) <= tol and sgn * cur < sgn * head.price and sgn * cur > sgn * trough.price:
            right = Pivot(last, cur, "L" if inverse else "H", float(bars.time[last]))
            provisional = True
    if right is None:
        return None, _diag(ptype, False, "no_right_shoulder", (left, head, trough))
    closeness = 1.0 - abs(right.price - left.price) / max(1e-12, abs(left.price) * tol)
    progress = clamp01(closeness)
    completion = min(1.0, (0.75 + 0.25 * progress) * (hc.provisional_penalty if provisional else 1.0))
    span = right.index - left.index
    pts = (left, head, trough, right)
    if span < hc.forming_min_bars or span > hc.forming_max_bars:
        return None, _diag(ptype, False, "span_out_of_range", pts, {"bars": span})
    pre = [v for v in bottoms if left.index < v.index < head.index]
    if pre:
        anchor = max(pre, key=lambda v: v.price) if inverse else min(pre, key=lambda v: v.price)
        neck = [(anchor.index, anchor.price), (trough.index, trough.price)]
    else:
        neck = [(left.index, trough.price), (trough.index, trough.price)]
    conf = round(clamp01(0.6 * closeness + 0.4 * progress) * (hc.provisional_penalty if provisional else 1.0), 2)
    nl = neck[0][1]
    pat = PatternResult(
        type=ptype,
        confidence=conf,
        start_index=left.index,
        end_index=right.index,
        start_time=bars.iso(left.index),
        end_time=bars.iso(right.index),
        status="forming",
        pivots=list(pts),
        neckline=neck,
        details={
            "breakoutTarget": nl + (nl - head.price) if inverse else nl - (head.price - nl),
            "targetMethod": "neckline_projection",
            "completionPct": int(round(completion * 100)),
            "provisionalRightShoulder": provisional,
        },
    )
    return pat, _diag(ptype, True, "accepted_forming", pts, {"confidence": conf})


def detect_head_shoulders(bars: Bars, base: Sequence[Pivot], cfg: DetectorConfig, wanted: FrozenSet[str],
                          include_forming: bool = False) -> Tuple[List[PatternResult], List[Diagnostic]]:
    hc = cfg.head_shoulders
    tol = cfg.tolerance_pct
    seq = alternate(list(base))
    peaks, valleys = split_pivots(list(base))
    patterns: List[PatternResult] = []
    diags: List[Diagnostic] = []
    for inverse in (False, True):
        ptype = "inverse_head_and_shoulders" if inverse else "head_and_shoulders"
        if ptype not in wanted:
            continue
        found, d = _scan(seq, bars, cfg, inverse, tol, tol, 1.0, None, True, False)
        diags.extend(d)
        for shoulder_mult, head_share in hc.fallback_passes:
            if found:
                break
            found, d = _scan(seq, bars, cfg, inverse, tol * shoulder_mult, tol * head_share,
                             hc.fallback_conf_mult, peaks if inverse else valleys, False, True)
            for p in found:
                p.details["fallback"] = f"relaxed_x{shoulder_mult}_{head_share}"
            diags.extend(d)
        patterns.extend(found)
        if include_forming:
            pat, diag = _forming(bars, peaks, valleys, cfg, inverse)
            diags.append(diag)
            if pat is not None:
                patterns.append(pat)
    logger.debug("head_shoulders: %d patterns", len(patterns))
    return patterns, diags
