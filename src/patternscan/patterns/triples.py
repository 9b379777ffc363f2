from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np

from .common import Bars, Diagnostic, PatternResult, Pivot, clamp01, near, rel_dev
from .config import DetectorConfig
from .lifecycle import resolve_status
from .pivots import split_pivots
from .scoring import finalize_conf, period_score

logger = logging.getLogger(__name__)


def _diag(ptype: str, accepted: bool, reason: str, pts: Sequence[Pivot], metrics: Optional[Dict] = None) -> Diagnostic:
    return Diagnostic(type=ptype, accepted=accepted, reason=reason,
                      indices={"pivots": [p.index for p in pts]}, metrics=dict(metrics or {}))


def _neck_break(bars: Bars, after: int, neck: float, bottom: bool, window: int) -> Optional[int]:
    for k in range(after + 1, min(after + window + 1, len(bars))):
        c = float(bars.close[k])
        if (bottom and c > neck) or (not bottom and c < neck):
            return k
    return None


def _scan(bars: Bars, same: List[Pivot], other: List[Pivot], cfg: DetectorConfig, bottom: bool,
          tol: float, conf_mult: float, record: bool, first_only: bool) -> Tuple[List[PatternResult], List[Diagnostic]]:
    tc = cfg.triple
    ptype = "triple_bottom" if bottom else "triple_top"
    min_dist = cfg.min_bars_between_swings
    out: List[PatternResult] = []
    diags: List[Diagnostic] = []
    for i in range(len(same) - 2):
        a, b, c = same[i], same[i + 1], same[i + 2]
        if b.index - a.index < min_dist or c.index - b.index < min_dist:
            continue
        if not (near(a.price, b.price, tol) and near(b.price, c.price, tol) and near(a.price, c.price, tol)):
            continue
        pts = (a, b, c)
        pick = max if bottom else min
        m1 = [p for p in other if a.index < p.index < b.index]
        m2 = [p for p in other if b.index < p.index < c.index]
        if not (m1 and m2):
            if record:
                diags.append(_diag(ptype, False, "peaks_missing" if bottom else "valleys_missing", pts))
            continue
        v1 = pick(m1, key=lambda p: p.price)
        v2 = pick(m2, key=lambda p: p.price)
        slope = rel_dev(v1.price, v2.price)
        levels_near = slope <= tol
        neck_ok = slope <= tc.max_neckline_slope
        lows = [a.price, b.price, c.price]
        spread_ok = True
        if bottom:
            spread_ok = (max(lows) - min(lows)) / max(1e-12, min(lows)) <= tc.max_valley_spread
        if not (levels_near and neck_ok and spread_ok):
            if record:
                if bottom and not spread_ok:
                    reason = "valley_spread_excess"
                elif not levels_near:
                    reason = "peaks_not_equal" if bottom else "valleys_not_equal"
                else:
                    reason = "neckline_slope_excess"
                diags.append(_diag(ptype, False, reason, pts, {"necklineSlope": slope}))
            continue
        devs = [rel_dev(a.price, b.price), rel_dev(b.price, c.price), rel_dev(a.price, c.price)]
        tol_margin = clamp01(1.0 - float(np.mean(devs)) / max(1e-12, tol))
        span = max(lows) - min(lows)
        symmetry = clamp01(1.0 - span / max(1e-12, max(lows)))
        base = (tol_margin + symmetry + period_score(bars.time[a.index], bars.time[c.index])) / 3.0
        conf = finalize_conf(base * conf_mult, ptype)
        nl = (v1.price + v2.price) / 2.0
        avg = float(np.mean(lows))
        bk = _neck_break(bars, c.index, nl, bottom, tc.breakout_window)
        direction = None if bk is None else ("up" if bottom else "down")
        status, outcome = resolve_status(direction, "up" if bottom else "down")
        end_idx = bk if bk is not None else c.index
        details: Dict = {
            "breakoutTarget": nl + (nl - avg) if bottom else nl - (avg - nl),
            "targetMethod": "neckline_projection",
        }
        if bk is not None:
            details["breakoutBarIndex"] = bk
        out.append(PatternResult(
            type=ptype,
            confidence=conf,
            start_index=a.index,
            end_index=end_idx,
            start_time=bars.iso(a.index),
            end_time=bars.iso(end_idx),
            status=status,
            breakout_direction=direction,
            outcome=outcome,
            pivots=sorted([a, v1, b, v2, c], key=lambda p: p.index),
            neckline=[(a.index, nl), (c.index, nl)],
            details=details,
        ))
        diags.append(_diag(ptype, True, "accepted", pts, {"confidence": conf}))
        if first_only:
            break
    return out, diags


def _forming(bars: Bars, same: List[Pivot], other: List[Pivot], cfg: DetectorConfig,
             bottom: bool) -> Tuple[Optional[PatternResult], Diagnostic]:
    """Two confirmed equal extremes with price returning to their level."""
    tc = cfg.triple
    ptype = "triple_bottom" if bottom else "triple_top"
    last = bars.last_index
    cur = float(bars.close[last])
    tol = cfg.tolerance_pct * tc.forming_tol_mult
    confirmed = [p for p in same if p.index < last - 2]
    for i in range(len(confirmed) - 1, 0, -1):
        p2, p1 = confirmed[i], confirmed[i - 1]
        if p2.index - p1.index < cfg.min_bars_between_swings:
            continue
        if rel_dev(p1.price, p2.price) > tol:
            continue
        level = (p1.price + p2.price) / 2.0
        diff = abs(cur - level) / max(1e-12, level)
        if diff > tol:
            continue
        if (not bottom and cur < level * 0.95) or (bottom and cur > level * 1.05):
            continue
        span = last - p1.index
        if span < tc.forming_min_bars or span > tc.forming_max_bars:
            continue
        progress = min(1.0, level / cur) if bottom else min(1.0, cur / level)
        completion = min(1.0, 0.66 + progress * 0.34)
        conf = round((1.0 - diff / tol) * 0.8, 2)
        if conf < tc.forming_min_conf:
            continue
        between = [p for p in other if p1.index < p.index < last]
        if between:
            nl = float(np.mean([p.price for p in between]))
        else:
            nl = max(p1.price, p2.price) * 1.05 if bottom else min(p1.price, p2.price) * 0.95
        pat = PatternResult(
            type=ptype,
            confidence=conf,
            start_index=p1.index,
            end_index=last,
            start_time=bars.iso(p1.index),
            end_time=bars.iso(last),
            status="forming",
            pivots=[p1, p2],
            neckline=[(p1.index, nl), (last, nl)],
            details={
                "breakoutTarget": nl + (nl - level) if bottom else nl - (level - nl),
                "targetMethod": "neckline_projection",
                "completionPct": int(round(completion * 100)),
            },
        )
        return pat, _diag(ptype, True, "accepted_forming", (p1, p2), {"confidence": conf})
    return None, _diag(ptype, False, "no_forming_candidate", ())


def detect_triples(bars: Bars, base: Sequence[Pivot], cfg: DetectorConfig, wanted: FrozenSet[str],
                   include_forming: bool = False) -> Tuple[List[PatternResult], List[Diagnostic]]:
    tc = cfg.triple
    peaks, valleys = split_pivots(list(base))
    patterns: List[PatternResult] = []
    diags: List[Diagnostic] = []
    for bottom in (False, True):
        ptype = "triple_bottom" if bottom else "triple_top"
        if ptype not in wanted:
            continue
        same, other = (valleys, peaks) if bottom else (peaks, valleys)
        found, d = _scan(bars, same, other, cfg, bottom, cfg.tolerance_pct, 1.0, True, False)
        diags.extend(d)
        for mult in tc.fallback_tol_mults:
            if found:
                break
            found, d = _scan(bars, same, other, cfg, bottom, cfg.tolerance_pct * mult,
                             tc.fallback_conf_mult, False, True)
            for p in found:
                p.details["fallback"] = f"relaxed_x{mult}"
            diags.extend(d)
        patterns.extend(found)
        if include_forming:
            pat, diag = _forming(bars, same, other, cfg, bottom)
            diags.append(diag)
            if pat is not None:
                patterns.append(pat)
    logger.debug("triples: %d patterns", len(patterns))
    return patterns, diags
