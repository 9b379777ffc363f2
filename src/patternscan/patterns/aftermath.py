"""Post-pattern performance: breakout confirmation, price moves and target checks."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np

from .common import Bars, PatternResult
from .config import AftermathConfig

BULLISH_TYPES = ("double_bottom", "inverse_head_and_shoulders", "triangle_ascending",
                 "triangle_symmetrical", "triple_bottom")
BEARISH_TYPES = ("double_top", "head_and_shoulders", "triangle_descending", "triple_top")


def _bias(p: PatternResult) -> Optional[str]:
    if p.type in ("pennant", "flag"):
        return p.details.get("poleDirection")
    if p.type in BULLISH_TYPES:
        return "up"
    if p.type in BEARISH_TYPES:
        return "down"
    return None


def neckline_value(p: PatternResult, idx: int) -> Optional[float]:
    """Neckline price at bar idx, interpolated and held flat beyond its endpoints."""
    if len(p.neckline) != 2:
        return None
    (x1, y1), (x2, y2) = p.neckline
    if x2 == x1:
        return float(y1)
    t = (float(idx) - float(x1)) / (float(x2) - float(x1))
    t = max(0.0, min(1.0, t))
    return float(y1) + (float(y2) - float(y1)) * t


def analyze_aftermath(p: PatternResult, bars: Bars, acfg: AftermathConfig) -> Optional[Dict[str, Any]]:
    end = int(p.end_index)
    if end < 0 or end >= len(bars):
        return None
    base = float(bars.close[end])
    nl_end = neckline_value(p, end)
    bias = _bias(p)
    if nl_end is None or bias is None or base == 0:
        return None
    last = bars.last_index
    confirmed = False
    breakout_date = None
    for i in range(end + 1, min(len(bars), end + acfg.breakout_window)):
        nl = neckline_value(p, i)
        c = float(bars.close[i])
        if (bias == "up" and c > nl * (1 + acfg.breakout_buffer)) or (bias == "down" and c < nl * (1 - acfg.breakout_buffer)):
            confirmed = True
            breakout_date = bars.iso(i)
            break
    moves: Dict[str, Dict[str, float]] = {}
    for h in acfg.horizons:
        to = min(last, end + int(h))
        if to <= end:
            continue
        seg = slice(end + 1, to + 1)
        moves[f"days{h}"] = {
            "return": round((float(bars.close[to]) - base) / base * 100.0, 2),
            "high": float(np.max(bars.high[seg])),
            "low": float(np.min(bars.low[seg])),
        }
    prices = [pv.price for pv in p.pivots]
    target = None
    if prices:
        target = nl_end + (nl_end - min(prices)) if bias == "up" else nl_end - (max(prices) - nl_end)
    reached = False
    days_to_target = None
    if target is not None:
        for i in range(end + 1, min(last, end + acfg.target_window) + 1):
            if (bias == "up" and bars.high[i] >= target) or (bias == "down" and bars.low[i] <= target):
                reached = True
                days_to_target = i - end
                break
    code, text = _outcome(confirmed, reached, moves, bias)
    return {
        "breakoutDate": breakout_date,
        "breakoutConfirmed": confirmed,
        "priceMove": moves,
        "targetReached": reached,
        "theoreticalTarget": target,
        "daysToTarget": days_to_target,
        "outcome": code,
        "outcomeText": text,
    }


def _outcome(confirmed: bool, reached: bool, moves: Dict[str, Dict[str, float]], bias: str):
    if not confirmed:
        return "not_broken", "Neckline not broken (pattern did not trigger)"
    if reached:
        return "success", "Success (theoretical target reached)"
    rets = [m["return"] for m in moves.values()]
    if not rets:
        return "insufficient_data", "Not evaluable (not enough bars after the pattern)"
    best = max(rets, key=abs)
    expected = 1 if bias == "up" else -1
    actual = 1 if best > 0 else -1
    if expected == actual and abs(best) > 3:
        return "partial_success", f"Partial success ({best:+.1f}% after breakout, target not reached)"
    if expected != actual and abs(best) > 3:
        return "failure", f"Failure ({best:+.1f}% against the expected direction)"
    return "failure", f"Failure (little movement after breakout: {best:+.1f}%)"


def build_statistics(patterns: List[PatternResult], bars: Bars, acfg: AftermathConfig) -> Dict[str, Any]:
    """Attach aftermath to each pattern (where defined) and aggregate per type."""
    acc: Dict[str, Dict[str, Any]] = {}
    for p in patterns:
        a = analyze_aftermath(p, bars, acfg)
        if a is not None:
            p.aftermath = a
        s = acc.setdefault(p.type, {"detected": 0, "withAftermath": 0, "success": 0, "r7": [], "r14": []})
        s["detected"] += 1
        if a is None:
            continue
        s["withAftermath"] += 1
        if a["outcome"] == "success":
            s["success"] += 1
        if "days7" in a["priceMove"]:
            s["r7"].append(a["priceMove"]["days7"]["return"])
        if "days14" in a["priceMove"]:
            s["r14"].append(a["priceMove"]["days14"]["return"])

    def _avg(xs):
        return round(float(np.mean(xs)), 2) if xs else None

    def _med(xs):
        return round(float(np.median(xs)), 2) if xs else None

    stats: Dict[str, Any] = {}
    for t, s in acc.items():
        stats[t] = {
            "detected": s["detected"],
            "withAftermath": s["withAftermath"],
            "successRate": round(s["success"] / s["withAftermath"], 2) if s["withAftermath"] else None,
            "avgReturn7d": _avg(s["r7"]),
            "avgReturn14d": _avg(s["r14"]),
            "medianReturn7d": _med(s["r7"]),
        }
    return stats
