"""Orchestration of every detection family over one batch of bars."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from ..core.constants import SECONDS_PER_DAY, relevance_days_for
from ..core.errors import InputError
from ..utils.utils import _epoch_from_any
from .aftermath import build_statistics
from .channels import channel_types_for, detect_channels, detect_forming_triangle
from .common import ALL_TYPES, Bars, Diagnostic, PatternResult, TRIANGLE_TYPES, bars_from_frame, expand_types
from .config import DetectorConfig
from .dedup import deduplicate
from .doubles import detect_doubles
from .flags import detect_flags
from .gates import reason_counts
from .head_shoulders import detect_head_shoulders
from .pivots import build_pivot_set
from .triples import detect_triples
from .windows import WindowBudget

logger = logging.getLogger(__name__)

FAMILY_TYPES = {
    "doubles": ("double_top", "double_bottom"),
    "head_and_shoulders": ("head_and_shoulders", "inverse_head_and_shoulders"),
    "channels": ("rising_wedge", "falling_wedge") + TRIANGLE_TYPES + ("pennant",),
    "flags": ("flag",),
    "triples": ("triple_top", "triple_bottom"),
}

_FORMING = ("forming", "near_completion")


@dataclass
class ScanResult:
    patterns: List[PatternResult] = field(default_factory=list)
    overlays: Dict[str, Any] = field(default_factory=lambda: {"ranges": []})
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    swings: List[Any] = field(default_factory=list)
    effective_params: Dict[str, Any] = field(default_factory=dict)
    truncated: bool = False
    debug_cap: int = 200

    def to_dict(self) -> Dict[str, Any]:
        cap = max(0, int(self.debug_cap))
        accepted = [d for d in self.diagnostics if d.accepted]
        rejected = [d for d in self.diagnostics if not d.accepted]
        return {
            "patterns": [p.to_dict() for p in self.patterns],
            "overlays": self.overlays,
            "warnings": list(self.warnings),
            "statistics": self.statistics,
            "diagnostics": {
                "swings": [p.to_dict() for p in self.swings[:cap]],
                "candidates": [d.to_dict() for d in (accepted + rejected)[:cap]],
                "totalCandidates": len(self.diagnostics),
            },
            "effectiveParams": dict(self.effective_params),
            "truncated": bool(self.truncated),
        }


def _passes_status(p: PatternResult, include_forming: bool, include_completed: bool, include_invalid: bool) -> bool:
    if p.status == "invalid" and not include_invalid:
        return False
    if p.status in _FORMING:
        return include_forming
    return include_completed


def _fresh(patterns: List[PatternResult], bars: Bars, now_epoch: float, days: float) -> List[PatternResult]:
    out = []
    for p in patterns:
        age = abs(now_epoch - float(bars.time[p.end_index])) / SECONDS_PER_DAY
        if age <= days:
            out.append(p)
    return out


def _family_warnings(wanted: FrozenSet[str], found: List[PatternResult],
                     diags_by_family: Dict[str, List[Diagnostic]]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    found_types = {p.type for p in found}
    for family, types in FAMILY_TYPES.items():
        asked = [t for t in types if t in wanted]
        if not asked or found_types.intersection(asked):
            continue
        reasons = [d.reason for d in diags_by_family.get(family, []) if not d.accepted]
        if not reasons:
            continue
        top = dict(list(reason_counts(reasons).items())[:3])
        out.append({
            "type": "no_detection",
            "family": family,
            "message": f"No {family.replace('_', ' ')} patterns found; most frequent rejections listed.",
            "topReasons": top,
        })
    return out


def detect_patterns(
    bars: Any,
    patterns: Optional[Sequence[str]] = None,
    cfg: Optional[DetectorConfig] = None,
    include_forming: bool = False,
    include_completed: bool = True,
    include_invalid: bool = False,
    require_current_in_pattern: bool = False,
    current_relevance_days: Optional[float] = None,
    now: Any = None,
) -> ScanResult:
    """Detect chart patterns in one batch of bars.

    `bars` is a Bars instance, a DataFrame or a list of OHLC dicts. The
    result carries the deduplicated patterns sorted by range end together
    with the diagnostics trail of every evaluated candidate. `now` only
    affects the freshness filter enabled by `require_current_in_pattern`.
    """
    cfg = cfg or DetectorConfig()
    if not isinstance(bars, Bars):
        bars = bars_from_frame(bars, cfg.timeframe, cfg.min_bars, cfg.raise_on_short_input)
    elif len(bars) == 0:
        raise InputError("Empty bar sequence")
    elif cfg.raise_on_short_input and len(bars) < cfg.min_bars:
        raise InputError(f"At least {cfg.min_bars} bars are required, got {len(bars)}")

    wanted_types = expand_types(patterns)
    if not wanted_types:
        raise InputError(f"No known pattern types in {list(patterns or [])}; expected any of {', '.join(ALL_TYPES)}")
    wanted = frozenset(wanted_types)

    result = ScanResult(effective_params=cfg.effective_params(), debug_cap=cfg.debug_cap)
    result.effective_params["patterns"] = list(wanted_types)
    if len(bars) < cfg.min_bars:
        logger.warning("Only %d bars supplied, %d required; skipping detection", len(bars), cfg.min_bars)
        result.warnings.append({
            "type": "insufficient_bars",
            "message": f"At least {cfg.min_bars} bars are required, got {len(bars)}.",
            "bars": len(bars),
        })
        return result

    pivot_set = build_pivot_set(bars, cfg)
    result.swings = list(pivot_set.base)
    budget = WindowBudget(cfg.max_windows)
    found: List[PatternResult] = []
    by_family: Dict[str, List[Diagnostic]] = {}

    if wanted.intersection(FAMILY_TYPES["doubles"]):
        p, d = detect_doubles(bars, pivot_set.base, cfg, wanted, include_forming)
        found.extend(p)
        by_family["doubles"] = d
    if wanted.intersection(FAMILY_TYPES["head_and_shoulders"]):
        p, d = detect_head_shoulders(bars, pivot_set.base, cfg, wanted, include_forming)
        found.extend(p)
        by_family["head_and_shoulders"] = d
    if channel_types_for(wanted):
        p, d, truncated = detect_channels(bars, pivot_set, cfg, wanted, budget)
        if include_forming and wanted.intersection(TRIANGLE_TYPES):
            pat, diag = detect_forming_triangle(bars, pivot_set, cfg, wanted)
            d = d + [diag]
            if pat is not None:
                p = p + [pat]
        found.extend(p)
        by_family["channels"] = d
        result.truncated = truncated
    if "flag" in wanted:
        p, d = detect_flags(bars, cfg)
        found.extend(p)
        by_family["flags"] = d
    if wanted.intersection(FAMILY_TYPES["triples"]):
        p, d = detect_triples(bars, pivot_set.base, cfg, wanted, include_forming)
        found.extend(p)
        by_family["triples"] = d
    for diags in by_family.values():
        result.diagnostics.extend(diags)
    logger.debug("detected %d raw patterns over %d bars (%d windows)", len(found), len(bars), budget.used)

    kept = deduplicate(found, cfg.dedup_bar_tolerance, cfg.overlap_merge_ratio)
    for p in kept:
        p.details["timeframe"] = cfg.timeframe

    if require_current_in_pattern and kept:
        now_epoch = _epoch_from_any(now) if now is not None else time.time()
        if now_epoch is None:
            raise InputError(f"Could not parse 'now': {now!r}")
        days = float(current_relevance_days) if current_relevance_days is not None else relevance_days_for(cfg.timeframe)
        kept = _fresh(kept, bars, now_epoch, days)

    result.statistics = build_statistics(kept, bars, cfg.aftermath)
    kept = [p for p in kept if _passes_status(p, include_forming, include_completed, include_invalid)]
    kept.sort(key=lambda p: (p.end_index, p.start_index, p.type))
    result.patterns = kept
    result.overlays = {"ranges": [{"start": p.start_time, "end": p.end_time, "label": p.type} for p in kept]}

    if len(kept) <= 1:
        result.warnings.append({
            "type": "low_detection_count",
            "message": "Few patterns detected; consider loosening tolerancePct or minBarsBetweenSwings.",
            "suggestedParams": {"tolerancePct": 0.03, "minBarsBetweenSwings": 2},
        })
    if result.truncated:
        logger.warning("Window budget of %d exhausted; channel results are partial", cfg.max_windows)
        result.warnings.append({
            "type": "truncated",
            "message": f"Window budget of {cfg.max_windows} exhausted; results are partial.",
            "maxWindows": int(cfg.max_windows),
        })
    result.warnings.extend(_family_warnings(wanted, kept, by_family))
    return result
