from __future__ import annotations

from typing import Dict, Optional

from .common import clamp01
from .config import ScoreWeights
from ..core.constants import SECONDS_PER_DAY

# Per-family confidence calibration applied before clamping
_CONF_SCALE = {
    "head_and_shoulders": 1.10,
    "inverse_head_and_shoulders": 1.10,
    "triple_top": 1.05,
    "triple_bottom": 1.05,
    "triangle_ascending": 0.95,
    "triangle_descending": 0.95,
    "triangle_symmetrical": 0.95,
    "pennant": 0.95,
    "flag": 0.95,
}


def finalize_conf(base: float, pattern_type: str) -> float:
    return round(clamp01(float(base) * _CONF_SCALE.get(pattern_type, 1.0)), 2)


def period_score(start_time: Optional[float], end_time: Optional[float]) -> float:
    """Duration preference in calendar days: 2-4 weeks scores best."""
    if start_time is None or end_time is None:
        return 0.7
    days = abs(float(end_time) - float(start_time)) / float(SECONDS_PER_DAY)
    if days < 5:
        return 0.6
    if days < 15:
        return 0.8
    if days < 30:
        return 0.9
    return 0.7


def margin_from_rel_dev(dev: float, tol: float) -> float:
    """How comfortably a relative deviation sits inside its tolerance (1 = exact match)."""
    if tol <= 0:
        return 0.0
    return clamp01(1.0 - float(dev) / float(tol))


def composite_score(metrics: Dict[str, float], weights: ScoreWeights) -> float:
    """Weighted sum of normalised sub-scores (each already in [0, 1])."""
    total = (
        weights.fit * clamp01(metrics.get("fit", 0.0))
        + weights.convergence * clamp01(metrics.get("convergence", 0.0))
        + weights.touch * clamp01(metrics.get("touch", 0.0))
        + weights.alternation * clamp01(metrics.get("alternation", 0.0))
        + weights.inside * clamp01(metrics.get("inside", 0.0))
        + weights.duration * clamp01(metrics.get("duration", 0.0))
    )
    return clamp01(total)
