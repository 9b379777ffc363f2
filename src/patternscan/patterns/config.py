from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..core.constants import DEFAULT_TIMEFRAME, MIN_BARS


@dataclass
class StrictnessProfile:
    name: str = "strict"
    # Window enumeration
    window_min: int = 25
    window_max: int = 90
    window_step: int = 5
    anchor_last: bool = False        # also evaluate windows ending on the last bar
    # Pivots and lines
    pivot_source: str = "smoothed"   # "smoothed" (closes at smoothed extrema) | "relaxed" (depth-1 extremes)
    line_method: str = "ols"         # "ols" | "envelope"
    envelope_split: float = 1.0 / 3  # first/last share of pivots used as envelope anchors
    envelope_max_violations: int = 1
    envelope_tol_pct: float = 0.01   # touch tolerance of envelope candidates (fraction of price)
    min_pivots_per_side: int = 4
    min_r2: float = 0.40
    # Convergence
    converge_ratio_max: float = 0.70  # end gap / start gap must stay below this
    accel_factor: float = 1.2         # second-half narrowing > first-half * factor
    # Containment (closes between lines)
    containment_tol_pct: float = 0.003  # tolerance as fraction of the channel width
    min_containment: float = 0.85
    # Touches
    touch_tol_pct: float = 0.005     # touch distance as fraction of the line value
    min_touches_per_line: int = 3
    max_touch_gap: int = 25
    max_start_gap: int = 10
    min_touch_balance: float = 0.45
    min_alternation: float = 0.25
    # Score
    min_score: float = 0.5
    duration_min: int = 25
    duration_max: int = 90
    # Breakout
    breakout_scan_min: int = 20      # scan starts at window start + max(min, bars * fraction)
    breakout_scan_frac: float = 0.3
    breakout_margin_atr: float = 0.5
    direction_margin_atr: float = 0.3
    atr_period: int = 14


def strict_profile() -> StrictnessProfile:
    return StrictnessProfile()


def relaxed_profile() -> StrictnessProfile:
    """Fast profile for patterns still in progress at the right edge."""
    return StrictnessProfile(
        name="relaxed",
        window_min=20,
        window_max=120,
        window_step=5,
        anchor_last=True,
        pivot_source="relaxed",
        line_method="envelope",
        envelope_split=0.5,
        envelope_max_violations=0,
        min_pivots_per_side=2,
        min_r2=0.0,
        converge_ratio_max=0.80,
        containment_tol_pct=0.005,
        min_containment=0.75,
        min_touches_per_line=2,
        max_touch_gap=40,
        max_start_gap=20,
        min_touch_balance=0.30,
        min_alternation=0.15,
        min_score=0.45,
        duration_min=20,
        duration_max=120,
        breakout_scan_min=15,
    )


@dataclass
class ScoreWeights:
    fit: float = 0.25
    convergence: float = 0.25
    touch: float = 0.35
    alternation: float = 0.07
    inside: float = 0.05
    duration: float = 0.03


@dataclass
class WedgeConfig:
    min_slope: float = 0.00005       # absolute slope to consider a line sloped (price units per bar)
    min_weaker_ratio: float = 0.3    # weaker/stronger slope magnitude
    rising_steeper_factor: float = 1.20  # lower line steeper than upper by this factor
    rising_upper_share: float = 0.3  # upper slope at least this share of the lower slope
    falling_steeper_factor: float = 1.15
    min_upper_rise_pct: float = 0.01  # upper line must rise this share of the price range over the window
    declining_highs_ratio: float = 0.99


@dataclass
class TriangleConfig:
    flat_rel_max: float = 0.02       # |slope * bars / avg price| treated as flat
    move_rel_min: float = 0.01       # relative move of the sloped side of ascending/descending
    sym_rel_min: float = 0.005       # relative move of each side of a symmetrical triangle
    prior_trend_bars: int = 20       # lookback deciding a symmetrical triangle's expected breakout
    pennant_max_bars: int = 45       # longest triangle that may be re-typed as a pennant
    pennant_pole_gap: int = 3        # bars allowed between pole end and triangle start
    # Forming heuristic over the last four pivots
    forming_pivots: int = 4
    forming_min_bars: int = 14
    forming_max_bars: int = 90
    forming_converge: float = 0.9
    forming_min_completion: float = 0.4


@dataclass
class FlagConfig:
    # Lengths in days, converted with the timeframe; bars floors apply after conversion
    pole_min_days: float = 1.0
    pole_max_days: float = 15.0
    cons_min_days: float = 2.0
    cons_max_days: float = 30.0
    pole_min_bars: int = 2
    pole_max_bars: int = 5
    cons_min_bars: int = 3
    cons_max_bars: int = 10
    pole_atr_mult: float = 0.0       # 0 = timeframe default (D1: 2.0)
    pole_change_pct: float = 0.0     # 0 = timeframe default (D1: 0.05)
    min_swings_per_side: int = 2
    min_span_ratio: float = 0.30     # each trendline spans this share of the consolidation
    min_r2: float = 0.65
    max_width_ratio: float = 0.9     # start gap vs pole height
    parallel_tol: float = 0.6        # slope difference vs average slope magnitude
    min_conv_ratio: float = 0.60
    parallel_conv_ratio: float = 0.70
    breakout_scan_min: int = 3
    breakout_scan_frac: float = 0.3
    breakout_margin_atr: float = 0.3
    near_completion_frac: float = 0.7


@dataclass
class DoubleConfig:
    min_height_pct: float = 0.03
    min_valley_depth: float = 0.05
    breakout_window: int = 20
    breakout_buffer: float = 0.015
    fallback_tol_mult: float = 1.3
    fallback_conf_mult: float = 0.85
    forming_min_bars: int = 14
    forming_max_bars: int = 90
    forming_price_band: float = 0.05
    forming_min_depth: float = 0.03


@dataclass
class HeadShouldersConfig:
    fallback_passes: List[List[float]] = field(default_factory=lambda: [[1.6, 0.6], [2.0, 0.4]])  # (tol mult, head margin share)
    fallback_conf_mult: float = 0.95
    breakout_window: int = 20
    head_min_excess: float = 0.03
    shoulder_match: float = 0.08
    provisional_penalty: float = 0.9
    forming_min_bars: int = 21
    forming_max_bars: int = 90


@dataclass
class TripleConfig:
    max_neckline_slope: float = 0.02
    max_valley_spread: float = 0.015  # bottoms: spread of the two intermediate peaks
    fallback_tol_mults: List[float] = field(default_factory=lambda: [1.25, 2.0])
    fallback_conf_mult: float = 0.95
    breakout_window: int = 20
    forming_tol_mult: float = 1.2
    forming_min_bars: int = 21
    forming_max_bars: int = 90
    forming_min_conf: float = 0.5


@dataclass
class AftermathConfig:
    breakout_window: int = 30
    breakout_buffer: float = 0.015
    horizons: List[int] = field(default_factory=lambda: [3, 7, 14])
    target_window: int = 14


@dataclass
class DetectorConfig:
    # General
    timeframe: str = DEFAULT_TIMEFRAME
    min_bars: int = MIN_BARS
    raise_on_short_input: bool = False
    # Pivots
    swing_depth: int = 7
    min_bars_between_swings: int = 5
    tolerance_pct: float = 0.04      # level equality tolerance (fraction of price)
    smoothing: bool = True
    min_smoothed_pivots: int = 6     # per side, else fall back to raw pivots
    # Budget and output
    max_windows: int = 20000         # soft budget across all window scans
    debug_cap: int = 200
    # Lifecycle and dedup
    near_completion_bars: int = 10
    dedup_bar_tolerance: int = 5
    overlap_merge_ratio: float = 0.70
    # Profiles and families
    strict: StrictnessProfile = field(default_factory=strict_profile)
    relaxed: StrictnessProfile = field(default_factory=relaxed_profile)
    use_relaxed_profile: bool = True
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    wedge: WedgeConfig = field(default_factory=WedgeConfig)
    triangle: TriangleConfig = field(default_factory=TriangleConfig)
    flag: FlagConfig = field(default_factory=FlagConfig)
    double: DoubleConfig = field(default_factory=DoubleConfig)
    head_shoulders: HeadShouldersConfig = field(default_factory=HeadShouldersConfig)
    triple: TripleConfig = field(default_factory=TripleConfig)
    aftermath: AftermathConfig = field(default_factory=AftermathConfig)

    @classmethod
    def from_settings(cls, settings: Any) -> "DetectorConfig":
        """Seed defaults from environment settings (core.config.ScanSettings)."""
        cfg = cls()
        cfg.max_windows = int(getattr(settings, "max_windows", cfg.max_windows))
        cfg.debug_cap = int(getattr(settings, "debug_cap", cfg.debug_cap))
        return cfg

    def effective_params(self) -> Dict[str, Any]:
        return {
            "timeframe": self.timeframe,
            "swingDepth": int(self.swing_depth),
            "minBarsBetweenSwings": int(self.min_bars_between_swings),
            "tolerancePct": float(self.tolerance_pct),
            "smoothing": bool(self.smoothing),
            "maxWindows": int(self.max_windows),
        }


_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def _coerce_value(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, str):
            v = value.strip().lower()
            if v in _TRUE:
                return True
            if v in _FALSE:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        return bool(value)
    if isinstance(current, int) and not isinstance(current, bool):
        return int(float(value))
    if isinstance(current, float):
        return float(value)
    if isinstance(current, str):
        return str(value)
    return value


def _apply_config_to_obj(cfg: Any, config: Optional[Mapping[str, Any]]) -> List[str]:
    """Apply overrides to a config dataclass; returns keys that were not applied.

    Keys may address nested configs with dots ("wedge.min_slope", "strict.min_score").
    Values are coerced to the type of the current field value.
    """
    skipped: List[str] = []
    if not isinstance(config, Mapping):
        return skipped
    for key, value in config.items():
        target = cfg
        parts = str(key).split(".")
        for part in parts[:-1]:
            target = getattr(target, part, None)
            if target is None or not is_dataclass(target):
                break
        name = parts[-1]
        if target is None or not is_dataclass(target) or name not in {f.name for f in fields(target)}:
            skipped.append(str(key))
            continue
        current = getattr(target, name)
        if is_dataclass(current):
            if isinstance(value, Mapping):
                skipped.extend(f"{key}.{k}" for k in _apply_config_to_obj(current, value))
            else:
                skipped.append(str(key))
            continue
        try:
            setattr(target, name, _coerce_value(current, value))
        except Exception:
            skipped.append(str(key))
    return skipped


def apply_overrides(cfg: DetectorConfig, config: Optional[Mapping[str, Any]]) -> DetectorConfig:
    _apply_config_to_obj(cfg, config)
    return cfg
