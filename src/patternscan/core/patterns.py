from typing import Any, Dict, List, Optional, Literal

import pandas as pd

from .config import scan_settings
from .constants import DEFAULT_LIMIT, DEFAULT_TIMEFRAME, RELEVANCE_DAYS_BY_TIMEFRAME, TIMEFRAME_SECONDS
from .errors import InputError
from ..patterns.config import DetectorConfig, _apply_config_to_obj
from ..patterns.engine import ScanResult, detect_patterns
from ..utils.utils import to_float_np as __to_float_np

_STATUS_TEXT = {
    "completed": "completed (breakout confirmed)",
    "invalid": "invalid (broke against the expected direction)",
    "forming": "forming",
    "near_completion": "near completion (apex approaching)",
}


def _summary_lines(result: ScanResult, timeframe: str) -> List[str]:
    lines: List[str] = []
    for i, p in enumerate(result.patterns, start=1):
        text = f"{i}. {p.type} [{timeframe}] confidence {p.confidence:.2f}, {p.start_time[:10]} ~ {p.end_time[:10]}"
        text += f", status: {_STATUS_TEXT.get(p.status, p.status)}"
        if p.breakout_direction and p.outcome:
            text += f", {p.breakout_direction} breakout ({p.outcome})"
        if len(p.neckline) == 2:
            text += f", neckline {p.neckline[0][1]:.2f} -> {p.neckline[1][1]:.2f}"
        lines.append(text)
    return lines


def _build_pattern_response(result: ScanResult, timeframe: str, n_bars: int, view: str) -> Dict[str, Any]:
    data = result.to_dict()
    resp: Dict[str, Any] = {
        "success": True,
        "timeframe": timeframe,
        "lookback": int(n_bars),
        "n_patterns": len(result.patterns),
        "patterns": data["patterns"],
        "overlays": data["overlays"],
        "warnings": data["warnings"],
        "statistics": data["statistics"],
        "effective_params": data["effectiveParams"],
        "truncated": data["truncated"],
        "summary": _summary_lines(result, timeframe),
    }
    if view == "summary":
        resp["patterns"] = [
            {k: d[k] for k in ("type", "confidence", "range", "status") if k in d}
            for d in data["patterns"]
        ]
    elif view == "debug":
        resp["diagnostics"] = data["diagnostics"]
    return resp


def patterns_detect(
    data: Any,
    timeframe: str = DEFAULT_TIMEFRAME,
    patterns: Optional[List[str]] = None,
    limit: int = DEFAULT_LIMIT,
    config: Optional[Dict[str, Any]] = None,
    include_forming: bool = False,
    include_completed: bool = True,
    include_invalid: bool = False,
    require_current_in_pattern: bool = False,
    current_relevance_days: Optional[float] = None,
    now: Any = None,
    view: Literal['summary', 'detailed', 'debug'] = 'detailed',  # type: ignore
    include_series: bool = False,
) -> Dict[str, Any]:
    """Detect classic chart patterns (wedges, triangles, pennants, flags, double/triple
    tops and bottoms, head and shoulders) in a batch of OHLC bars.

    Parameters:
    -----------
    data : DataFrame or list of dicts (REQUIRED)
        Bars with open/high/low/close columns and an optional time column, oldest first

    timeframe : str, optional (default="D1")
        Bar timeframe: "M1", "M5", "M15", "M30", "H1", "H4", "D1", "W1", "MN1"

    patterns : list of str, optional
        Pattern types to detect; "triangle", "wedge" and "all" expand to their members

    limit : int, optional (default=365)
        Number of most recent bars to analyze

    config : dict, optional
        Detector overrides, e.g. {"swing_depth": 5, "wedge.min_slope": 0.0001}

    include_forming / include_completed / include_invalid : bool, optional
        Lifecycle filters applied to the final pattern list

    require_current_in_pattern : bool, optional (default=False)
        Keep only patterns ending within current_relevance_days of now
        (defaults: 7 days, W1 21 days, MN1 60 days)

    view : str, optional (default="detailed")
        "summary" trims each pattern, "debug" adds the diagnostics trail

    Returns:
    --------
    dict
        success, patterns, overlays, warnings, statistics and effective_params,
        or {"error": ...} when the request cannot be served.

    Examples:
    ---------
    patterns_detect(df, timeframe="D1", patterns=["triangle"], include_forming=True)
    patterns_detect(df, config={"tolerance_pct": 0.03}, view="debug")
    """
    try:
        tf = str(timeframe).upper()
        if tf not in TIMEFRAME_SECONDS:
            return {"error": f"Invalid timeframe: {timeframe}. Valid options: {list(TIMEFRAME_SECONDS.keys())}"}
        if view not in ("summary", "detailed", "debug"):
            return {"error": f"Unknown view: {view}"}
        df = pd.DataFrame(list(data)) if isinstance(data, (list, tuple)) else data
        if not isinstance(df, pd.DataFrame):
            return {"error": f"Unsupported data type: {type(data).__name__}"}
        if int(limit) > 0 and len(df) > int(limit):
            df = df.iloc[-int(limit):].copy()

        cfg = DetectorConfig.from_settings(scan_settings)
        cfg.timeframe = tf
        skipped = _apply_config_to_obj(cfg, config)
        if current_relevance_days is None and tf not in RELEVANCE_DAYS_BY_TIMEFRAME:
            current_relevance_days = scan_settings.relevance_days

        result = detect_patterns(
            df,
            patterns=patterns,
            cfg=cfg,
            include_forming=include_forming,
            include_completed=include_completed,
            include_invalid=include_invalid,
            require_current_in_pattern=require_current_in_pattern,
            current_relevance_days=current_relevance_days,
            now=now,
        )
        resp = _build_pattern_response(result, tf, len(df), view)
        if skipped:
            resp["ignored_config"] = skipped
        if include_series and 'close' in df.columns:
            resp["series_close"] = [float(v) for v in __to_float_np(df.get('close')).tolist()]
        return resp
    except InputError as e:
        return {"error": str(e)}
    except Exception as e:
        return {"error": f"Error detecting patterns: {str(e)}"}
