from datetime import datetime, timezone
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
import dateparser

from ..core.constants import DISPLAY_DECIMALS


def _coerce_scalar(s: str):
    """Try to coerce a scalar string to int or float; otherwise return original string."""
    try:
        if s is None:
            return s
        st = str(s).strip()
        if st == "":
            return st
        if st.isdigit() or (st.startswith('-') and st[1:].isdigit()):
            return int(st)
        v = float(st)
        return v
    except Exception:
        return s


def _format_time_iso(epoch_seconds: float) -> str:
    """Format epoch seconds as an ISO-8601 UTC timestamp (YYYY-MM-DDTHH:MM:SSZ)."""
    dt = datetime.fromtimestamp(float(epoch_seconds), tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def _round(x: Any, decimals: int = DISPLAY_DECIMALS) -> Any:
    try:
        return float(np.round(float(x), decimals))
    except Exception:
        return x


def parse_kv_or_json(obj: Any) -> Dict[str, Any]:
    """Parse overrides provided as dict, JSON string, or k=v pairs into a dict.

    - Dict: shallow-copied and returned
    - JSON-like string: parsed via json.loads
    - Plain string: split on whitespace/commas into k=v assignments
    """
    import json

    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    if isinstance(obj, str):
        s = obj.strip()
        if not s:
            return {}
        if s.startswith('{') and s.endswith('}'):
            try:
                return json.loads(s)
            except Exception:
                s = s.strip().strip('{}').strip()
        out: Dict[str, Any] = {}
        for tok in s.replace(',', ' ').split():
            if '=' not in tok:
                continue
            k, v = tok.split('=', 1)
            out[k.strip()] = _coerce_scalar(v.strip())
        return out
    return {}


def to_float_np(values: Any) -> np.ndarray:
    """Convert a pandas Series/array-like to a float NumPy array; invalid entries become NaN."""
    ser = pd.Series(values)
    return pd.to_numeric(ser, errors="coerce").astype(float).to_numpy()


def to_epoch_seconds(values: Any) -> np.ndarray:
    """Convert a time column (epoch numbers, strings or datetimes) to float epoch seconds."""
    ser = pd.Series(values)
    if pd.api.types.is_numeric_dtype(ser):
        arr = ser.astype(float).to_numpy()
        # Millisecond epochs
        if arr.size and np.nanmax(np.abs(arr)) > 1e11:
            arr = arr / 1000.0
        return arr
    ts = pd.to_datetime(ser, utc=True, errors="coerce")
    out = np.full(len(ser), np.nan, dtype=float)
    ok = ts.notna().to_numpy()
    if ok.any():
        out[ok] = (ts[ok] - pd.Timestamp(0, tz="UTC")).dt.total_seconds().to_numpy()
    return out


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an absolute or natural-language datetime ("2024-03-01", "2 days ago") as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    dt = dateparser.parse(
        str(value),
        settings={'TIMEZONE': 'UTC', 'RETURN_AS_TIMEZONE_AWARE': True, 'TO_TIMEZONE': 'UTC'},
    )
    return dt


def _epoch_from_any(value: Any) -> Optional[float]:
    dt = _parse_datetime(value)
    if dt is None:
        return None
    return float(dt.timestamp())
