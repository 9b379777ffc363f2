import numpy as np
import pandas as pd
import pytest

from patternscan.core.errors import InputError
from patternscan.patterns.common import bars_from_frame, expand_types, near, rel_dev
from patternscan.utils.utils import (
    _coerce_scalar,
    _epoch_from_any,
    _format_time_iso,
    parse_kv_or_json,
    to_epoch_seconds,
    to_float_np,
)


def test_format_time_iso():
    assert _format_time_iso(0) == "1970-01-01T00:00:00Z"
    assert _format_time_iso(86400 * 366) == "1971-01-02T00:00:00Z"


def test_coerce_scalar():
    assert _coerce_scalar("5") == 5
    assert _coerce_scalar("-3") == -3
    assert _coerce_scalar("0.25") == 0.25
    assert _coerce_scalar("abc") == "abc"


def test_parse_kv_or_json():
    assert parse_kv_or_json(None) == {}
    assert parse_kv_or_json({"a": 1}) == {"a": 1}
    assert parse_kv_or_json('{"swing_depth": 5}') == {"swing_depth": 5}
    assert parse_kv_or_json("swing_depth=5, tolerance_pct=0.03 flag") == {"swing_depth": 5, "tolerance_pct": 0.03}


def test_to_float_np_coerces_invalid_values():
    arr = to_float_np(["1", "x", 3])
    assert arr[0] == 1.0 and np.isnan(arr[1]) and arr[2] == 3.0
    assert to_float_np(pd.Series([1, None])).dtype == np.float64


def test_epoch_conversion():
    assert to_epoch_seconds([1_700_000_000_000.0]).tolist() == [1_700_000_000.0]
    assert to_epoch_seconds(["1970-01-02"]).tolist() == [86400.0]
    assert _epoch_from_any(86400) == 86400.0
    assert _epoch_from_any("1970-01-02 00:00:00") == 86400.0


def test_level_helpers():
    assert rel_dev(100.0, 104.0) == pytest.approx(0.04 / 1.04)
    assert near(100.0, 103.0, 0.04)
    assert not near(100.0, 105.0, 0.04)


def test_expand_types():
    assert expand_types(None)[0] == "rising_wedge"
    assert expand_types(["triangle", "triangle_ascending"]) == (
        "triangle_ascending", "triangle_descending", "triangle_symmetrical")
    assert expand_types("wedge;flag") == ("rising_wedge", "falling_wedge", "flag")
    assert expand_types(["nonsense"]) == ()


def test_bars_from_frame_drops_non_finite_rows():
    df = pd.DataFrame({
        "Time": ["2024-01-01", "2024-01-02", "2024-01-03"],
        "Open": [1.0, 2.0, 3.0],
        "High": [1.5, np.nan, 3.5],
        "Low": [0.5, 1.5, 2.5],
        "Close": [1.0, 2.0, 3.0],
    })
    bars = bars_from_frame(df)
    assert len(bars) == 2
    assert bars.close.tolist() == [1.0, 3.0]
    assert bars.iso(1) == "2024-01-03T00:00:00Z"


def test_bars_from_frame_synthesises_time():
    bars = bars_from_frame([{"open": 1, "high": 2, "low": 0.5, "close": 1.5}] * 3, timeframe="H1")
    assert bars.time.tolist() == [0.0, 3600.0, 7200.0]


def test_bars_from_frame_rejects_bad_input():
    with pytest.raises(InputError):
        bars_from_frame("not bars")
    with pytest.raises(InputError):
        bars_from_frame(pd.DataFrame())
    with pytest.raises(InputError):
        bars_from_frame(pd.DataFrame({"open": [1.0], "close": [1.0]}))
    with pytest.raises(InputError):
        bars_from_frame(pd.DataFrame({"open": [1.0] * 5, "high": [1.0] * 5, "low": [1.0] * 5, "close": [1.0] * 5}),
                        min_bars=20, raise_on_short=True)
