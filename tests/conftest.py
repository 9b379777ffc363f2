import numpy as np
import pandas as pd
import pytest

from patternscan.patterns.common import Bars, Line, Pivot


def _epochs(n, start="2024-01-01"):
    idx = pd.date_range(start, periods=n, freq="D", tz="UTC")
    return ((idx - pd.Timestamp(0, tz="UTC")).total_seconds()).to_numpy(dtype=float)


def bars_from_close(close, spread=0.5, start="2024-01-01"):
    c = np.asarray(close, dtype=float)
    return Bars(time=_epochs(c.size, start), open=c.copy(), high=c + spread, low=c - spread, close=c)


def frame_from_close(close, spread=0.5, start="2024-01-01"):
    c = np.asarray(close, dtype=float)
    return pd.DataFrame({
        "time": _epochs(c.size, start),
        "open": c,
        "high": c + spread,
        "low": c - spread,
        "close": c,
    })


def channel_bars(upper, lower, upper_touches, lower_touches, n, spread=0.2, tail=None):
    """Zigzag closes bouncing between two lines; highs/lows touch the lines at the given bars."""
    knots = {0: (upper.value_at(0) + lower.value_at(0)) / 2.0}
    for i in upper_touches:
        knots[i] = upper.value_at(i) - spread
    for i in lower_touches:
        knots[i] = lower.value_at(i) + spread
    last = max(knots)
    end = max(last + 1, n - 1) if tail is None else last + 1
    knots.setdefault(end, (upper.value_at(end) + lower.value_at(end)) / 2.0)
    xs = sorted(knots)
    close = np.interp(np.arange(n), xs, [knots[x] for x in xs])
    if tail:
        for i, px in tail.items():
            close[i] = px
    return bars_from_close(close, spread=spread)


def channel_pivots(bars, upper_touches, lower_touches):
    highs = [Pivot(i, float(bars.high[i]), "H", float(bars.time[i])) for i in upper_touches]
    lows = [Pivot(i, float(bars.low[i]), "L", float(bars.time[i])) for i in lower_touches]
    return tuple(sorted(highs + lows, key=lambda p: p.index))


def double_top_close():
    # Peaks at 15 and 45, valley at 30, then a slide through the neckline
    return np.interp(np.arange(70), [0, 15, 30, 45, 65, 69], [100.0, 120.0, 105.0, 120.5, 90.0, 90.0])


@pytest.fixture
def make_bars():
    return bars_from_close


@pytest.fixture
def make_frame():
    return frame_from_close


@pytest.fixture
def sym_lines():
    return Line(-0.12, 110.0, 1.0), Line(0.12, 90.0, 1.0)
