import numpy as np

from patternscan.patterns.common import Pivot
from patternscan.patterns.config import DetectorConfig
from patternscan.patterns.pivots import (
    alternate,
    build_pivot_set,
    find_pivots,
    relaxed_pivots,
    savgol_window,
    smooth_series,
    split_pivots,
)


def test_find_pivots_strict_extrema_ignore_ties():
    high = np.array([1, 2, 3, 2, 1, 2, 3, 3, 2, 1], dtype=float)
    low = high - 0.5

    pivots = find_pivots(high, low, 2)

    assert [(p.index, p.kind) for p in pivots] == [(2, "H"), (4, "L")]
    assert pivots[0].price == 3.0
    assert pivots[1].price == 0.5


def test_find_pivots_never_within_depth_of_edges(make_bars):
    rng = np.random.default_rng(7)
    bars = make_bars(100 + np.cumsum(rng.normal(0, 1, 200)))
    depth = 7

    pivots = find_pivots(bars.high, bars.low, depth, time=bars.time)

    assert pivots
    assert all(depth <= p.index < len(bars) - depth for p in pivots)
    assert all(p.time == bars.time[p.index] for p in pivots)


def test_find_pivots_depth_larger_than_half_is_empty():
    x = np.array([1, 3, 2, 5, 1], dtype=float)
    assert find_pivots(x, x, 3) == []


def test_savgol_window_scales_with_length():
    assert savgol_window(50) == 5
    assert savgol_window(90) == 9
    assert savgol_window(400) == 11


def test_smooth_series_keeps_edges_and_lines():
    x = np.linspace(10.0, 30.0, 60)
    x[0] = 50.0
    out = smooth_series(x)
    w = savgol_window(60)
    assert out[0] == 50.0
    assert np.allclose(out[w:-w], x[w:-w])

    short = np.array([1.0, 2.0, 3.0])
    assert np.array_equal(smooth_series(short), short)


def test_relaxed_pivots_priced_at_raw_extremes(make_bars):
    close = np.array([10, 11, 12, 11, 10, 11, 12, 13, 12, 11, 10, 11], dtype=float)
    bars = make_bars(close)
    for p in relaxed_pivots(bars, smoothed=False):
        expected = bars.high[p.index] if p.kind == "H" else bars.low[p.index]
        assert p.price == expected


def test_build_pivot_set_without_smoothing_uses_base(make_bars):
    rng = np.random.default_rng(3)
    bars = make_bars(100 + np.cumsum(rng.normal(0, 1, 150)))
    cfg = DetectorConfig(smoothing=False)

    ps = build_pivot_set(bars, cfg)

    assert ps.smoothed_used is False
    assert ps.channel == ps.base
    assert ps.for_source("relaxed") == ps.relaxed
    assert ps.for_source("channel") == ps.channel


def test_alternate_keeps_most_extreme_of_each_run():
    seq = [
        Pivot(1, 10.0, "H", 1.0),
        Pivot(3, 12.0, "H", 3.0),
        Pivot(5, 5.0, "L", 5.0),
        Pivot(7, 4.0, "L", 7.0),
        Pivot(9, 11.0, "H", 9.0),
    ]
    out = alternate(seq)
    assert [(p.index, p.kind) for p in out] == [(3, "H"), (7, "L"), (9, "H")]
    highs, lows = split_pivots(out)
    assert len(highs) == 2 and len(lows) == 1
