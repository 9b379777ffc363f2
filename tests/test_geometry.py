import math

import numpy as np

from patternscan.patterns.common import Line
from patternscan.patterns.geometry import (
    Touch,
    Touches,
    alternation_ratio,
    apex_of,
    average_true_range,
    collect_touches,
    containment_ratio,
    convergence_of,
    duration_score,
    max_gap,
    scan_breakout,
)


def test_apex_of_intersection_and_parallel_lines(sym_lines):
    upper = Line(-0.5, 110.0, 1.0)
    lower = Line(0.5, 90.0, 1.0)
    assert apex_of(upper, lower, 15) == (20, 5)
    assert apex_of(Line(0.1, 5.0, 1.0), Line(0.1, 1.0, 1.0), 10) == (None, None)

    u, lo = sym_lines
    assert apex_of(u, lo, 60) == (83, 23)


def test_convergence_of_scores_shrinking_gap():
    conv = convergence_of(Line(-0.5, 110.0, 1.0), Line(0.5, 90.0, 1.0), 0, 16)
    assert math.isclose(conv.gap_start, 20.0)
    assert math.isclose(conv.gap_end, 4.0)
    assert math.isclose(conv.ratio, 0.2)
    assert conv.converges is True
    assert conv.accelerating is False
    assert math.isclose(conv.score, 0.77)

    crossed = convergence_of(Line(-0.5, 110.0, 1.0), Line(0.5, 90.0, 1.0), 0, 30)
    assert crossed.converges is False


def test_containment_ratio_counts_closes_inside():
    upper, lower = Line(0.0, 110.0, 1.0), Line(0.0, 90.0, 1.0)
    close = np.full(10, 100.0)
    assert containment_ratio(upper, lower, close, 0, 9, 0.0) == 1.0
    close[5:] = 120.0
    assert containment_ratio(upper, lower, close, 0, 9, 0.0) == 0.5


def test_collect_touches_marks_breaks():
    upper, lower = Line(0.0, 110.0, 1.0), Line(0.0, 90.0, 1.0)
    high = np.array([110.0, 105.0, 112.0, 109.9])
    low = np.array([95.0, 90.0, 95.0, 85.0])
    t = collect_touches(upper, lower, high, low, 0, 3, 0.005)
    assert t.indices("upper") == [0, 3]
    assert [x.index for x in t.upper if x.is_break] == [2]
    assert t.indices("lower") == [1]
    assert [x.index for x in t.lower if x.is_break] == [3]
    assert t.upper_quality == 2 and t.lower_quality == 1
    assert math.isclose(t.score(), 3 / 8)


def test_alternation_ratio_and_gaps():
    touches = Touches(
        upper=[Touch(1, "upper"), Touch(5, "upper"), Touch(9, "upper")],
        lower=[Touch(3, "lower"), Touch(7, "lower")],
    )
    assert alternation_ratio(touches) == 1.0
    same_side = Touches(upper=[Touch(1, "upper"), Touch(2, "upper")], lower=[])
    assert alternation_ratio(same_side) == 0.0
    assert max_gap([1, 5, 9]) == 4.0
    assert max_gap([3]) == float("inf")


def test_duration_score_peaks_mid_range():
    assert duration_score(50, 20, 80) == 1.0
    assert duration_score(10, 20, 80) == 0.0
    assert duration_score(90, 20, 80) == 0.0
    assert 0.0 < duration_score(25, 20, 80) < 1.0


def test_average_true_range_constant_bars():
    n = 30
    close = np.full(n, 100.0)
    assert math.isclose(average_true_range(close + 1, close - 1, close, 0, n - 1), 2.0)
    assert average_true_range(close, close, close, 0, n - 1) == 0.0


def test_scan_breakout_requires_close_beyond_atr_margin():
    upper, lower = Line(0.0, 105.0, 1.0), Line(0.0, 95.0, 1.0)
    close = np.full(50, 100.0)
    close[29] = 105.5  # above the line but inside the margin
    close[30] = 105.0 + 2 * 2.0
    bo = scan_breakout(close, upper, lower, 10, 49, atr=2.0, margin=0.5, direction_margin=0.3)
    assert bo is not None
    assert (bo.index, bo.direction, bo.price) == (30, "up", 109.0)

    down = np.full(50, 100.0)
    down[40] = 90.0
    bo = scan_breakout(down, upper, lower, 10, 49, atr=2.0, margin=0.5, direction_margin=0.3)
    assert (bo.index, bo.direction) == (40, "down")

    assert scan_breakout(np.full(50, 100.0), upper, lower, 0, 49, 2.0, 0.5, 0.3) is None
