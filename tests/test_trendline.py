import math

import numpy as np

from patternscan.patterns.common import Pivot
from patternscan.patterns.trendline import envelope_lower, envelope_upper, fit_line, fit_pivots, line_through


def test_fit_line_exact_line_has_unit_r2():
    x = np.arange(10, dtype=float)
    line = fit_line(x, 2.0 * x + 1.0)
    assert math.isclose(line.slope, 2.0, rel_tol=1e-9)
    assert math.isclose(line.intercept, 1.0, rel_tol=1e-9)
    assert math.isclose(line.r2, 1.0, rel_tol=1e-9)
    assert line.n_points == 10


def test_fit_line_two_points_is_exact():
    line = fit_line(np.array([3.0, 8.0]), np.array([1.0, 4.0]))
    assert line.r2 == 1.0
    assert math.isclose(line.value_at(8), 4.0, rel_tol=1e-9)


def test_fit_line_degenerate_inputs_stay_finite():
    same_x = fit_line(np.array([5.0, 5.0, 5.0]), np.array([1.0, 2.0, 3.0]))
    assert same_x.slope == 0.0
    assert same_x.r2 == 0.0
    assert math.isclose(same_x.intercept, 2.0)

    single = fit_line(np.array([1.0]), np.array([7.0]))
    assert single.slope == 0.0 and single.intercept == 7.0

    flat = fit_line(np.arange(5, dtype=float), np.full(5, 3.0))
    assert abs(flat.slope) < 1e-12
    assert flat.r2 == 1.0


def test_fit_line_noisy_r2_bounded():
    rng = np.random.default_rng(1)
    x = np.arange(40, dtype=float)
    line = fit_line(x, rng.normal(0, 1, 40))
    assert 0.0 <= line.r2 <= 1.0
    assert np.isfinite(line.slope) and np.isfinite(line.intercept)


def test_fit_pivots_and_line_through_agree():
    pivots = [Pivot(i, 100.0 - 0.1 * i, "H", float(i)) for i in (0, 10, 20, 30)]
    ols = fit_pivots(pivots)
    two = line_through(0, 100.0, 30, 97.0)
    assert math.isclose(ols.slope, two.slope, rel_tol=1e-9)
    assert math.isclose(ols.intercept, two.intercept, rel_tol=1e-9)
    assert line_through(4, 1.0, 4, 2.0).slope == 0.0


def test_envelope_lines_follow_collinear_pivots():
    highs = [Pivot(i, 100.0 - 0.1 * i, "H", float(i)) for i in (0, 10, 20, 30)]
    upper = envelope_upper(highs, 0.5, 0, 0.01)
    assert upper is not None
    assert math.isclose(upper.slope, -0.1, rel_tol=1e-9)
    assert math.isclose(upper.intercept, 100.0, rel_tol=1e-9)
    assert upper.n_points == 4

    lows = [Pivot(i, 90.0 + 0.05 * i, "L", float(i)) for i in (5, 15, 25, 35)]
    lower = envelope_lower(lows, 0.5, 0, 0.01)
    assert lower is not None
    assert math.isclose(lower.slope, 0.05, rel_tol=1e-9)


def test_envelope_needs_two_pivots():
    assert envelope_upper([Pivot(1, 1.0, "H", 1.0)], 0.5, 0, 0.01) is None
