import numpy as np
import pytest

from conftest import double_top_close

from patternscan.patterns.config import DetectorConfig
from patternscan.patterns.doubles import detect_doubles
from patternscan.patterns.flags import detect_flags, find_pole, flag_params
from patternscan.patterns.head_shoulders import detect_head_shoulders
from patternscan.patterns.pivots import base_pivots
from patternscan.patterns.triples import detect_triples


def test_flag_params_follow_timeframe():
    cfg = DetectorConfig()
    daily = flag_params(cfg.flag, "D1")
    assert (daily.pole_min, daily.pole_max, daily.cons_min, daily.cons_max) == (2, 15, 3, 30)
    assert (daily.atr_mult, daily.change_pct) == (2.0, 0.05)

    hourly = flag_params(cfg.flag, "H1")
    assert hourly.pole_min == 24
    assert (hourly.atr_mult, hourly.change_pct) == (1.5, 0.02)

    cfg.flag.pole_atr_mult = 3.0
    assert flag_params(cfg.flag, "D1").atr_mult == 3.0


def test_find_pole_picks_impulsive_move(make_bars):
    close = np.full(40, 100.0)
    close[20:25] = [103.0, 106.0, 109.0, 112.0, 115.0]
    close[25:] = 115.0
    bars = make_bars(close)

    pole = find_pole(bars, 24, flag_params(DetectorConfig().flag, "D1"))

    assert pole is not None
    assert pole.direction == "up"
    assert pole.end == 24
    assert pole.start <= 19
    assert abs(pole.height - 15.0) < 1e-9
    assert pole.atr_mult >= 2.0


def test_flags_need_a_pole(make_bars):
    bars = make_bars(np.full(80, 100.0), spread=0.0)
    patterns, _ = detect_flags(bars, DetectorConfig())
    assert patterns == []


def test_double_top_with_neckline_break(make_bars):
    bars = make_bars(double_top_close())
    cfg = DetectorConfig()

    patterns, diags = detect_doubles(bars, base_pivots(bars, cfg.swing_depth), cfg, frozenset({"double_top"}))

    assert len(patterns) == 1
    p = patterns[0]
    assert p.type == "double_top"
    assert [pv.index for pv in p.pivots] == [15, 30, 45]
    assert p.status == "completed" and p.breakout_direction == "down" and p.outcome == "success"
    assert p.end_index == 57
    assert p.neckline[0][1] == 104.5
    assert 0.0 < p.confidence <= 1.0
    assert any(d.accepted for d in diags)


def test_double_bottom_not_requested_is_skipped(make_bars):
    bars = make_bars(double_top_close())
    cfg = DetectorConfig()
    patterns, diags = detect_doubles(bars, base_pivots(bars, cfg.swing_depth), cfg, frozenset({"double_bottom"}))
    assert patterns == []
    assert all(d.type == "double_bottom" for d in diags)


def test_pivot_families_quiet_on_monotonic_series(make_bars):
    bars = make_bars(np.linspace(100.0, 150.0, 90))
    cfg = DetectorConfig()
    base = base_pivots(bars, cfg.swing_depth)
    assert base == []
    wanted = frozenset({"head_and_shoulders", "inverse_head_and_shoulders", "triple_top", "triple_bottom"})
    assert detect_head_shoulders(bars, base, cfg, wanted)[0] == []
    assert detect_triples(bars, base, cfg, wanted)[0] == []


def _hs_close(n, xs, ys):
    return np.interp(np.arange(n), xs, ys)


HS_KNOTS = ([0, 15, 25, 40, 55, 65, 80, 99], [90.0, 110.0, 100.0, 125.0, 100.0, 110.5, 90.0, 90.0])


def test_head_and_shoulders_breaks_neckline(make_bars):
    bars = make_bars(_hs_close(100, *HS_KNOTS))
    cfg = DetectorConfig()

    patterns, diags = detect_head_shoulders(bars, base_pivots(bars, cfg.swing_depth), cfg,
                                            frozenset({"head_and_shoulders"}))

    assert len(patterns) == 1
    p = patterns[0]
    assert p.type == "head_and_shoulders"
    assert [pv.index for pv in p.pivots] == [15, 25, 40, 55, 65]
    assert p.neckline == [(25, 99.5), (55, 99.5)]
    assert p.end_index == 74 and p.details["breakoutBarIndex"] == 74
    assert p.status == "completed" and p.breakout_direction == "down" and p.outcome == "success"
    assert p.details["breakoutTarget"] == pytest.approx(99.5 - (125.5 - 99.5))
    assert "fallback" not in p.details
    assert any(d.accepted and d.reason == "accepted" for d in diags)


def test_inverse_head_and_shoulders_breaks_upward(make_bars):
    bars = make_bars(200.0 - _hs_close(100, *HS_KNOTS))
    cfg = DetectorConfig()

    patterns, _ = detect_head_shoulders(bars, base_pivots(bars, cfg.swing_depth), cfg,
                                        frozenset({"inverse_head_and_shoulders"}))

    assert [p.type for p in patterns] == ["inverse_head_and_shoulders"]
    p = patterns[0]
    assert [pv.kind for pv in p.pivots] == ["L", "H", "L", "H", "L"]
    assert p.neckline == [(25, 100.5), (55, 100.5)]
    assert p.end_index == 74
    assert p.status == "completed" and p.breakout_direction == "up" and p.outcome == "success"


def test_forming_head_and_shoulders_with_confirmed_right_shoulder(make_bars):
    bars = make_bars(_hs_close(80, [0, 15, 25, 40, 55, 65, 79], [90.0, 110.0, 100.0, 125.0, 100.0, 110.5, 104.0]))
    cfg = DetectorConfig()

    patterns, diags = detect_head_shoulders(bars, base_pivots(bars, cfg.swing_depth), cfg,
                                            frozenset({"head_and_shoulders"}), include_forming=True)

    assert all(p.status == "forming" and p.breakout_direction is None for p in patterns)
    forming = [p for p in patterns if "provisionalRightShoulder" in p.details]
    assert len(forming) == 1
    p = forming[0]
    assert [pv.index for pv in p.pivots] == [15, 40, 55, 65]
    assert p.details["provisionalRightShoulder"] is False
    assert p.neckline == [(25, 99.5), (55, 99.5)]
    assert p.confidence == 0.94
    assert any(d.reason == "accepted_forming" for d in diags)


def test_forming_head_and_shoulders_uses_last_close_as_right_shoulder(make_bars):
    bars = make_bars(_hs_close(70, [0, 15, 25, 40, 55, 69], [90.0, 110.0, 100.0, 125.0, 100.0, 110.3]))
    cfg = DetectorConfig()
    base = base_pivots(bars, cfg.swing_depth)

    patterns, _ = detect_head_shoulders(bars, base, cfg, frozenset({"head_and_shoulders"}), include_forming=True)

    assert len(patterns) == 1
    p = patterns[0]
    assert p.details["provisionalRightShoulder"] is True
    assert p.pivots[-1].index == 69 and p.pivots[-1].price == pytest.approx(110.3)
    assert p.end_index == 69
    assert p.confidence == 0.88
    # nothing without the forming pass
    assert detect_head_shoulders(bars, base, cfg, frozenset({"head_and_shoulders"}))[0] == []


TRIPLE_XS = [0, 15, 27, 40, 52, 65, 80, 99]


def test_triple_top_breaks_neckline(make_bars):
    bars = make_bars(np.interp(np.arange(100), TRIPLE_XS, [100.0, 120.0, 108.0, 120.5, 108.4, 120.2, 100.0, 100.0]))
    cfg = DetectorConfig()

    patterns, _ = detect_triples(bars, base_pivots(bars, cfg.swing_depth), cfg, frozenset({"triple_top"}))

    assert len(patterns) == 1
    p = patterns[0]
    assert p.type == "triple_top"
    assert [pv.index for pv in p.pivots] == [15, 27, 40, 52, 65]
    assert p.neckline[0][1] == pytest.approx(107.7)
    assert p.end_index == 75 and p.details["breakoutBarIndex"] == 75
    assert p.status == "completed" and p.breakout_direction == "down" and p.outcome == "success"
    assert "fallback" not in p.details


def test_triple_bottom_breaks_neckline(make_bars):
    close = 220.0 - np.interp(np.arange(100), TRIPLE_XS, [100.0, 120.0, 108.0, 120.5, 108.4, 120.2, 100.0, 100.0])
    bars = make_bars(close)
    cfg = DetectorConfig()

    patterns, _ = detect_triples(bars, base_pivots(bars, cfg.swing_depth), cfg, frozenset({"triple_bottom"}))

    assert [p.type for p in patterns] == ["triple_bottom"]
    p = patterns[0]
    assert p.neckline[0][1] == pytest.approx(112.3)
    assert p.end_index == 75
    assert p.status == "completed" and p.breakout_direction == "up"


def test_triple_top_found_by_relaxed_tolerance_pass(make_bars):
    # middle peak 4.4% above the first: outside the 4% tolerance, inside 5%
    bars = make_bars(np.interp(np.arange(100), TRIPLE_XS, [100.0, 120.0, 108.0, 125.5, 108.4, 120.5, 100.0, 100.0]))
    cfg = DetectorConfig()

    patterns, diags = detect_triples(bars, base_pivots(bars, cfg.swing_depth), cfg, frozenset({"triple_top"}))

    assert len(patterns) == 1
    p = patterns[0]
    assert p.details["fallback"] == "relaxed_x1.25"
    assert p.end_index == 75
    assert p.status == "completed"
    assert any(d.accepted for d in diags)


def test_forming_triple_top(make_bars):
    bars = make_bars(np.interp(np.arange(65), [0, 15, 27, 40, 52, 64], [100.0, 120.0, 108.0, 120.5, 108.4, 119.5]))
    cfg = DetectorConfig()
    base = base_pivots(bars, cfg.swing_depth)

    assert detect_triples(bars, base, cfg, frozenset({"triple_top"}))[0] == []
    patterns, diags = detect_triples(bars, base, cfg, frozenset({"triple_top"}), include_forming=True)

    assert len(patterns) == 1
    p = patterns[0]
    assert p.status == "forming"
    assert [pv.index for pv in p.pivots] == [15, 40]
    assert (p.start_index, p.end_index) == (15, 64)
    assert p.confidence == 0.63
    assert p.neckline[0][1] == pytest.approx(107.7)
    assert diags[-1].reason == "accepted_forming"


def test_forming_triple_bottom(make_bars):
    close = 220.0 - np.interp(np.arange(65), [0, 15, 27, 40, 52, 64], [100.0, 120.0, 108.0, 120.5, 108.4, 119.5])
    bars = make_bars(close)
    cfg = DetectorConfig()

    patterns, _ = detect_triples(bars, base_pivots(bars, cfg.swing_depth), cfg, frozenset({"triple_bottom"}),
                                 include_forming=True)

    assert [p.type for p in patterns] == ["triple_bottom"]
    assert patterns[0].status == "forming"
    assert patterns[0].confidence == 0.59


def _flag_close():
    close = np.full(60, 118.0)
    close[:20] = 100.0
    close[20:25] = [103.0, 106.0, 109.0, 112.0, 115.0]
    # channel sloping against the pole: highs 27/31/35/39, lows 25/29/33/37/41
    close[25:42] = [112.5, 113.5, 114.5, 113.0, 111.5, 112.5, 113.5, 112.0, 110.5,
                    111.5, 112.5, 111.0, 109.5, 110.5, 111.5, 110.0, 108.5]
    close[42:45] = [112.0, 115.0, 118.0]
    return close


def test_bull_flag_breaks_out_of_consolidation(make_bars):
    bars = make_bars(_flag_close(), spread=0.3)

    patterns, diags = detect_flags(bars, DetectorConfig())

    flag = next(p for p in patterns if p.pivots[1].index == 24)
    assert flag.type == "flag"
    assert flag.start_index <= 19
    assert flag.details["poleDirection"] == "up"
    assert flag.details["flagpoleHeight"] == pytest.approx(15.0)
    assert flag.details["convergenceRatio"] == pytest.approx(1.0)
    assert flag.end_index == 42 and flag.details["breakoutBarIndex"] == 42
    assert flag.status == "completed" and flag.breakout_direction == "up" and flag.outcome == "success"
    assert flag.details["breakoutTarget"] == pytest.approx(127.0)
    assert [pv.index for pv in flag.pivots[2:]] == [25, 27, 29, 31, 33, 35, 37, 39, 41]
    assert 0.0 < flag.confidence <= 1.0
    assert any(d.accepted for d in diags)


def test_forming_double_top(make_bars):
    bars = make_bars(np.interp(np.arange(45), [0, 15, 30, 44], [100.0, 120.0, 105.0, 119.0]))
    cfg = DetectorConfig()
    base = base_pivots(bars, cfg.swing_depth)

    assert detect_doubles(bars, base, cfg, frozenset({"double_top"}))[0] == []
    patterns, diags = detect_doubles(bars, base, cfg, frozenset({"double_top"}), include_forming=True)

    assert len(patterns) == 1
    p = patterns[0]
    assert p.status == "forming"
    assert [pv.index for pv in p.pivots] == [15, 30]
    assert p.neckline == [(15, 104.5), (44, 104.5)]
    assert p.confidence == 0.96
    assert p.details["completionPct"] == 97
    assert p.details["breakoutTarget"] == pytest.approx(88.5)
    assert diags[-1].reason == "accepted_forming"


def test_forming_double_bottom(make_bars):
    bars = make_bars(np.interp(np.arange(60), [0, 15, 30, 45, 59], [140.0, 120.0, 135.0, 120.5, 128.0]))
    cfg = DetectorConfig()

    patterns, diags = detect_doubles(bars, base_pivots(bars, cfg.swing_depth), cfg,
                                     frozenset({"double_bottom"}), include_forming=True)

    assert len(patterns) == 1
    p = patterns[0]
    assert p.type == "double_bottom" and p.status == "forming"
    assert [pv.index for pv in p.pivots] == [15, 30, 45]
    assert p.confidence == 0.76
    assert p.details["completionPct"] == 84
    # the completed pass saw the shape but no close above the neckline
    assert any(d.reason == "no_breakout" for d in diags)
