import numpy as np
import pytest

from conftest import bars_from_close, channel_bars, double_top_close, frame_from_close
from patternscan.core.errors import InputError
from patternscan.patterns import DetectorConfig, detect_patterns
from patternscan.patterns.common import Line


def _double_top_frame():
    return frame_from_close(double_top_close())


def test_flat_series_reports_rejections_only():
    res = detect_patterns(frame_from_close(np.full(60, 100.0)))
    assert res.patterns == []
    assert res.diagnostics
    assert all(not d.accepted for d in res.diagnostics)
    kinds = [w["type"] for w in res.warnings]
    assert "low_detection_count" in kinds
    assert "no_detection" in kinds
    low = next(w for w in res.warnings if w["type"] == "low_detection_count")
    assert low["suggestedParams"] == {"tolerancePct": 0.03, "minBarsBetweenSwings": 2}
    for w in res.warnings:
        if w["type"] == "no_detection":
            assert 1 <= len(w["topReasons"]) <= 3


def test_short_input_returns_warning(caplog):
    with caplog.at_level("WARNING", logger="patternscan.patterns.engine"):
        res = detect_patterns(frame_from_close(np.linspace(100, 110, 10)))
    assert res.patterns == []
    assert res.warnings[0]["type"] == "insufficient_bars"
    assert res.warnings[0]["bars"] == 10
    assert any("bars supplied" in r.getMessage() for r in caplog.records)


def test_short_input_raises_when_configured():
    cfg = DetectorConfig(raise_on_short_input=True)
    with pytest.raises(InputError):
        detect_patterns(frame_from_close(np.linspace(100, 110, 10)), cfg=cfg)


def test_unknown_type_and_missing_columns_raise():
    frame = _double_top_frame()
    with pytest.raises(InputError):
        detect_patterns(frame, patterns=["cup_and_handle"])
    with pytest.raises(InputError):
        detect_patterns(frame.drop(columns=["low"]))


def test_double_top_detected_end_to_end():
    res = detect_patterns(_double_top_frame(), patterns=["double_top"])
    assert [p.type for p in res.patterns] == ["double_top"]
    p = res.patterns[0]
    assert p.status == "completed"
    assert p.details["timeframe"] == "D1"
    assert p.aftermath is not None
    assert res.statistics["double_top"]["detected"] == 1
    assert res.statistics["double_top"]["withAftermath"] == 1
    assert res.overlays["ranges"] == [{"start": p.start_time, "end": p.end_time, "label": "double_top"}]
    assert res.effective_params["patterns"] == ["double_top"]
    assert res.effective_params["swingDepth"] == 7


def test_repeated_runs_are_identical():
    a = detect_patterns(_double_top_frame(), patterns=["double_top", "double_bottom"])
    b = detect_patterns(_double_top_frame(), patterns=["double_top", "double_bottom"])
    assert a.to_dict()["patterns"] == b.to_dict()["patterns"]
    assert a.warnings == b.warnings


def test_completed_filter_drops_resolved_patterns():
    res = detect_patterns(_double_top_frame(), patterns=["double_top"], include_completed=False)
    assert res.patterns == []
    # statistics still describe what was detected before the status filter
    assert res.statistics["double_top"]["detected"] == 1


def test_freshness_filter():
    frame = _double_top_frame()
    stale = detect_patterns(frame, patterns=["double_top"], require_current_in_pattern=True, now="2030-01-01")
    assert stale.patterns == []

    last_time = float(frame["time"].iloc[-1])
    fresh = detect_patterns(frame, patterns=["double_top"], require_current_in_pattern=True,
                            current_relevance_days=30, now=last_time)
    assert [p.type for p in fresh.patterns] == ["double_top"]

    # ends 12 days before the last bar, outside the default 7 day window
    default = detect_patterns(frame, patterns=["double_top"], require_current_in_pattern=True, now=last_time)
    assert default.patterns == []


def test_now_is_ignored_without_freshness_filter():
    frame = _double_top_frame()
    a = detect_patterns(frame, patterns=["double_top"])
    b = detect_patterns(frame, patterns=["double_top"], now="2030-01-01")
    assert a.to_dict()["patterns"] == b.to_dict()["patterns"]


def test_to_dict_caps_diagnostics():
    cfg = DetectorConfig(debug_cap=3)
    out = detect_patterns(frame_from_close(np.full(60, 100.0)), cfg=cfg).to_dict()
    assert len(out["diagnostics"]["candidates"]) <= 3
    assert out["diagnostics"]["totalCandidates"] >= len(out["diagnostics"]["candidates"])
    assert out["truncated"] is False


TRIANGLE_UPPER = (8, 24, 40, 56, 72)
TRIANGLE_LOWER = (16, 32, 48, 64, 80)


def test_converging_triangle_reported_once_without_pennant():
    # apex near bar 105, no breakout inside the 90 bars
    upper, lower = Line(-0.002, 1.3, 1.0), Line(0.0018, 0.9, 1.0)
    bars = channel_bars(upper, lower, TRIANGLE_UPPER, TRIANGLE_LOWER, 90, spread=0.01)

    res = detect_patterns(bars, include_forming=True)

    triangles = [p for p in res.patterns if p.type == "triangle_symmetrical"]
    assert len(triangles) == 1
    tri = triangles[0]
    assert tri.status in ("forming", "near_completion")
    assert tri.breakout_direction is None
    assert tri.confidence >= 0.5
    assert not [p for p in res.patterns if p.type == "pennant"]


def test_rising_wedge_round_trip_end_to_end():
    upper, lower = Line(0.1, 100.0, 1.0), Line(0.25, 85.0, 1.0)
    bars = channel_bars(upper, lower, TRIANGLE_UPPER, TRIANGLE_LOWER, 90)
    cfg = DetectorConfig()

    res = detect_patterns(bars, patterns=["rising_wedge"], cfg=cfg, include_forming=True)

    assert [p.type for p in res.patterns] == ["rising_wedge"]
    wedge = res.patterns[0]
    assert wedge.status in ("forming", "near_completion")
    assert wedge.breakout_direction is None
    assert wedge.confidence >= cfg.strict.min_score


def test_breakout_bar_is_the_same_for_every_detection():
    upper, lower = Line(-0.12, 110.0, 1.0), Line(0.12, 90.0, 1.0)
    tail = {i: 112.0 for i in range(65, 70)}
    bars = channel_bars(upper, lower, (5, 17, 29, 41, 53), (11, 23, 35, 47, 59), 70, tail=tail)
    cfg = DetectorConfig(use_relaxed_profile=False)

    first = detect_patterns(bars, patterns=["triangle_symmetrical"], cfg=cfg, include_invalid=True)
    second = detect_patterns(bars, patterns=["triangle_symmetrical"], cfg=cfg, include_invalid=True)

    assert first.patterns
    for p in first.patterns:
        assert p.breakout_direction == "up"
        assert p.details["breakoutBarIndex"] == 65
        assert p.end_index == 65
    assert first.to_dict()["patterns"] == second.to_dict()["patterns"]


def test_empty_bars_raise():
    with pytest.raises(InputError):
        detect_patterns(bars_from_close([]))
