from patternscan.patterns.common import Window
from patternscan.patterns.windows import WindowBudget, iter_windows, take_windows


def test_iter_windows_orders_by_size_then_start():
    wins = list(iter_windows(100, 25, 35, 5))
    keys = [(w.bars, w.start) for w in wins]
    assert keys == sorted(keys)
    assert all(w.end < 100 for w in wins)
    assert wins[0] == Window(0, 25)


def test_iter_windows_anchored_windows_follow_regular_ones():
    wins = list(iter_windows(30, 25, 26, 5, anchor_last=True))
    assert wins == [Window(0, 25), Window(4, 29)]


def test_take_windows_respects_budget():
    budget = WindowBudget(3)
    wins, truncated = take_windows(200, 25, 90, 5, False, budget)
    assert len(wins) == 3
    assert truncated is True
    assert budget.truncated is True

    more, truncated_again = take_windows(200, 25, 30, 5, False, budget)
    assert more == [] and truncated_again is True


def test_take_windows_within_budget_not_truncated():
    wins, truncated = take_windows(60, 25, 30, 5, False, WindowBudget(1000))
    assert truncated is False
    assert len(wins) == len(list(iter_windows(60, 25, 30, 5)))
