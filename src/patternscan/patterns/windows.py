from __future__ import annotations

from typing import Iterator, List, Tuple

from .common import Window


def iter_windows(total: int, size_min: int, size_max: int, step: int, anchor_last: bool = False) -> Iterator[Window]:
    """Enumerate windows by size, then start offset (deterministic order).

    Regular windows satisfy start + size < total. Anchored windows end on the
    last bar and are yielded after the regular ones, skipping duplicates.
    """
    step = max(1, int(step))
    n = int(total)
    seen = set()
    for size in range(int(size_min), int(size_max) + 1, step):
        for start in range(0, n - size, step):
            w = Window(start, start + size)
            seen.add(w)
            yield w
    if anchor_last and n > 0:
        last = n - 1
        for size in range(int(size_min), int(size_max) + 1, step):
            w = Window(max(0, last - size), last)
            if w.bars <= 0 or w in seen:
                continue
            seen.add(w)
            yield w


class WindowBudget:
    """Soft cap on the number of windows evaluated across one detection run."""

    def __init__(self, max_windows: int):
        self.max_windows = max(0, int(max_windows))
        self.used = 0
        self.truncated = False

    def take(self) -> bool:
        if self.used >= self.max_windows:
            self.truncated = True
            return False
        self.used += 1
        return True


def take_windows(total: int, size_min: int, size_max: int, step: int, anchor_last: bool,
                 budget: WindowBudget) -> Tuple[List[Window], bool]:
    """Materialise windows until the budget runs out; returns (windows, truncated)."""
    out: List[Window] = []
    for w in iter_windows(total, size_min, size_max, step, anchor_last):
        if not budget.take():
            return out, True
        out.append(w)
    return out, False
