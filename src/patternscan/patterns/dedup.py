from __future__ import annotations

from typing import Callable, List, Tuple

from .common import PatternResult, TRIANGLE_TYPES, WEDGE_TYPES

# Categories drawn from two fitted lines over the same swing pivots
_TWO_LINE = ("wedge", "triangle", "pennant")


def category(pattern_type: str) -> str:
    if pattern_type in WEDGE_TYPES:
        return "wedge"
    if pattern_type in TRIANGLE_TYPES:
        return "triangle"
    return pattern_type


def _rank(p: PatternResult) -> Tuple[float, int, int]:
    # Higher confidence, then a known breakout, then the later end
    return (round(float(p.confidence), 6), 1 if p.resolved else 0, int(p.end_index))


def overlap_ratio(a: PatternResult, b: PatternResult) -> float:
    """Overlap of two ranges relative to the shorter one."""
    ov = min(a.end_index, b.end_index) - max(a.start_index, b.start_index)
    if ov <= 0:
        return 0.0
    shorter = max(1, min(a.end_index - a.start_index, b.end_index - b.start_index))
    return min(1.0, float(ov) / float(shorter))


def shared_pivot_ratio(a: PatternResult, b: PatternResult, slack: int = 2) -> float:
    """Share of the smaller pivot set whose bars (within `slack`) also anchor the other pattern."""
    if not a.pivots or not b.pivots:
        return 0.0
    small, big = (a, b) if len(a.pivots) <= len(b.pivots) else (b, a)
    hits = 0
    for p in small.pivots:
        if any(q.kind == p.kind and abs(q.index - p.index) <= slack for q in big.pivots):
            hits += 1
    return hits / float(len(small.pivots))


def _collapse(patterns: List[PatternResult],
              same: Callable[[PatternResult, PatternResult], bool]) -> List[PatternResult]:
    """Group patterns transitively under `same` and keep the best of each group.

    Survivors keep the input order of the group winners.
    """
    n = len(patterns)
    parent = list(range(n))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i in range(n):
        for j in range(i + 1, n):
            if same(patterns[i], patterns[j]):
                ri, rj = find(i), find(j)
                if ri != rj:
                    parent[rj] = ri
    best = {}
    for i, p in enumerate(patterns):
        root = find(i)
        if root not in best or _rank(p) > _rank(patterns[best[root]]):
            best[root] = i
    return [patterns[i] for i in sorted(best.values())]


def dedup_by_range(patterns: List[PatternResult], tolerance: int) -> List[PatternResult]:
    """Merge same-type patterns whose start and end both differ by less than `tolerance` bars."""
    def same(a: PatternResult, b: PatternResult) -> bool:
        return (a.type == b.type
                and abs(a.start_index - b.start_index) < tolerance
                and abs(a.end_index - b.end_index) < tolerance)

    return _collapse(patterns, same)


def merge_overlapping(patterns: List[PatternResult], min_ratio: float,
                      min_shared_pivots: float = 0.5) -> List[PatternResult]:
    """Collapse patterns of one category that describe the same formation.

    Two patterns match when their ranges overlap by `min_ratio` of the shorter
    one, or, for two-line categories, when most of the smaller pivot set is
    shared (the strict and anchored scans of one triangle end on different bars).
    """
    def same(a: PatternResult, b: PatternResult) -> bool:
        cat = category(a.type)
        if cat != category(b.type):
            return False
        if overlap_ratio(a, b) >= min_ratio:
            return True
        return cat in _TWO_LINE and overlap_ratio(a, b) > 0 and shared_pivot_ratio(a, b) >= min_shared_pivots

    return _collapse(patterns, same)


def deduplicate(patterns: List[PatternResult], tolerance: int = 5, min_overlap: float = 0.70) -> List[PatternResult]:
    out = dedup_by_range(patterns, tolerance)
    if min_overlap is not None and min_overlap > 0:
        out = merge_overlapping(out, min_overlap)
    return out
