from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .common import Line, Pivot


def fit_line(x: np.ndarray, y: np.ndarray) -> Line:
    """Ordinary least squares line with R^2 against the fitted points.

    Degenerate inputs never produce NaN/inf: fewer than two points or a
    zero-variance index set yield a flat line through the mean with R^2 0.
    Two distinct points fit exactly (R^2 1), as does a perfectly flat set.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    n = int(x.size)
    if n < 2 or float(np.ptp(x)) <= 1e-12:
        return Line(0.0, float(y.mean()) if y.size else 0.0, 0.0, n)
    p = np.polyfit(x, y, 1)
    y_hat = p[0] * x + p[1]
    ss_res = float(np.sum((y - y_hat) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if n == 2:
        r2 = 1.0
    elif ss_tot <= 1e-18:
        r2 = 1.0 if ss_res <= 1e-18 else 0.0
    else:
        r2 = max(0.0, 1.0 - ss_res / ss_tot)
    return Line(float(p[0]), float(p[1]), float(r2), n)


def fit_pivots(pivots: Sequence[Pivot]) -> Line:
    xs = np.array([p.index for p in pivots], dtype=float)
    ys = np.array([p.price for p in pivots], dtype=float)
    return fit_line(xs, ys)


def line_through(x1: float, y1: float, x2: float, y2: float) -> Line:
    if abs(float(x2) - float(x1)) <= 1e-12:
        return Line(0.0, float(y1), 0.0, 2)
    slope = (float(y2) - float(y1)) / (float(x2) - float(x1))
    return Line(slope, float(y1) - slope * float(x1), 1.0, 2)


def _envelope(pivots: Sequence[Pivot], upper: bool, split: float, max_violations: int,
              tol: float, max_touch_gap: Optional[int] = None) -> Optional[Line]:
    """Best two-point boundary over pivots: anchors from the first and last share.

    A candidate may cut through at most `max_violations` pivots (beyond `tol`);
    the winner has the most touches within `tol`, with a bonus for a falling line.
    """
    k = len(pivots)
    if k < 2:
        return None
    xs = np.array([p.index for p in pivots], dtype=float)
    ys = np.array([p.price for p in pivots], dtype=float)
    head = max(1, int(np.ceil(k * float(split))))
    first = np.arange(0, min(head, k - 1))
    last = np.arange(max(k - head, 1), k)
    i1, i2 = np.meshgrid(first, last, indexing="ij")
    i1 = i1.ravel()
    i2 = i2.ravel()
    keep = xs[i2] > xs[i1]
    i1, i2 = i1[keep], i2[keep]
    if i1.size == 0:
        return None
    slopes = (ys[i2] - ys[i1]) / (xs[i2] - xs[i1])
    inter = ys[i1] - slopes * xs[i1]
    vals = slopes[:, None] * xs[None, :] + inter[:, None]
    diff = ys[None, :] - vals
    viol = (diff > tol) if upper else (diff < -tol)
    ok = viol.sum(axis=1) <= int(max_violations)
    touching = np.abs(diff) <= tol
    touches = touching.sum(axis=1)
    if max_touch_gap is not None:
        for j in np.nonzero(ok)[0].tolist():
            tx = xs[touching[j]]
            if tx.size >= 2 and float(np.max(np.diff(tx))) > float(max_touch_gap):
                ok[j] = False
    if not ok.any():
        return None
    score = touches + (slopes < 0).astype(int)
    score = np.where(ok, score, -1)
    best = int(np.argmax(score))
    return Line(float(slopes[best]), float(inter[best]), 1.0, int(touches[best]))


def envelope_upper(pivots: Sequence[Pivot], split: float, max_violations: int, tol: float,
                   max_touch_gap: Optional[int] = None) -> Optional[Line]:
    return _envelope(pivots, True, split, max_violations, tol, max_touch_gap)


def envelope_lower(pivots: Sequence[Pivot], split: float, max_violations: int, tol: float,
                   max_touch_gap: Optional[int] = None) -> Optional[Line]:
    return _envelope(pivots, False, split, max_violations, tol, max_touch_gap)
