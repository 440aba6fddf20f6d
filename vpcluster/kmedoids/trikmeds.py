"""
TRIKMEDS: PAM accelerated with triangle inequality bounds.

J. Newling and F. Fleuret, "A sub-quadratic exact medoid algorithm",
AISTATS 2017, applied to the alternating K-Medoids iteration. Two kinds of
lower bounds are kept:

* ``lc[i, k]``, on the distance from point ``i`` to medoid ``k``. When a
  medoid moves by ``p[k]`` the bound drops by ``p[k]``.
* ``ls[i]``, on the (squared) distance sum from ``i`` to the members of its
  cluster. A candidate medoid whose bound is already no better than the
  current medoid's sum is skipped.

For a candidate ``i`` whose sums ``S1 = sum_l d(i, l)`` and
``S2 = sum_l d(i, l)^2`` over the ``v`` members are computed exactly, the
triangle inequality ``d(j, l) >= |d(i, l) - d(i, j)|`` gives, for every
member ``j``::

    sum_l d(j, l)   >= |S1 - v d(i, j)|
    sum_l d(j, l)^2 >= S2 - 2 d(i, j) S1 + v d(i, j)^2

When points enter or leave a cluster, the sum bound of a point ``i`` that
stays, at distance ``d_i`` from the medoid, changes by at least
``|B_in - n_in d_i| - B_out - n_out d_i`` (plain sums) or
``A_in - 2 d_i B_in + n_in d_i^2 - A_out - 2 d_i B_out - n_out d_i^2``
(squared sums), where ``n``, ``B`` and ``A`` are the count, sum and squared
sum of the entering (leaving) points' distances to the medoid.

The result is identical to :func:`~vpcluster.kmedoids.pam` with the same
objective and initial medoids.
"""

from __future__ import annotations
import logging
from typing import Optional, Sequence

import numpy as np

from ..base import ClusteringResult
from ..distance import DistanceMetric
from ..parallel import ParallelRunner
from .pam import check_medoid_args, member_distances, objective

logger = logging.getLogger(__name__)

# Relative slack on every bound comparison, so that rounding in the bound
# arithmetic can only cause extra exact evaluations, never a wrong skip.
_SLACK = 1e-9


def _tol(x):
    return _SLACK * (1.0 + np.abs(x))


def trikmeds(
    X: np.ndarray,
    medoids: Sequence[int],
    metric: Optional[DistanceMetric] = None,
    max_iter: int = 100,
    squared: bool = True,
    n_jobs: Optional[int] = None,
) -> ClusteringResult:
    """TRIKMEDS from the given initial medoid indices.

    Takes the same arguments as :func:`~vpcluster.kmedoids.pam` (without a
    custom medoid selector) and returns the same clustering.

    Raises:
        ValueError: If the metric is not a valid metric. The bounds need
            symmetry and the triangle inequality.
    """
    X, medoids, metric, max_iter = check_medoid_args(X, medoids, metric, max_iter)
    if not metric.is_valid_metric():
        raise ValueError(f"TRIKMEDS requires a valid metric, got {metric!r}")
    n, k = X.shape[0], medoids.size
    rows = np.arange(n)

    with ParallelRunner(n_jobs) as runner:
        lc = np.empty((n, k))
        labels = np.empty(n, dtype=np.intp)

        def initialize(start, end):
            lc[start:end] = metric.dist_cross(slice(start, end), X[medoids], X)
            labels[start:end] = np.argmin(lc[start:end], axis=1)

        runner.map_ranges(n, initialize)
        d = lc[rows, labels].copy()
        ls = np.zeros(n)
        evaluations = n * k
        n_iter, n_changed = 1, n

        while n_changed > 0 and n_iter < max_iter:
            clusters = [np.flatnonzero(labels == c) for c in range(k)]

            def update(c):
                return _update_medoid(
                    X, c, clusters[c], int(medoids[c]), labels, d, ls, metric, squared
                )

            moved = np.zeros(k)
            for c, (best, shift, used) in enumerate(runner.map_items(range(k), update)):
                medoids[c] = best
                moved[c] = shift
                evaluations += used

            new_labels, new_d, used = _assign(
                X, medoids, labels, d, lc, moved, metric, runner
            )
            evaluations += used
            _update_sum_bounds(labels, new_labels, d, new_d, ls, k, squared)
            n_changed = int(np.count_nonzero(new_labels != labels))
            labels, d = new_labels, new_d
            n_iter += 1
            logger.debug("TRIKMEDS iteration %d: %d points changed", n_iter, n_changed)

    return ClusteringResult(
        labels=labels,
        centers=X[medoids].copy(),
        medoids=medoids,
        inertia=objective(d, squared),
        n_iter=n_iter,
        n_changed=n_changed,
        converged=n_changed == 0,
        metadata={"distance_evaluations": evaluations},
    )


def _update_medoid(X, c, members, current, labels, d, ls, metric, squared):
    """Medoid update of cluster ``c``. Writes only ``d`` and ``ls`` entries of
    the cluster's members.

    Returns:
        The new medoid, the distance it moved and the number of distance
        evaluations.
    """
    if members.size == 0:
        return current, 0.0, 0
    v = members.size
    _, sums = member_distances(X, [current], members, metric, squared)
    best_sum = sums[0]
    evaluations = v
    if labels[current] == c:
        ls[current] = best_sum
    best, best_d = current, None
    for i in members.tolist():
        if i == current or ls[i] >= best_sum + _tol(best_sum):
            continue
        D, sums = member_distances(X, [i], members, metric, squared)
        D, s_i = D[0], sums[0]
        evaluations += v
        ls[i] = s_i
        if s_i < best_sum:
            best, best_sum, best_d = i, s_i, D
        if squared:
            s1 = D.sum()
            bound = s_i - 2.0 * D * s1 + v * D * D
        else:
            bound = np.abs(s_i - v * D)
        bound -= _tol(bound)
        np.maximum(ls[members], bound, out=bound)
        ls[members] = bound
    if best == current:
        return current, 0.0, evaluations
    d[members] = best_d
    shift = float(metric.paired(X[[current]], X[[best]])[0])
    return best, shift, evaluations + 1


def _assign(X, medoids, labels, d, lc, moved, metric, runner):
    """Reassign every point, computing a distance to a medoid only when its
    lower bound cannot rule that medoid out."""
    n, k = lc.shape
    M = X[medoids]
    new_labels = np.empty(n, dtype=np.intp)
    new_d = np.empty(n)

    def work(start, end):
        local = np.arange(end - start)
        a = labels[start:end]
        bounds = lc[start:end]
        bounds -= moved[np.newaxis, :]
        bounds[local, a] = d[start:end]
        # A medoid with an equal distance and a lower index would win.
        check = bounds <= (d[start:end] + _tol(d[start:end]))[:, np.newaxis]
        check[local, a] = False
        pi, pk = np.nonzero(check)
        if pi.size:
            bounds[pi, pk] = metric.paired(X[start + pi], M[pk])
        values = np.full((end - start, k), np.inf)
        values[pi, pk] = bounds[pi, pk]
        values[local, a] = d[start:end]
        best = np.argmin(values, axis=1)
        new_labels[start:end] = best
        new_d[start:end] = values[local, best]
        return pi.size

    evaluations = sum(runner.map_ranges(n, work))
    return new_labels, new_d, evaluations


def _update_sum_bounds(labels, new_labels, d, new_d, ls, k, squared):
    """Adjust the in-cluster sum bounds for the points that entered or left
    each cluster. Points that moved get a trivial bound."""
    moved = new_labels != labels
    enter, leave = new_labels[moved], labels[moved]
    d_in, d_out = new_d[moved], d[moved]
    n_in = np.bincount(enter, minlength=k).astype(np.float64)
    n_out = np.bincount(leave, minlength=k).astype(np.float64)
    b_in = np.bincount(enter, weights=d_in, minlength=k)
    b_out = np.bincount(leave, weights=d_out, minlength=k)

    stay = ~moved
    a = labels[stay]
    di = d[stay]
    if squared:
        a_in = np.bincount(enter, weights=d_in * d_in, minlength=k)
        a_out = np.bincount(leave, weights=d_out * d_out, minlength=k)
        delta = (
            a_in[a] - 2.0 * di * b_in[a] + n_in[a] * di * di
            - a_out[a] - 2.0 * di * b_out[a] - n_out[a] * di * di
        )
    else:
        delta = np.abs(b_in[a] - n_in[a] * di) - b_out[a] - n_out[a] * di
    delta -= _tol(delta)
    ls[stay] = np.maximum(ls[stay] + delta, 0.0)
    ls[moved] = 0.0
