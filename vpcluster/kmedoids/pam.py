"""
Partitioning Around Medoids, the alternating variant: assign every point
to its nearest medoid, then move every medoid to the member of its cluster
with the smallest in-cluster distance sum, until nothing changes.

All distances here are evaluated with the metric's exact kernel (no
acceleration cache) so that every algorithm in this package computes
bit-identical values for the same pair of points.
"""

from __future__ import annotations
import logging
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from ..base import ClusteringResult, check_data, check_max_iter, check_n_clusters
from ..distance import DistanceMetric, check_metric
from ..parallel import ParallelRunner

logger = logging.getLogger(__name__)

#: Signature of a medoid update: ``(X, members, current, metric, squared,
#: runner) -> (new_medoid, distance_evaluations)``.
MedoidSelector = Callable[
    [np.ndarray, np.ndarray, int, DistanceMetric, bool, ParallelRunner], Tuple[int, int]
]


def member_distances(
    X: np.ndarray, candidates, members: np.ndarray, metric: DistanceMetric, squared: bool
) -> Tuple[np.ndarray, np.ndarray]:
    """Distances from each candidate to every member and the per-candidate
    sum of those distances (squared first when ``squared``)."""
    D = metric.dist_cross(candidates, X[members], X)
    values = D * D if squared else D
    return D, values.sum(axis=1)


def objective(d: np.ndarray, squared: bool) -> float:
    """Total cost of an assignment given each point's distance to its medoid."""
    return float(np.sum(d * d) if squared else np.sum(d))


def medoid(
    X: np.ndarray,
    indices: Optional[Sequence[int]] = None,
    metric: Optional[DistanceMetric] = None,
    squared: bool = False,
    n_jobs: Optional[int] = None,
) -> int:
    """Exact medoid of the rows ``X[indices]`` (all rows by default): the
    point minimizing the sum of distances to all the others. Ties go to the
    lowest index. Costs a quadratic number of distance evaluations.

    Returns:
        The index, into ``X``, of the medoid.
    """
    X = check_data(X)
    metric = check_metric(metric)
    members = np.arange(X.shape[0]) if indices is None else np.asarray(indices, dtype=np.intp)
    if members.size == 0:
        raise ValueError("Cannot compute the medoid of an empty set")
    with ParallelRunner(n_jobs) as runner:
        sums = np.concatenate(
            runner.map_ranges(
                members.size,
                lambda s, e: member_distances(X, members[s:e], members, metric, squared)[1],
            )
        )
    return int(members[int(np.argmin(sums))])


def pam_select_medoid(X, members, current, metric, squared, runner) -> Tuple[int, int]:
    """Exact medoid update. The current medoid is kept unless a member has a
    strictly smaller sum; among equal sums the lowest index wins."""
    _, best = member_distances(X, [current], members, metric, squared)
    best_sum = best[0]
    candidates = members[members != current]
    evaluations = members.size * (candidates.size + 1)
    if candidates.size == 0:
        return current, evaluations
    sums = np.concatenate(
        runner.map_ranges(
            candidates.size,
            lambda s, e: member_distances(X, candidates[s:e], members, metric, squared)[1],
        )
    )
    j = int(np.argmin(sums))
    if sums[j] < best_sum:
        return int(candidates[j]), evaluations
    return current, evaluations


def check_medoid_args(X, medoids, metric, max_iter):
    X = check_data(X)
    medoids = np.array(medoids, dtype=np.intp, copy=True).ravel()
    check_n_clusters(medoids.size, X.shape[0])
    if np.any(medoids < 0) or np.any(medoids >= X.shape[0]):
        raise ValueError("medoid indices out of range")
    if np.unique(medoids).size != medoids.size:
        raise ValueError("medoid indices must be distinct")
    return X, medoids, check_metric(metric), check_max_iter(max_iter)


def assign_to_medoids(X, medoids, metric, runner):
    """Nearest medoid of every point (lowest index on ties) and the
    distance to it."""
    n = X.shape[0]
    M = X[medoids]
    labels = np.empty(n, dtype=np.intp)
    d = np.empty(n)

    def work(start, end):
        D = metric.dist_cross(slice(start, end), M, X)
        a = np.argmin(D, axis=1)
        labels[start:end] = a
        d[start:end] = D[np.arange(end - start), a]

    runner.map_ranges(n, work)
    return labels, d


def pam(
    X: np.ndarray,
    medoids: Sequence[int],
    metric: Optional[DistanceMetric] = None,
    max_iter: int = 100,
    squared: bool = True,
    n_jobs: Optional[int] = None,
    select_medoid: Optional[MedoidSelector] = None,
) -> ClusteringResult:
    """Alternating PAM from the given initial medoid indices.

    Args:
        X: Data of shape (n_samples, n_features).
        medoids: Distinct initial medoid indices, one per cluster.
        metric: Distance metric, Euclidean by default.
        max_iter: Maximum number of assignment passes.
        squared: Minimize sums of squared distances (the default) rather
            than plain sums of distances.
        n_jobs: Number of threads.
        select_medoid: Replacement for the exact medoid update, see
            :data:`MedoidSelector`.

    Returns:
        A :class:`~vpcluster.base.ClusteringResult` with the final medoid
        indices in ``medoids``.
    """
    X, medoids, metric, max_iter = check_medoid_args(X, medoids, metric, max_iter)
    select_medoid = select_medoid or pam_select_medoid
    n, k = X.shape[0], medoids.size
    with ParallelRunner(n_jobs) as runner:
        labels, d = assign_to_medoids(X, medoids, metric, runner)
        evaluations = n * k
        n_iter, n_changed = 1, n
        while n_changed > 0 and n_iter < max_iter:
            for c in range(k):
                members = np.flatnonzero(labels == c)
                if members.size == 0:
                    continue
                medoids[c], used = select_medoid(
                    X, members, int(medoids[c]), metric, squared, runner
                )
                evaluations += used
            new_labels, d = assign_to_medoids(X, medoids, metric, runner)
            evaluations += n * k
            n_changed = int(np.count_nonzero(new_labels != labels))
            labels = new_labels
            n_iter += 1
            logger.debug("PAM iteration %d: %d points changed", n_iter, n_changed)
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
