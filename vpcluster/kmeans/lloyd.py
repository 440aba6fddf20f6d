"""
Lloyd's algorithm and the pieces shared with the accelerated variant:
center recomputation, nearest-center assignment and the inertia.
"""

from __future__ import annotations
import logging
from typing import Optional, Tuple

import numpy as np

from ..base import ClusteringResult, check_data, check_max_iter, check_n_clusters
from ..distance import DistanceMetric, check_metric
from ..parallel import ParallelRunner

logger = logging.getLogger(__name__)


def check_run_args(X, centers, metric, sample_weight, cache, max_iter):
    """Validate the arguments common to the K-Means entry points."""
    X = check_data(X)
    centers = np.array(centers, dtype=np.float64, copy=True)
    if centers.ndim != 2 or centers.shape[1] != X.shape[1]:
        raise ValueError(
            f"centers must have shape (n_clusters, {X.shape[1]}), got {centers.shape}"
        )
    check_n_clusters(centers.shape[0], X.shape[0])
    metric = check_metric(metric)
    if sample_weight is None:
        weights = np.ones(X.shape[0])
    else:
        weights = np.asarray(sample_weight, dtype=np.float64)
        if weights.shape != (X.shape[0],):
            raise ValueError(
                f"sample_weight must have shape ({X.shape[0]},), got {weights.shape}"
            )
        if np.any(weights < 0) or not np.all(np.isfinite(weights)):
            raise ValueError("sample_weight must be finite and non-negative")
    if cache is None and metric.supports_acceleration():
        cache = metric.get_acceleration_cache(X)
    return X, centers, metric, weights, cache, check_max_iter(max_iter)


def nearest_two(D: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """For a (n, K) distance matrix return, per row, the index of the
    nearest column (lowest index on ties), its distance and the distance of
    the second nearest column (``inf`` when K is 1)."""
    rows = np.arange(D.shape[0])
    labels = np.argmin(D, axis=1)
    first = D[rows, labels]
    if D.shape[1] == 1:
        return labels, first, np.full(D.shape[0], np.inf)
    rest = D.copy()
    rest[rows, labels] = np.inf
    return labels, first, rest.min(axis=1)


def cluster_sums(
    X: np.ndarray,
    labels: np.ndarray,
    weights: np.ndarray,
    n_clusters: int,
    runner: ParallelRunner,
) -> Tuple[np.ndarray, np.ndarray]:
    """Weighted vector sum and total weight of every cluster. Each worker
    sums its own range and the partial sums are merged in range order."""
    K, D = n_clusters, X.shape[1]

    def work(start, end):
        lab = labels[start:end]
        w = weights[start:end]
        sums = np.empty((K, D))
        for j in range(D):
            sums[:, j] = np.bincount(lab, weights=X[start:end, j] * w, minlength=K)
        return sums, np.bincount(lab, weights=w, minlength=K)

    sums = np.zeros((K, D))
    totals = np.zeros(K)
    for part_sums, part_totals in runner.map_ranges(X.shape[0], work):
        sums += part_sums
        totals += part_totals
    return sums, totals


def centers_from_sums(
    sums: np.ndarray, totals: np.ndarray, filled: np.ndarray, old_centers: np.ndarray
) -> np.ndarray:
    """Divide the sums of the ``filled`` clusters by their total weight; the
    other clusters keep their previous center."""
    centers = old_centers.copy()
    centers[filled] = sums[filled] / totals[filled, np.newaxis]
    return centers


def compute_centers(
    X: np.ndarray,
    labels: np.ndarray,
    weights: np.ndarray,
    old_centers: np.ndarray,
    runner: ParallelRunner,
) -> np.ndarray:
    """Weighted mean of every cluster. A cluster without weight keeps its
    previous center."""
    sums, totals = cluster_sums(X, labels, weights, old_centers.shape[0], runner)
    return centers_from_sums(sums, totals, totals > 0, old_centers)


def assign_nearest(
    X: np.ndarray,
    centers: np.ndarray,
    metric: DistanceMetric,
    cache: Optional[np.ndarray],
    runner: ParallelRunner,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Brute-force assignment of every point to its nearest center.

    Returns:
        Labels, distance to the nearest center and distance to the second
        nearest center.
    """
    n = X.shape[0]
    labels = np.empty(n, dtype=np.intp)
    first = np.empty(n)
    second = np.empty(n)
    c_info = None if cache is None else metric.get_query_info(centers)

    def work(start, end):
        D = metric.dist_cross(slice(start, end), centers, X, cache, c_info)
        labels[start:end], first[start:end], second[start:end] = nearest_two(D)

    runner.map_ranges(n, work)
    return labels, first, second


def inertia(X, centers, labels, weights, metric: DistanceMetric) -> float:
    """Weighted sum of squared distances to the assigned centers."""
    d = metric.paired(X, centers[labels])
    return float(np.dot(weights, d * d))


def lloyd_kmeans(
    X: np.ndarray,
    centers: np.ndarray,
    metric: Optional[DistanceMetric] = None,
    sample_weight: Optional[np.ndarray] = None,
    max_iter: int = 300,
    n_jobs: Optional[int] = None,
    cache: Optional[np.ndarray] = None,
) -> ClusteringResult:
    """Plain Lloyd iteration from the given initial centers: assign every
    point to its nearest center by computing all N * K distances, then move
    every center to the mean of its points, until no point changes cluster
    or ``max_iter`` assignment passes have run.

    Args:
        X: Data of shape (n_samples, n_features).
        centers: Initial centers of shape (n_clusters, n_features).
        metric: Distance metric, Euclidean by default.
        sample_weight: Optional non-negative weight per point.
        max_iter: Maximum number of assignment passes.
        n_jobs: Number of threads.
        cache: Precomputed acceleration cache of ``metric`` for ``X``.

    Returns:
        A :class:`~vpcluster.base.ClusteringResult` whose centers are the
        ones used by the final assignment.
    """
    X, centers, metric, weights, cache, max_iter = check_run_args(
        X, centers, metric, sample_weight, cache, max_iter
    )
    n, k = X.shape[0], centers.shape[0]
    with ParallelRunner(n_jobs) as runner:
        labels, _, _ = assign_nearest(X, centers, metric, cache, runner)
        n_iter, n_changed = 1, n
        while n_changed > 0 and n_iter < max_iter:
            centers = compute_centers(X, labels, weights, centers, runner)
            new_labels, _, _ = assign_nearest(X, centers, metric, cache, runner)
            n_changed = int(np.count_nonzero(new_labels != labels))
            labels = new_labels
            n_iter += 1
            logger.debug("Lloyd iteration %d: %d points changed", n_iter, n_changed)
    return ClusteringResult(
        labels=labels,
        centers=centers,
        inertia=inertia(X, centers, labels, weights, metric),
        n_iter=n_iter,
        n_changed=n_changed,
        converged=n_changed == 0,
        metadata={"distance_evaluations": n_iter * n * k},
    )
