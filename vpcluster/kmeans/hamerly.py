"""
Hamerly's accelerated K-Means.

G. Hamerly, "Making k-means even faster", SIAM International Conference on
Data Mining (2010). Every point keeps an upper bound on the distance to its
own center and a single lower bound on the distance to every other center.
A point whose upper bound does not exceed ``max(s / 2, lower)``, where ``s``
is the distance from its center to the closest other center, cannot change
cluster and is skipped. The assignments are exactly those of Lloyd's
algorithm started from the same centers.

Cluster sums are computed once and then only corrected for the points
that switch cluster, so the center update does not rescan the data.
"""

from __future__ import annotations
import logging
from typing import Optional

import numpy as np

from ..base import ClusteringResult
from ..distance import DistanceMetric
from ..parallel import ParallelRunner
from .lloyd import (
    centers_from_sums,
    check_run_args,
    cluster_sums,
    inertia,
    nearest_two,
)

logger = logging.getLogger(__name__)

# Bounds pick up rounding error as they are shifted every iteration; the
# pruning threshold is lowered by this relative amount so that a point is
# only skipped when it is safely inside its cluster.
_SLACK = 1e-8


def _loosen(m: np.ndarray) -> np.ndarray:
    return m - _SLACK * (1.0 + np.where(np.isfinite(m), m, 0.0))


def _membership_delta(X, weights, weighted, rows, old, new, k):
    """Change of the cluster sums, total weights and sizes caused by moving
    the points ``rows`` from clusters ``old`` to clusters ``new``."""
    w = weights[rows]
    wx = X[rows] * w[:, np.newaxis]
    d_sums = np.zeros((k, X.shape[1]))
    np.add.at(d_sums, new, wx)
    np.subtract.at(d_sums, old, wx)
    d_totals = np.bincount(new, weights=w, minlength=k) - np.bincount(
        old, weights=w, minlength=k
    )
    counted = weighted[rows]
    d_sizes = np.bincount(new[counted], minlength=k) - np.bincount(
        old[counted], minlength=k
    )
    return d_sums, d_totals, d_sizes


def hamerly_kmeans(
    X: np.ndarray,
    centers: np.ndarray,
    metric: Optional[DistanceMetric] = None,
    sample_weight: Optional[np.ndarray] = None,
    max_iter: int = 300,
    n_jobs: Optional[int] = None,
    cache: Optional[np.ndarray] = None,
) -> ClusteringResult:
    """Run Hamerly's K-Means from the given initial centers.

    Takes the same arguments and returns the same result as
    :func:`~vpcluster.kmeans.lloyd_kmeans`: identical labels with centers that
    agree up to rounding. Far fewer distances are evaluated, as reported in
    ``metadata["distance_evaluations"]``.

    Raises:
        ValueError: If the metric is not subadditive, since the bounds rely on
            the triangle inequality.
    """
    X, centers, metric, weights, cache, max_iter = check_run_args(
        X, centers, metric, sample_weight, cache, max_iter
    )
    if not metric.is_subadditive():
        raise ValueError(
            f"Hamerly's K-Means requires a subadditive metric, got {metric!r}"
        )
    n, k = X.shape[0], centers.shape[0]
    labels = np.empty(n, dtype=np.intp)
    upper = np.empty(n)
    lower = np.empty(n)
    weighted = weights > 0

    with ParallelRunner(n_jobs) as runner:
        c_info = None if cache is None else metric.get_query_info(centers)

        def initialize(start, end):
            D = metric.dist_cross(slice(start, end), centers, X, cache, c_info)
            labels[start:end], upper[start:end], lower[start:end] = nearest_two(D)

        runner.map_ranges(n, initialize)
        n_evaluations = n * k
        n_iter, n_changed = 1, n
        # Running cluster sums, moved along with the points that switch
        # cluster. sizes counts the members of positive weight.
        sums, totals = cluster_sums(X, labels, weights, k, runner)
        sizes = np.bincount(labels[weighted], minlength=k)

        while n_changed > 0 and n_iter < max_iter:
            new_centers = centers_from_sums(sums, totals, sizes > 0, centers)
            moved = metric.paired(centers, new_centers)
            centers = new_centers
            c_info = None if cache is None else metric.get_query_info(centers)

            # Farthest and second farthest moving centers.
            order = np.argsort(-moved, kind="stable")
            far, second = order[0], order[min(1, k - 1)]

            S = metric.pairwise(centers, centers, c_info, c_info)
            np.fill_diagonal(S, np.inf)
            half_s = S.min(axis=1) / 2.0
            n_evaluations += k + k * k

            def main_loop(start, end):
                a = labels[start:end]
                u = upper[start:end]
                l = lower[start:end]
                u += moved[a]
                l -= np.where(a == far, moved[second], moved[far])
                bound = _loosen(np.maximum(half_s[a], l))
                candidates = np.flatnonzero(u > bound)
                if candidates.size == 0:
                    return 0, 0, None
                idx = start + candidates
                u[candidates] = metric.paired(
                    X[idx],
                    centers[a[candidates]],
                    None if cache is None else cache[idx],
                    None if c_info is None else c_info[a[candidates]],
                )
                still = candidates[u[candidates] > bound[candidates]]
                evaluations = candidates.size
                if still.size == 0:
                    return 0, evaluations, None
                idx = start + still
                D = metric.dist_cross(idx, centers, X, cache, c_info)
                old_a = a[still]
                new_a, u[still], l[still] = nearest_two(D)
                a[still] = new_a
                evaluations += still.size * k
                switched = new_a != old_a
                if not switched.any():
                    return 0, evaluations, None
                return (
                    int(np.count_nonzero(switched)),
                    evaluations,
                    _membership_delta(
                        X,
                        weights,
                        weighted,
                        idx[switched],
                        old_a[switched],
                        new_a[switched],
                        k,
                    ),
                )

            results = runner.map_ranges(n, main_loop)
            n_changed = sum(r[0] for r in results)
            n_evaluations += sum(r[1] for r in results)
            for _, _, delta in results:
                if delta is not None:
                    sums += delta[0]
                    totals += delta[1]
                    sizes += delta[2]
            # Drop the rounding residue left in clusters that emptied.
            sums[sizes == 0] = 0.0
            totals[sizes == 0] = 0.0
            n_iter += 1
            logger.debug("Hamerly iteration %d: %d points changed", n_iter, n_changed)

    return ClusteringResult(
        labels=labels,
        centers=centers,
        inertia=inertia(X, centers, labels, weights, metric),
        n_iter=n_iter,
        n_changed=n_changed,
        converged=n_changed == 0,
        metadata={"distance_evaluations": n_evaluations},
    )
