"""
Initial seed selection for the iterative clustering algorithms.
"""

from __future__ import annotations
import enum
import logging
from typing import Optional, Union

import numpy as np
from sklearn.utils import check_random_state

from .base import check_data, check_n_clusters
from .distance import DistanceMetric, check_metric
from .parallel import ParallelRunner

logger = logging.getLogger(__name__)

# Below this total squared distance every remaining point is treated as a
# duplicate of an already chosen seed.
KPP_DEGENERATE_SUM = 1e-6


class SeedSelection(enum.Enum):
    """Strategies for picking the initial K representatives."""

    #: Uniform sample without replacement.
    RANDOM = "random"
    #: k-means++, sampling proportional to the squared distance to the
    #: nearest chosen seed.
    KPP = "k-means++"
    #: Random first seed, then greedily the point farthest from all seeds.
    FARTHEST_FIRST = "farthest-first"
    #: Evenly spaced quantiles of the distance to the global mean. Does not
    #: use randomness.
    MEAN_QUANTILES = "mean-quantiles"

    @classmethod
    def from_value(cls, value: Union[str, SeedSelection]) -> SeedSelection:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "-")
            for member in cls:
                if key in (member.value, member.name.lower().replace("_", "-")):
                    return member
        raise ValueError(
            f"Unknown seed selection method: {value!r}. "
            f"Expected one of {[m.value for m in cls]}"
        )


def select_initial_points(
    X: np.ndarray,
    n_clusters: int,
    metric: Optional[DistanceMetric] = None,
    method: Union[str, SeedSelection] = SeedSelection.KPP,
    random_state=None,
    cache: Optional[np.ndarray] = None,
    n_jobs: Optional[int] = None,
) -> np.ndarray:
    """Select ``n_clusters`` distinct row indices of ``X`` to seed a
    clustering run.

    The result depends only on the data, the method and ``random_state``.
    ``n_jobs`` changes which thread evaluates which distance, never the
    selected indices: sampling always happens on the full, sequentially
    accumulated weight vector.

    Args:
        X: Data of shape (n_samples, n_features).
        n_clusters: Number of seeds, at most ``n_samples``.
        metric: Distance metric, Euclidean by default.
        method: A :class:`SeedSelection` member or its string value.
        random_state: ``None``, an int seed or a ``numpy.random.RandomState``.
        cache: Precomputed acceleration cache of ``metric`` for ``X``.
        n_jobs: Number of threads used for distance evaluation.

    Returns:
        Integer array of ``n_clusters`` distinct indices.
    """
    X = check_data(X)
    n_clusters = check_n_clusters(n_clusters, X.shape[0])
    metric = check_metric(metric)
    method = SeedSelection.from_value(method)
    rs = check_random_state(random_state)
    if cache is None and metric.supports_acceleration():
        cache = metric.get_acceleration_cache(X)

    if method is SeedSelection.RANDOM:
        seeds = rs.choice(X.shape[0], n_clusters, replace=False)
    else:
        with ParallelRunner(n_jobs) as runner:
            if method is SeedSelection.KPP:
                seeds = _kpp(X, n_clusters, metric, cache, rs, runner)
            elif method is SeedSelection.FARTHEST_FIRST:
                seeds = _farthest_first(X, n_clusters, metric, cache, rs, runner)
            else:
                seeds = _mean_quantiles(X, n_clusters, metric, cache, runner)
    seeds = np.asarray(seeds, dtype=np.intp)
    logger.debug("Selected %d seeds with %s: %s", n_clusters, method.value, seeds)
    return seeds


def _update_closest(X, metric, cache, closest, seed, runner, squared):
    """Lower ``closest`` to the distance from each point to ``X[seed]``.
    Each worker writes only its own slice."""
    q = X[seed]
    q_info = None if cache is None else cache[[seed]]

    def work(start, end):
        d = metric.dist_query(slice(start, end), q, X, cache, q_info)
        if squared:
            d = d * d
        np.minimum(closest[start:end], d, out=closest[start:end])

    runner.map_ranges(X.shape[0], work)


def _kpp(X, k, metric, cache, rs, runner):
    n = X.shape[0]
    seeds = np.empty(k, dtype=np.intp)
    seeds[0] = rs.randint(n)
    closest = np.full(n, np.inf)
    for c in range(1, k):
        _update_closest(X, metric, cache, closest, seeds[c - 1], runner, squared=True)
        closest[seeds[:c]] = 0.0
        total = closest.sum()
        if total <= KPP_DEGENERATE_SUM:
            # Everything left coincides with a seed, fill the rest at random.
            remaining = np.setdiff1d(np.arange(n), seeds[:c])
            seeds[c:] = rs.choice(remaining, k - c, replace=False)
            logger.debug("k-means++ degenerate after %d seeds, random fill", c)
            break
        r = rs.random_sample() * total
        cumulative = np.cumsum(closest)
        seeds[c] = min(int(np.searchsorted(cumulative, r, side="right")), n - 1)
    return seeds


def _farthest_first(X, k, metric, cache, rs, runner):
    n = X.shape[0]
    seeds = np.empty(k, dtype=np.intp)
    seeds[0] = rs.randint(n)
    closest = np.full(n, np.inf)
    for c in range(1, k):
        _update_closest(X, metric, cache, closest, seeds[c - 1], runner, squared=False)
        candidates = closest.copy()
        candidates[seeds[:c]] = -1.0
        seeds[c] = int(np.argmax(candidates))
    return seeds


def _mean_quantiles(X, k, metric, cache, runner):
    n = X.shape[0]
    mean = X.mean(axis=0)
    mean_info = metric.get_query_info(mean) if cache is not None else None
    d = np.empty(n)

    def work(start, end):
        d[start:end] = metric.dist_query(slice(start, end), mean, X, cache, mean_info)

    runner.map_ranges(n, work)
    order = np.argsort(d, kind="stable")
    return order[(np.arange(k) * n) // k]
