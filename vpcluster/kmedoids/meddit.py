"""
MEDDIT: approximate medoids through multi-armed bandits.

V. Bagaria, G. Kamath, V. Ntranos, M. Zhang and D. Tse, "Medoids in almost
linear time via multi-armed bandits", AISTATS 2018. Every point is an arm
whose unknown mean is its average distance to the rest of the set. Arms
are pulled by sampling random partners; the arm whose upper confidence
bound falls below every other arm's lower confidence bound is returned.
An arm pulled as often as there are other points is evaluated exactly.
The variance estimate behind the interval widths never exceeds what the
metric's :meth:`~vpcluster.distance.DistanceMetric.metric_bound` allows.
"""

from __future__ import annotations
import logging
import math
from typing import Optional, Sequence

import numpy as np
from sklearn.utils import check_random_state

from ..base import ClusteringResult, check_data
from ..distance import DistanceMetric, check_metric
from .pam import member_distances, pam

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.01
#: Sets up to this size are solved exactly.
EXACT_SIZE = 64
#: Arms pulled per round and partners sampled per pulled arm.
BATCH_ARMS = 32
BATCH_SAMPLES = 32


def meddit_medoid(
    X: np.ndarray,
    indices: Optional[Sequence[int]] = None,
    metric: Optional[DistanceMetric] = None,
    tolerance: float = DEFAULT_TOLERANCE,
    random_state=None,
    squared: bool = False,
) -> int:
    """Estimate the medoid of the rows ``X[indices]`` (all rows by default).

    Args:
        X: Data of shape (n_samples, n_features).
        indices: Subset of rows to consider.
        metric: Distance metric, Euclidean by default.
        tolerance: Confidence parameter; smaller values give tighter
            intervals and more distance evaluations. A negative value means
            ``1 / n``. Zero or a small set computes the exact medoid.
        random_state: Seed for the partner sampling.
        squared: Estimate the medoid under squared distances.

    Returns:
        The index, into ``X``, of the estimated medoid.
    """
    X = check_data(X)
    metric = check_metric(metric)
    idx = np.arange(X.shape[0]) if indices is None else np.asarray(indices, dtype=np.intp)
    medoid, _ = _meddit(X, idx, metric, tolerance, check_random_state(random_state), squared)
    return medoid


def _exact(X, idx, metric, squared):
    _, sums = member_distances(X, idx, idx, metric, squared)
    return int(idx[int(np.argmin(sums))]), idx.size * idx.size


def _meddit(X, idx, metric, tolerance, rs, squared):
    """Returns the estimated medoid and the number of distance evaluations."""
    n = idx.size
    if n == 0:
        raise ValueError("Cannot compute the medoid of an empty set")
    if n == 1:
        return int(idx[0]), 0
    if tolerance < 0:
        tolerance = 1.0 / n
    if tolerance <= 0 or n <= EXACT_SIZE:
        return _exact(X, idx, metric, squared)
    log_term = math.log(1.0 / tolerance)
    # Values confined to [0, b] have a variance of at most b**2 / 4.
    bound = metric.metric_bound()
    if squared:
        bound *= bound
    max_var = bound * bound / 4.0

    def pull(arms, n_samples):
        arms = np.repeat(arms, n_samples)
        partners = (arms + rs.randint(1, n, size=arms.size)) % n
        d = metric.paired(X[idx[arms]], X[idx[partners]])
        return arms, d * d if squared else d

    sums = np.zeros(n)
    counts = np.zeros(n)
    exact = np.zeros(n, dtype=bool)
    arms, values = pull(np.arange(n), 1)
    np.add.at(sums, arms, values)
    np.add.at(counts, arms, 1.0)
    total, total_sq, total_n = values.sum(), (values * values).sum(), float(values.size)
    evaluations = values.size

    while True:
        mean = sums / counts
        var = min(max(total_sq / total_n - (total / total_n) ** 2, 0.0), max_var)
        width = np.sqrt(2.0 * var * log_term / counts)
        width[exact] = 0.0
        lcb, ucb = mean - width, mean + width
        best = int(np.argmin(ucb))
        others = np.delete(lcb, best)
        if exact.all() or ucb[best] < others.min():
            break
        open_arms = np.flatnonzero(~exact)
        chosen = open_arms[np.argsort(lcb[open_arms], kind="stable")[:BATCH_ARMS]]
        finish = chosen[counts[chosen] + BATCH_SAMPLES >= n - 1]
        if finish.size:
            _, arm_sums = member_distances(X, idx[finish], idx, metric, squared)
            sums[finish] = arm_sums
            counts[finish] = n - 1
            exact[finish] = True
            evaluations += finish.size * n
        sample = np.setdiff1d(chosen, finish)
        if sample.size:
            arms, values = pull(sample, BATCH_SAMPLES)
            np.add.at(sums, arms, values)
            np.add.at(counts, arms, 1.0)
            total += values.sum()
            total_sq += (values * values).sum()
            total_n += values.size
            evaluations += values.size

    if exact.all():
        best = int(np.argmin(sums / counts))
    return int(idx[best]), evaluations


def meddit(
    X: np.ndarray,
    medoids: Sequence[int],
    metric: Optional[DistanceMetric] = None,
    max_iter: int = 100,
    squared: bool = True,
    tolerance: float = DEFAULT_TOLERANCE,
    random_state=None,
    n_jobs: Optional[int] = None,
) -> ClusteringResult:
    """Alternating K-Medoids whose medoid update is the MEDDIT estimate
    instead of the exact quadratic search. The result is approximate: a
    cluster's medoid is only replaced when the estimate strictly improves
    the cluster's exact cost, so the objective never increases.
    """
    rs = check_random_state(random_state)

    def select(X, members, current, metric, squared, runner):
        candidate, used = _meddit(X, members, metric, tolerance, rs, squared)
        if candidate == current:
            return current, used
        _, sums = member_distances(X, [current, candidate], members, metric, squared)
        used += 2 * members.size
        return (candidate if sums[1] < sums[0] else current), used

    return pam(
        X,
        medoids,
        metric=metric,
        max_iter=max_iter,
        squared=squared,
        n_jobs=n_jobs,
        select_medoid=select,
    )
