"""
Shared types for the clustering algorithms: the result record, the
clusterer protocol, the failure exception and input validation.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import numpy as np
from sklearn.utils import check_array


class ClusterFailureError(RuntimeError):
    """Raised when a clustering run cannot complete, e.g. because the
    worker pool was shut down or a scheduled task was cancelled."""


@dataclass
class ClusteringResult:
    """Outcome of a single clustering run.

    Args:
        labels: Cluster index in ``[0, K)`` for every point.
        centers: Center vectors (K-Means) or the medoid vectors (K-Medoids).
        medoids: Medoid point indices for K-Medoids, ``None`` for K-Means.
        inertia: Objective value of the final assignment.
        n_iter: Number of assignment passes performed.
        n_changed: Number of points that changed cluster in the last pass.
        converged: True if the last pass changed nothing.
        metadata: Algorithm specific extras, e.g. distance evaluation counts.
    """

    labels: np.ndarray
    centers: np.ndarray
    medoids: Optional[np.ndarray] = None
    inertia: float = 0.0
    n_iter: int = 0
    n_changed: int = 0
    converged: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Clusterer(Protocol):
    """Anything that partitions a data set into ``n_clusters`` groups."""

    def cluster(self, X, n_clusters: Optional[int] = None) -> np.ndarray:
        ...


def check_data(X, name: str = "X") -> np.ndarray:
    """Validate a 2-D, finite, non-empty float array without copying it
    when it is already in the right form."""
    return check_array(
        X, dtype=np.float64, ensure_2d=True, ensure_min_samples=1, input_name=name
    )


def check_n_clusters(n_clusters, n_samples: int) -> int:
    if not isinstance(n_clusters, (int, np.integer)) or n_clusters < 1:
        raise ValueError(
            f"n_clusters should be a positive integer, got {n_clusters!r}"
        )
    if n_clusters > n_samples:
        raise ValueError(
            f"n_clusters ({n_clusters}) cannot exceed number of samples ({n_samples})"
        )
    return int(n_clusters)


def check_max_iter(max_iter) -> int:
    if not isinstance(max_iter, (int, np.integer)) or max_iter < 1:
        raise ValueError(f"max_iter should be a positive integer, got {max_iter!r}")
    return int(max_iter)
