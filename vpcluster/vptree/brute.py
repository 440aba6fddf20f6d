from __future__ import annotations
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.utils import check_array

from ..distance import DistanceMetric, check_metric


class VectorArray(object):
    """Linear-scan collection with the same search interface as
    :class:`~vpcluster.vptree.VPTree`. Every query evaluates the distance to
    every point, so the answers are exact for any metric, subadditive or not.
    Useful as a baseline and as a reference for the tree.

    Args:
        X (numpy.ndarray): Points of shape (n_samples, n_features).
        metric (Optional[DistanceMetric]): Distance metric, Euclidean by
            default.
    """

    def __init__(self, X: np.ndarray, metric: Optional[DistanceMetric] = None) -> None:
        self._metric = check_metric(metric)
        self._X = check_array(X, dtype=np.float64, ensure_min_samples=0)

    def __len__(self) -> int:
        return self._X.shape[0]

    def __getitem__(self, index: int) -> np.ndarray:
        return self._X[index].copy()

    def insert(self, x: Sequence[float]) -> int:
        self._X = np.vstack([self._X, np.asarray(x, dtype=np.float64)[np.newaxis, :]])
        return self._X.shape[0] - 1

    def _distances(self, query) -> np.ndarray:
        q = np.asarray(query, dtype=np.float64)
        if q.ndim != 1 or q.shape[0] != self._X.shape[1]:
            raise ValueError(
                f"Query of shape {q.shape} does not match dimension {self._X.shape[1]}"
            )
        return self._metric.dist_query(slice(None), q, self._X)

    def search(self, query: Sequence[float], k: int) -> List[Tuple[int, float]]:
        """The ``k`` nearest points, sorted by distance then index."""
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        if len(self) == 0:
            return []
        d = self._distances(query)
        order = np.lexsort((np.arange(len(d)), d))[:k]
        return list(zip(order.tolist(), d[order].tolist()))

    def search_range(
        self, query: Sequence[float], radius: float
    ) -> List[Tuple[int, float]]:
        """All points within ``radius`` (inclusive), sorted by distance then
        index."""
        if not radius > 0:
            raise ValueError(f"radius must be positive, got {radius}")
        if len(self) == 0:
            return []
        d = self._distances(query)
        hits = np.flatnonzero(d <= radius)
        hits = hits[np.lexsort((hits, d[hits]))]
        return list(zip(hits.tolist(), d[hits].tolist()))
