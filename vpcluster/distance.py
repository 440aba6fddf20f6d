"""
Distance metrics over dense numpy vectors.

Every metric works on whole blocks of rows at once (:meth:`pairwise` and
:meth:`paired`) and can optionally precompute per-row data, the
*acceleration cache*, that makes repeated evaluations against a fixed data
set cheaper. The index helpers :meth:`DistanceMetric.dist_index`,
:meth:`DistanceMetric.dist_query` and :meth:`DistanceMetric.dist_cross`
are what the search and clustering code calls; they slice the cache
alongside the data.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Union

import numpy as np

Indices = Union[Sequence[int], np.ndarray, slice]

# Upper bound on the number of elements of the (rows, cols, dim) difference
# tensor materialized at once by the exact kernels.
_BLOCK_ELEMENTS = 1 << 22

# A cached Euclidean distance whose square falls below this fraction of the
# summed squared norms is recomputed from the coordinate differences.
_CANCELLATION = 1e-6


def _take(info: Optional[np.ndarray], indices) -> Optional[np.ndarray]:
    return None if info is None else info[indices]


class DistanceMetric(ABC):
    """Base class for distance metrics.

    Subclasses implement :meth:`pairwise` and :meth:`paired`. The property
    flags default to those of a true metric; override them when a metric
    does not satisfy the triangle inequality, is not symmetric, or can be
    zero between distinct points.
    """

    def is_symmetric(self) -> bool:
        return True

    def is_subadditive(self) -> bool:
        return True

    def is_indiscernible(self) -> bool:
        return True

    def is_valid_metric(self) -> bool:
        """True if the metric is symmetric, subadditive and indiscernible."""
        return self.is_symmetric() and self.is_subadditive() and self.is_indiscernible()

    def metric_bound(self) -> float:
        """Largest value the metric can return."""
        return float("inf")

    def supports_acceleration(self) -> bool:
        return False

    def get_acceleration_cache(self, X: np.ndarray) -> Optional[np.ndarray]:
        """Per-row data for ``X`` to pass back into the distance calls, or
        ``None`` if the metric has nothing to cache. The cache is only valid
        for the exact array it was computed from."""
        return None

    def get_query_info(self, q: np.ndarray) -> Optional[np.ndarray]:
        """Cache entries for one query vector or a block of query rows."""
        return self.get_acceleration_cache(np.atleast_2d(q))

    @abstractmethod
    def pairwise(
        self,
        A: np.ndarray,
        B: np.ndarray,
        a_info: Optional[np.ndarray] = None,
        b_info: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Distances between every row of ``A`` and every row of ``B``, as a
        ``(len(A), len(B))`` array."""

    @abstractmethod
    def paired(
        self,
        A: np.ndarray,
        B: np.ndarray,
        a_info: Optional[np.ndarray] = None,
        b_info: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Distances between ``A[i]`` and ``B[i]`` for every row ``i``."""

    def dist(self, a: np.ndarray, b: np.ndarray) -> float:
        """Distance between two vectors."""
        return float(self.paired(np.atleast_2d(a), np.atleast_2d(b))[0])

    def dist_index(
        self, i: int, j: int, X: np.ndarray, cache: Optional[np.ndarray] = None
    ) -> float:
        """Distance between rows ``i`` and ``j`` of ``X``."""
        return float(
            self.paired(
                X[i : i + 1], X[j : j + 1], _take(cache, [i]), _take(cache, [j])
            )[0]
        )

    def dist_query(
        self,
        indices: Indices,
        q: np.ndarray,
        X: np.ndarray,
        cache: Optional[np.ndarray] = None,
        q_info: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Distances from the rows ``X[indices]`` to the single vector ``q``."""
        q = np.atleast_2d(q)
        if cache is not None and q_info is None:
            q_info = self.get_query_info(q)
        return self.pairwise(X[indices], q, _take(cache, indices), q_info)[:, 0]

    def dist_cross(
        self,
        indices: Indices,
        Q: np.ndarray,
        X: np.ndarray,
        cache: Optional[np.ndarray] = None,
        q_info: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Distances from the rows ``X[indices]`` to every row of ``Q``."""
        if cache is not None and q_info is None:
            q_info = self.get_query_info(Q)
        return self.pairwise(X[indices], Q, _take(cache, indices), q_info)

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.__dict__ == other.__dict__

    def __hash__(self) -> int:
        return hash((type(self), tuple(sorted(self.__dict__.items()))))

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in sorted(self.__dict__.items()))
        return f"{type(self).__name__}({params})"


def _blocked(A: np.ndarray, B: np.ndarray, reduce) -> np.ndarray:
    """Apply ``reduce`` to row blocks of the ``A[:, None] - B[None, :]``
    difference tensor, bounding memory use."""
    out = np.empty((A.shape[0], B.shape[0]), dtype=np.float64)
    per_row = max(1, B.shape[0] * max(1, A.shape[1]))
    step = max(1, _BLOCK_ELEMENTS // per_row)
    for start in range(0, A.shape[0], step):
        diff = A[start : start + step, np.newaxis, :] - B[np.newaxis, :, :]
        out[start : start + step] = reduce(diff)
    return out


class EuclideanDistance(DistanceMetric):
    """L2 distance.

    The acceleration cache holds squared row norms; with both caches given
    the distance is computed as ``sqrt(max(|a|^2 + |b|^2 - 2 a.b, 0))``,
    which turns a block of distance evaluations into one matrix product.
    Pairs whose squared distance is tiny next to their squared norms lose
    most of their digits to cancellation in that form, so they are
    recomputed from the difference vector. Without caches the difference
    vectors are used directly.
    """

    def supports_acceleration(self) -> bool:
        return True

    def get_acceleration_cache(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        return np.einsum("ij,ij->i", X, X)

    def pairwise(self, A, B, a_info=None, b_info=None):
        if a_info is not None and b_info is not None:
            scale = a_info[:, np.newaxis] + b_info[np.newaxis, :]
            d2 = scale - 2.0 * (A @ B.T)
            rows, cols = np.nonzero(d2 < _CANCELLATION * scale)
            if rows.size:
                diff = A[rows] - B[cols]
                d2[rows, cols] = np.sum(diff * diff, axis=-1)
            return np.sqrt(np.maximum(d2, 0.0, out=d2), out=d2)
        return _blocked(A, B, lambda diff: np.sqrt(np.sum(diff * diff, axis=-1)))

    def paired(self, A, B, a_info=None, b_info=None):
        if a_info is not None and b_info is not None:
            scale = a_info + b_info
            d2 = scale - 2.0 * np.einsum("ij,ij->i", A, B)
            close = np.flatnonzero(d2 < _CANCELLATION * scale)
            if close.size:
                diff = A[close] - B[close]
                d2[close] = np.sum(diff * diff, axis=-1)
            return np.sqrt(np.maximum(d2, 0.0, out=d2), out=d2)
        diff = A - B
        return np.sqrt(np.sum(diff * diff, axis=-1))


class SquaredEuclideanDistance(DistanceMetric):
    """Squared L2 distance. Not subadditive, so it cannot drive the
    triangle-inequality based algorithms."""

    def is_subadditive(self) -> bool:
        return False

    def pairwise(self, A, B, a_info=None, b_info=None):
        return _blocked(A, B, lambda diff: np.sum(diff * diff, axis=-1))

    def paired(self, A, B, a_info=None, b_info=None):
        diff = A - B
        return np.sum(diff * diff, axis=-1)


class ManhattanDistance(DistanceMetric):
    """L1 distance."""

    def pairwise(self, A, B, a_info=None, b_info=None):
        return _blocked(A, B, lambda diff: np.sum(np.abs(diff), axis=-1))

    def paired(self, A, B, a_info=None, b_info=None):
        return np.sum(np.abs(A - B), axis=-1)


class ChebyshevDistance(DistanceMetric):
    """L-infinity distance."""

    def pairwise(self, A, B, a_info=None, b_info=None):
        if A.shape[1] == 0:
            return np.zeros((A.shape[0], B.shape[0]))
        return _blocked(A, B, lambda diff: np.max(np.abs(diff), axis=-1))

    def paired(self, A, B, a_info=None, b_info=None):
        if A.shape[1] == 0:
            return np.zeros(A.shape[0])
        return np.max(np.abs(A - B), axis=-1)


class MinkowskiDistance(DistanceMetric):
    """Lp distance. Subadditive only for ``p >= 1``.

    Args:
        p (float): The order of the norm, must be positive.
    """

    def __init__(self, p: float = 2.0) -> None:
        if not p > 0:
            raise ValueError(f"p must be positive, got {p}")
        self.p = float(p)

    def is_subadditive(self) -> bool:
        return self.p >= 1.0

    def pairwise(self, A, B, a_info=None, b_info=None):
        p = self.p
        return _blocked(
            A, B, lambda diff: np.sum(np.abs(diff) ** p, axis=-1) ** (1.0 / p)
        )

    def paired(self, A, B, a_info=None, b_info=None):
        return np.sum(np.abs(A - B) ** self.p, axis=-1) ** (1.0 / self.p)


class CosineDistance(DistanceMetric):
    """Angular distance ``sqrt(0.5 * (1 - cos(a, b)))``.

    Taking the square root of the plain cosine distance makes it a true
    metric on the unit sphere. Its range is ``[0, 1]``. A zero vector has
    similarity 0 to every vector. The acceleration cache holds row norms.
    """

    def metric_bound(self) -> float:
        return 1.0

    def supports_acceleration(self) -> bool:
        return True

    def get_acceleration_cache(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        return np.sqrt(np.einsum("ij,ij->i", X, X))

    @staticmethod
    def _from_similarity(sim: np.ndarray) -> np.ndarray:
        np.clip(sim, -1.0, 1.0, out=sim)
        return np.sqrt(np.maximum(0.5 * (1.0 - sim), 0.0))

    @staticmethod
    def _safe(norms: np.ndarray) -> np.ndarray:
        return np.where(norms > 0, norms, np.inf)

    def pairwise(self, A, B, a_info=None, b_info=None):
        if a_info is None:
            a_info = self.get_acceleration_cache(A)
        if b_info is None:
            b_info = self.get_acceleration_cache(B)
        sim = (A @ B.T) / self._safe(a_info)[:, np.newaxis] / self._safe(b_info)[np.newaxis, :]
        return self._from_similarity(sim)

    def paired(self, A, B, a_info=None, b_info=None):
        if a_info is None:
            a_info = self.get_acceleration_cache(A)
        if b_info is None:
            b_info = self.get_acceleration_cache(B)
        sim = np.einsum("ij,ij->i", A, B) / self._safe(a_info) / self._safe(b_info)
        return self._from_similarity(sim)


def check_metric(metric: Optional[DistanceMetric]) -> DistanceMetric:
    """Return ``metric`` or the default :class:`EuclideanDistance`."""
    if metric is None:
        return EuclideanDistance()
    if not isinstance(metric, DistanceMetric):
        raise TypeError(
            f"metric must be a DistanceMetric instance, got {type(metric).__name__}"
        )
    return metric
