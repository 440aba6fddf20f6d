from __future__ import annotations
import copy
import enum
import heapq
import logging
import math
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from sklearn.utils import check_array, check_random_state

from ..distance import DistanceMetric, check_metric
from ..parallel import ParallelRunner

logger = logging.getLogger(__name__)

DEFAULT_LEAF_SIZE = 5
DEFAULT_SAMPLE_SIZE = 80
DEFAULT_SEARCH_ITERATIONS = 40

_MAX_SEED = np.iinfo(np.int32).max
_INITIAL_CAPACITY = 16


class VantagePointSelection(enum.Enum):
    """How a node picks its vantage point."""

    #: Uniformly at random among the node's points.
    RANDOM = "random"
    #: The candidate, out of a random sample, whose distances to a random
    #: set of targets have the largest spread around their median.
    SAMPLING = "sampling"


class _Leaf(object):
    """Bucket of point indices together with each point's distance to the
    vantage point of the parent node. Only used for pre-filtering, so the
    distances are meaningless (zero) for a leaf at the root."""

    __slots__ = ("indices", "bounds")

    def __init__(self, indices: np.ndarray, bounds: np.ndarray) -> None:
        self.indices = indices
        self.bounds = bounds

    def __len__(self) -> int:
        return len(self.indices)

    def append(self, index: int, bound: float) -> None:
        self.indices = np.append(self.indices, index)
        self.bounds = np.append(self.bounds, bound)


class _Node(object):
    """Internal node. Every point of the left (right) subtree lies at a
    distance in ``[left_low, left_high]`` (``[right_low, right_high]``) from
    the vantage point ``vp``."""

    __slots__ = (
        "vp",
        "left",
        "right",
        "left_low",
        "left_high",
        "right_low",
        "right_high",
    )

    def __init__(self, vp: int) -> None:
        self.vp = vp
        self.left = None
        self.right = None
        self.left_low = math.inf
        self.left_high = -math.inf
        self.right_low = math.inf
        self.right_high = -math.inf

    def children(self) -> Iterator[Tuple[object, float, float]]:
        yield self.left, self.left_low, self.left_high
        yield self.right, self.right_low, self.right_high


class _Pending(object):
    """Placeholder for a subtree deferred to the worker pool."""

    __slots__ = ("indices", "bounds", "rs")

    def __init__(self, indices, bounds, rs) -> None:
        self.indices = indices
        self.bounds = bounds
        self.rs = rs


class VPTree(object):
    """Vantage-point tree for exact nearest neighbor and radius search
    under any metric that satisfies the triangle inequality. This is the
    VPsb-tree variant of "Data structures and algorithms for nearest
    neighbor search in general metric spaces" by P. N. Yianilos (1993):
    every node keeps the distance range of each of its two subtrees, and
    points are stored in small leaf buckets.

    Results are lists of ``(index, distance)`` pairs sorted by distance.
    Points at equal distance are ordered by index, and a k-nearest neighbor
    query that has to choose among equidistant points keeps the lowest
    indices. Distances are computed from coordinate differences, never from
    cached norms, so they agree with :class:`~vpcluster.vptree.VectorArray`
    even for data far from the origin.

    Args:
        X (Optional[numpy.ndarray]): Points to index, of shape
            (n_samples, n_features). The array is referenced, not copied,
            until the first :meth:`insert`.
        metric (Optional[DistanceMetric]): Distance metric, Euclidean by
            default. It must be subadditive.
        selection (VantagePointSelection): Vantage point strategy.
        leaf_size (int): Maximum number of points in a leaf built by
            :meth:`build`. A leaf that grows through :meth:`insert` is
            rebuilt once it holds more than ``leaf_size ** 2`` points.
        sample_size (int): Number of vantage point candidates considered by
            :attr:`VantagePointSelection.SAMPLING`.
        search_iterations (int): Number of target points used to score
            each candidate.
        random_state: ``None``, an int seed or a ``numpy.random.RandomState``.
        n_jobs (Optional[int]): Threads used to build the tree.

    Examples:

        .. code-block:: python

            from vpcluster import VPTree
            import numpy as np

            data = np.random.random_sample((1000, 10))
            index = VPTree(data, random_state=42)

            # The 10 nearest neighbors of the first vector.
            index.search(data[0], k=10)

            # Every point within distance 0.5 of it.
            index.search_range(data[0], 0.5)

    """

    def __init__(
        self,
        X: Optional[np.ndarray] = None,
        metric: Optional[DistanceMetric] = None,
        selection: Union[str, VantagePointSelection] = VantagePointSelection.SAMPLING,
        leaf_size: int = DEFAULT_LEAF_SIZE,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        search_iterations: int = DEFAULT_SEARCH_ITERATIONS,
        random_state=None,
        n_jobs: Optional[int] = None,
    ) -> None:
        metric = check_metric(metric)
        if not metric.is_subadditive():
            raise ValueError(
                f"VPTree requires a metric satisfying the triangle inequality, "
                f"{metric!r} is not subadditive"
            )
        if leaf_size < 2:
            raise ValueError(f"leaf_size must be at least 2, got {leaf_size}")
        if sample_size < 1 or search_iterations < 1:
            raise ValueError("sample_size and search_iterations must be positive")
        self._metric = metric
        self._selection = VantagePointSelection(selection)
        self._leaf_size = int(leaf_size)
        self._sample_size = int(sample_size)
        self._search_iterations = int(search_iterations)
        self._rs = check_random_state(random_state)
        self._data: Optional[np.ndarray] = None
        self._size = 0
        self._owned = False
        self._root = None
        if X is not None:
            self.build(X, n_jobs=n_jobs)

    @property
    def metric(self) -> DistanceMetric:
        return self._metric

    @property
    def leaf_size(self) -> int:
        return self._leaf_size

    @property
    def dim(self) -> Optional[int]:
        """Dimension of the indexed vectors, ``None`` while it is unknown."""
        return None if self._data is None else self._data.shape[1]

    def __len__(self) -> int:
        return self._size

    def __getitem__(self, index: int) -> np.ndarray:
        """Return a copy of the vector stored at ``index``."""
        if not -self._size <= index < self._size:
            raise IndexError(f"index {index} out of range for {self._size} points")
        return self._data[index % self._size].copy()

    def __iter__(self) -> Iterator[np.ndarray]:
        for i in range(self._size):
            yield self._data[i].copy()

    def copy(self) -> VPTree:
        """Create a copy of the index that shares nothing with this one."""
        return copy.deepcopy(self)

    @property
    def _X(self) -> np.ndarray:
        return self._data[: self._size]

    def build(self, X: np.ndarray, n_jobs: Optional[int] = None) -> VPTree:
        """Replace the content of the index with the rows of ``X``.

        With ``n_jobs > 1`` the subtrees below the first few levels are
        built concurrently. The resulting tree is the same as with a
        sequential build.
        """
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 2 and X.shape[0] == 0:
            self._data, self._size, self._root = X, 0, None
            self._owned = False
            return self
        X = check_array(X, dtype=np.float64)
        self._data = X
        self._size = X.shape[0]
        self._owned = False
        indices = np.arange(self._size)
        bounds = np.zeros(self._size)
        rs = check_random_state(self._rs.randint(_MAX_SEED))
        with ParallelRunner(n_jobs) as runner:
            if not runner.parallel:
                self._root = self._build(indices, bounds, rs)
            else:
                depth = int(math.ceil(math.log2(runner.n_workers))) + 1
                pending: List[_Pending] = []
                root = self._build(indices, bounds, rs, pending, depth)
                subtrees = runner.map_items(
                    pending, lambda p: self._build(p.indices, p.bounds, p.rs)
                )
                built = {id(p): t for p, t in zip(pending, subtrees)}
                self._root = self._resolve(root, built)
        logger.debug("Built VPTree over %d points", self._size)
        return self

    def _resolve(self, node, built):
        if isinstance(node, _Pending):
            return built[id(node)]
        if isinstance(node, _Node):
            node.left = self._resolve(node.left, built)
            node.right = self._resolve(node.right, built)
        return node

    def _build(self, indices, bounds, rs, pending=None, depth=0):
        """Recursively build the subtree over ``indices``; ``bounds`` are
        their distances to the parent's vantage point."""
        if len(indices) <= self._leaf_size:
            return _Leaf(indices.copy(), bounds.copy())
        if pending is not None and depth <= 0:
            task = _Pending(indices, bounds, rs)
            pending.append(task)
            return task
        pos = self._select_vantage_point(indices, rs)
        vp = int(indices[pos])
        rest = np.delete(indices, pos)
        d = self._dist_to(rest, vp)
        order = np.lexsort((rest, d))
        rest, d = rest[order], d[order]
        split = (len(rest) + 1) // 2
        node = _Node(vp)
        node.left_low, node.left_high = float(d[0]), float(d[split - 1])
        node.right_low, node.right_high = float(d[split]), float(d[-1])
        left_seed, right_seed = rs.randint(_MAX_SEED, size=2)
        node.left = self._build(
            rest[:split], d[:split], np.random.RandomState(left_seed), pending, depth - 1
        )
        node.right = self._build(
            rest[split:], d[split:], np.random.RandomState(right_seed), pending, depth - 1
        )
        return node

    def _select_vantage_point(self, indices: np.ndarray, rs) -> int:
        """Return the position in ``indices`` of the next vantage point."""
        n = len(indices)
        if self._selection is VantagePointSelection.RANDOM:
            return int(rs.randint(n))
        candidates = rs.choice(n, min(self._sample_size, n), replace=False)
        targets = rs.choice(n, min(self._search_iterations, n), replace=False)
        X = self._X
        D = self._metric.dist_cross(indices[candidates], X[indices[targets]], X)
        spread = np.abs(D - np.median(D, axis=1, keepdims=True)).sum(axis=1)
        return int(candidates[int(np.argmax(spread))])

    def _dist_to(self, indices, vp: int) -> np.ndarray:
        return self._metric.dist_query(indices, self._X[vp], self._X)

    def _append(self, x: np.ndarray) -> int:
        if self._data is None or self._data.shape[0] == 0 and not self._owned:
            self._data = np.empty((_INITIAL_CAPACITY, x.shape[0]))
            self._owned = True
        if not self._owned or self._size == self._data.shape[0]:
            capacity = max(2 * self._size, _INITIAL_CAPACITY)
            data = np.empty((capacity, self._data.shape[1]))
            data[: self._size] = self._data[: self._size]
            self._data = data
            self._owned = True
        index = self._size
        self._data[index] = x
        self._size += 1
        return index

    def insert(self, x: Sequence[float]) -> int:
        """Add a point to the index and return its index.

        The point descends to the side whose distance range it is closer
        to, widening that side's range on the way. A leaf that outgrows
        ``leaf_size ** 2`` points is rebuilt into a subtree.

        Args:
            x: The vector to add. The first point added to an empty index
                fixes the dimension.

        Returns:
            The index of the new point.
        """
        x = self._check_vector(x, allow_new_dim=self._size == 0)
        index = self._append(x)
        limit = self._leaf_size ** 2
        if self._root is None:
            self._root = _Leaf(np.array([index]), np.zeros(1))
            return index
        if isinstance(self._root, _Leaf):
            self._root.append(index, 0.0)
            if len(self._root) > limit:
                self._root = self._rebuild(self._root)
            return index
        node = self._root
        while True:
            d = float(self._dist_to([node.vp], index)[0])
            if 2.0 * d < node.left_high + node.right_low:
                node.left_low = min(node.left_low, d)
                node.left_high = max(node.left_high, d)
                side = "left"
            else:
                node.right_low = min(node.right_low, d)
                node.right_high = max(node.right_high, d)
                side = "right"
            child = getattr(node, side)
            if isinstance(child, _Leaf):
                child.append(index, d)
                if len(child) > limit:
                    setattr(node, side, self._rebuild(child))
                return index
            node = child

    def _rebuild(self, leaf: _Leaf):
        rs = np.random.RandomState(self._rs.randint(_MAX_SEED))
        return self._build(leaf.indices, leaf.bounds, rs)

    def _check_vector(self, x, allow_new_dim: bool = False) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 1:
            raise ValueError(f"Expected a 1-D vector, got shape {x.shape}")
        if not np.all(np.isfinite(x)):
            raise ValueError("Vector contains NaN or infinity")
        dim = self.dim
        if dim is not None and x.shape[0] != dim and not allow_new_dim:
            raise ValueError(
                f"Vector has dimension {x.shape[0]}, the index holds dimension {dim}"
            )
        return x

    def search(self, query: Sequence[float], k: int) -> List[Tuple[int, float]]:
        """Find the ``k`` nearest neighbors of ``query``.

        Args:
            query: Query vector.
            k: Number of neighbors. If it exceeds the number of points,
                all points are returned.

        Returns:
            Up to ``k`` ``(index, distance)`` pairs sorted by distance, then
            by index.
        """
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        if self._root is None:
            return []
        q = self._check_vector(query)
        heap: List[Tuple[float, int]] = []
        self._search_knn(self._root, q, int(k), heap, None)
        return sorted(((-i, -d) for d, i in heap), key=lambda r: (r[1], r[0]))

    @staticmethod
    def _offer(heap, k: int, d: float, i: int) -> None:
        # Max-heap on (distance, index) through negation.
        if len(heap) < k:
            heapq.heappush(heap, (-d, -i))
        elif (d, i) < (-heap[0][0], -heap[0][1]):
            heapq.heapreplace(heap, (-d, -i))

    def _search_knn(self, node, q, k, heap, x) -> None:
        X = self._X
        if isinstance(node, _Leaf):
            indices = node.indices
            if x is not None and len(heap) == k:
                tau = -heap[0][0]
                keep = (node.bounds - tau <= x) & (x <= node.bounds + tau)
                indices = indices[keep]
            if len(indices):
                d = self._metric.dist_query(indices, q, X)
                for i, di in zip(indices.tolist(), d.tolist()):
                    self._offer(heap, k, di, i)
            return
        d = float(self._metric.dist_query([node.vp], q, X)[0])
        self._offer(heap, k, d, node.vp)
        middle = (node.left_high + node.right_low) / 2.0
        children = list(node.children())
        if d >= middle:
            children.reverse()
        for child, low, high in children:
            if child is None:
                continue
            if len(heap) < k:
                self._search_knn(child, q, k, heap, d)
                continue
            tau = -heap[0][0]
            if low - tau <= d <= high + tau:
                self._search_knn(child, q, k, heap, d)

    def search_range(
        self, query: Sequence[float], radius: float
    ) -> List[Tuple[int, float]]:
        """Find every point within ``radius`` of ``query`` (inclusive).

        Returns:
            ``(index, distance)`` pairs sorted by distance, then by index.
        """
        if not radius > 0:
            raise ValueError(f"radius must be positive, got {radius}")
        if self._root is None:
            return []
        q = self._check_vector(query)
        found: List[Tuple[int, float]] = []
        self._search_range(self._root, q, float(radius), found, None)
        found.sort(key=lambda r: (r[1], r[0]))
        return found

    def _search_range(self, node, q, radius, found, x) -> None:
        X = self._X
        if isinstance(node, _Leaf):
            indices = node.indices
            if x is not None:
                keep = (node.bounds - radius <= x) & (x <= node.bounds + radius)
                indices = indices[keep]
            if len(indices):
                d = self._metric.dist_query(indices, q, X)
                hit = d <= radius
                found.extend(zip(indices[hit].tolist(), d[hit].tolist()))
            return
        d = float(self._metric.dist_query([node.vp], q, X)[0])
        if d <= radius:
            found.append((node.vp, d))
        for child, low, high in node.children():
            if child is not None and low - radius <= d <= high + radius:
                self._search_range(child, q, radius, found, d)

    def search_batch(
        self,
        queries: np.ndarray,
        k: Optional[int] = None,
        radius: Optional[float] = None,
        n_jobs: Optional[int] = None,
    ) -> List[List[Tuple[int, float]]]:
        """Run :meth:`search` (``k`` given) or :meth:`search_range`
        (``radius`` given) for every row of ``queries``, optionally spread
        over ``n_jobs`` threads. Results are in query order."""
        if (k is None) == (radius is None):
            raise ValueError("Exactly one of k and radius must be given")
        queries = np.atleast_2d(np.asarray(queries, dtype=np.float64))
        results: List[Optional[List[Tuple[int, float]]]] = [None] * len(queries)

        def work(start, end):
            for i in range(start, end):
                if k is not None:
                    results[i] = self.search(queries[i], k)
                else:
                    results[i] = self.search_range(queries[i], radius)

        with ParallelRunner(n_jobs) as runner:
            runner.map_ranges(len(queries), work)
        return results
