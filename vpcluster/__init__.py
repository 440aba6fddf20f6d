"""
vpcluster
=========

Exact metric-space search and triangle-inequality accelerated clustering.

Main features:
- VPTree: vantage-point tree for exact k-nearest neighbor and radius search
  under any metric, with incremental insertion
- KMeans: Hamerly's accelerated K-Means, identical to Lloyd's algorithm
- KMedoids: PAM, TRIKMEDS (exact, pruned) and MEDDIT (approximate)
- Seed selection: k-means++, random, farthest-first, mean quantiles
- Optional multi-threading with thread-count independent results

Example:
--------
    >>> from vpcluster import VPTree, KMeans
    >>> import numpy as np
    >>>
    >>> data = np.random.random((1000, 10))
    >>>
    >>> # Build the index and find the 10 nearest neighbors
    >>> index = VPTree(data, random_state=0)
    >>> neighbors = index.search(data[0], k=10)
    >>>
    >>> # Cluster the same data
    >>> labels = KMeans(n_clusters=5, random_state=0).fit_predict(data)
"""

from .version import __version__
from .base import ClusterFailureError, Clusterer, ClusteringResult
from .distance import (
    ChebyshevDistance,
    CosineDistance,
    DistanceMetric,
    EuclideanDistance,
    ManhattanDistance,
    MinkowskiDistance,
    SquaredEuclideanDistance,
)
from .seeding import SeedSelection, select_initial_points
from .vptree import VPTree, VantagePointSelection, VectorArray
from .kmeans import KMeans, hamerly_kmeans, lloyd_kmeans
from .kmedoids import KMedoids, meddit, meddit_medoid, medoid, pam, trikmeds

__all__ = [
    "__version__",
    "ClusterFailureError",
    "Clusterer",
    "ClusteringResult",
    "DistanceMetric",
    "EuclideanDistance",
    "SquaredEuclideanDistance",
    "ManhattanDistance",
    "ChebyshevDistance",
    "MinkowskiDistance",
    "CosineDistance",
    "SeedSelection",
    "select_initial_points",
    "VPTree",
    "VantagePointSelection",
    "VectorArray",
    "KMeans",
    "hamerly_kmeans",
    "lloyd_kmeans",
    "KMedoids",
    "pam",
    "trikmeds",
    "meddit",
    "meddit_medoid",
    "medoid",
]
