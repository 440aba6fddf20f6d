"""
K-means clustering estimator for arbitrary subadditive metrics, backed by
Hamerly's accelerated iteration or plain Lloyd iteration.
"""

from __future__ import annotations
import logging
from typing import Optional, Union

import numpy as np
from sklearn.base import BaseEstimator, ClusterMixin, clone
from sklearn.utils import check_random_state
from sklearn.utils.validation import check_is_fitted

from ..base import check_data, check_n_clusters
from ..distance import DistanceMetric, check_metric
from ..parallel import ParallelRunner
from ..seeding import SeedSelection, select_initial_points
from .hamerly import hamerly_kmeans
from .lloyd import assign_nearest, lloyd_kmeans

logger = logging.getLogger(__name__)

ALGORITHMS = {
    "hamerly": hamerly_kmeans,
    "lloyd": lloyd_kmeans,
}


class KMeans(ClusterMixin, BaseEstimator):
    """
    K-means clustering.

    Features:
    - Hamerly's bounds skip most distance evaluations while giving exactly
      the assignments of Lloyd's algorithm
    - k-means++, random, farthest-first or mean-quantile seeding
    - Any :class:`~vpcluster.distance.DistanceMetric`, Euclidean by default
    - Optional per-point weights
    - Multi-threaded assignment and center update with results that do not
      depend on the number of threads

    Args:
        n_clusters: Number of clusters.
        algorithm: ``"hamerly"`` or ``"lloyd"``.
        metric: Distance metric, Euclidean when ``None``.
        init: A :class:`~vpcluster.seeding.SeedSelection` member, its string
            value, or an array of initial centers of shape
            (n_clusters, n_features). A single run is made from the seeds, so
            ``"random"`` seeding can settle in a local optimum, for example
            with two centers sharing one well separated group while another
            group gets none. The spread-out seedings rarely do.
        max_iter: Maximum number of assignment passes.
        random_state: Seed for the initialization.
        n_jobs: Number of threads, ``None`` runs sequentially.
        verbose: Log progress at INFO instead of DEBUG level.

    Attributes:
        cluster_centers_: Centers used by the final assignment.
        labels_: Cluster of every training point.
        inertia_: Weighted sum of squared distances to the assigned centers.
        n_iter_: Number of assignment passes run.
        converged_: Whether the last pass left every assignment unchanged.
        distance_evaluations_: Number of distance computations performed.
    """

    def __init__(
        self,
        n_clusters: int = 8,
        algorithm: str = "hamerly",
        metric: Optional[DistanceMetric] = None,
        init: Union[str, SeedSelection, np.ndarray] = SeedSelection.KPP,
        max_iter: int = 300,
        random_state=None,
        n_jobs: Optional[int] = None,
        verbose: bool = False,
    ):
        self.n_clusters = n_clusters
        self.algorithm = algorithm
        self.metric = metric
        self.init = init
        self.max_iter = max_iter
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.verbose = verbose

    def _log(self, msg, *args):
        (logger.info if self.verbose else logger.debug)(msg, *args)

    def _init_centroids(self, X, metric, cache) -> np.ndarray:
        """Initial centers, either given or picked among the data points."""
        if isinstance(self.init, (str, SeedSelection)):
            seeds = select_initial_points(
                X,
                self.n_clusters,
                metric=metric,
                method=self.init,
                random_state=check_random_state(self.random_state),
                cache=cache,
                n_jobs=self.n_jobs,
            )
            return X[seeds].copy()
        centers = np.array(self.init, dtype=np.float64)
        if centers.shape != (self.n_clusters, X.shape[1]):
            raise ValueError(
                f"init array must have shape ({self.n_clusters}, {X.shape[1]}), "
                f"got {centers.shape}"
            )
        return centers

    def fit(self, X, y=None, sample_weight=None) -> KMeans:
        """
        Fit K-means clustering to the data.

        Args:
            X: Input data of shape (n_samples, n_features)
            y: Ignored
            sample_weight: Optional weight of every point

        Returns:
            self
        """
        X = check_data(X)
        check_n_clusters(self.n_clusters, X.shape[0])
        if self.algorithm not in ALGORITHMS:
            raise ValueError(
                f"Unknown algorithm {self.algorithm!r}, expected one of {sorted(ALGORITHMS)}"
            )
        metric = check_metric(self.metric)
        cache = (
            metric.get_acceleration_cache(X) if metric.supports_acceleration() else None
        )

        self._log(
            "Fitting K-means (%s) with %d clusters on %d samples",
            self.algorithm,
            self.n_clusters,
            X.shape[0],
        )
        centers = self._init_centroids(X, metric, cache)
        result = ALGORITHMS[self.algorithm](
            X,
            centers,
            metric=metric,
            sample_weight=sample_weight,
            max_iter=self.max_iter,
            n_jobs=self.n_jobs,
            cache=cache,
        )
        if result.converged:
            self._log("Converged after %d iterations", result.n_iter)
        else:
            self._log(
                "Stopped after %d iterations with %d points still moving",
                result.n_iter,
                result.n_changed,
            )
        self._log("Final inertia: %.4f", result.inertia)

        self.cluster_centers_ = result.centers
        self.labels_ = result.labels
        self.inertia_ = result.inertia
        self.n_iter_ = result.n_iter
        self.converged_ = result.converged
        self.distance_evaluations_ = result.metadata["distance_evaluations"]
        self.n_features_in_ = X.shape[1]
        return self

    def predict(self, X) -> np.ndarray:
        """
        Predict the closest cluster of each point in ``X``.

        Args:
            X: Input data of shape (n_samples, n_features)

        Returns:
            Cluster labels
        """
        check_is_fitted(self, "cluster_centers_")
        X = check_data(X)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, the model was fitted with {self.n_features_in_}"
            )
        metric = check_metric(self.metric)
        cache = (
            metric.get_acceleration_cache(X) if metric.supports_acceleration() else None
        )
        with ParallelRunner(self.n_jobs) as runner:
            labels, _, _ = assign_nearest(X, self.cluster_centers_, metric, cache, runner)
        return labels

    def cluster(self, X, n_clusters: Optional[int] = None) -> np.ndarray:
        """Cluster ``X`` and return the labels. With ``n_clusters`` given, a
        copy of this estimator with that many clusters is fitted and this
        one is left untouched."""
        if n_clusters is None:
            return self.fit(X).labels_
        return clone(self).set_params(n_clusters=n_clusters).fit(X).labels_

    def get_cluster_info(self) -> dict:
        """Get information about the clustering results."""
        check_is_fitted(self, "cluster_centers_")
        sizes = np.bincount(self.labels_, minlength=self.n_clusters)
        return {
            "n_clusters": self.n_clusters,
            "inertia": self.inertia_,
            "n_iterations": self.n_iter_,
            "converged": self.converged_,
            "cluster_sizes": dict(enumerate(sizes.tolist())),
            "avg_cluster_size": float(np.mean(sizes)),
            "std_cluster_size": float(np.std(sizes)),
            "min_cluster_size": int(np.min(sizes)),
            "max_cluster_size": int(np.max(sizes)),
            "distance_evaluations": self.distance_evaluations_,
        }
