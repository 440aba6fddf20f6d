"""
K-Medoids clustering estimator: exact PAM, TRIKMEDS or approximate MEDDIT.
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
from .meddit import DEFAULT_TOLERANCE, meddit
from .pam import assign_to_medoids, pam
from .trikmeds import trikmeds

logger = logging.getLogger(__name__)

METHODS = ("pam", "trikmeds", "meddit")


class KMedoids(ClusterMixin, BaseEstimator):
    """K-Medoids clustering, where every cluster is represented by one of
    its own points.

    Args:
        n_clusters: Number of clusters.
        method: ``"pam"`` for the exact quadratic medoid update,
            ``"trikmeds"`` for the same clustering with triangle inequality
            pruning, or ``"meddit"`` for the bandit based approximation.
        metric: Distance metric, Euclidean when ``None``.
        init: A :class:`~vpcluster.seeding.SeedSelection` member, its string
            value, or an array of initial medoid indices.
        max_iter: Maximum number of assignment passes.
        squared: Choose medoids by the sum of squared distances (default)
            instead of the plain sum of distances.
        tolerance: Confidence parameter of ``"meddit"``.
        random_state: Seed for the initialization and for ``"meddit"``.
        n_jobs: Number of threads, ``None`` runs sequentially.
        verbose: Log progress at INFO instead of DEBUG level.

    Attributes:
        medoid_indices_: Index of every cluster's medoid.
        cluster_centers_: The medoid vectors.
        labels_: Cluster of every training point.
        inertia_: Sum of (squared) distances to the assigned medoids.
        n_iter_: Number of assignment passes run.
        converged_: Whether the last pass left every assignment unchanged.
        distance_evaluations_: Number of distance computations performed.

    Examples:

        .. code-block:: python

            from vpcluster import KMedoids
            import numpy as np

            X = np.random.random_sample((500, 2))
            model = KMedoids(n_clusters=3, method="trikmeds", random_state=0).fit(X)
            model.medoid_indices_
    """

    def __init__(
        self,
        n_clusters: int = 8,
        method: str = "pam",
        metric: Optional[DistanceMetric] = None,
        init: Union[str, SeedSelection, np.ndarray] = SeedSelection.KPP,
        max_iter: int = 100,
        squared: bool = True,
        tolerance: float = DEFAULT_TOLERANCE,
        random_state=None,
        n_jobs: Optional[int] = None,
        verbose: bool = False,
    ):
        self.n_clusters = n_clusters
        self.method = method
        self.metric = metric
        self.init = init
        self.max_iter = max_iter
        self.squared = squared
        self.tolerance = tolerance
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.verbose = verbose

    def _log(self, msg, *args):
        (logger.info if self.verbose else logger.debug)(msg, *args)

    def _initial_medoids(self, X, metric, rs) -> np.ndarray:
        if isinstance(self.init, (str, SeedSelection)):
            return select_initial_points(
                X,
                self.n_clusters,
                metric=metric,
                method=self.init,
                random_state=rs,
                n_jobs=self.n_jobs,
            )
        medoids = np.asarray(self.init, dtype=np.intp)
        if medoids.shape != (self.n_clusters,):
            raise ValueError(
                f"init must hold {self.n_clusters} medoid indices, got shape {medoids.shape}"
            )
        return medoids

    def fit(self, X, y=None) -> KMedoids:
        """Fit the medoids to ``X`` of shape (n_samples, n_features)."""
        X = check_data(X)
        check_n_clusters(self.n_clusters, X.shape[0])
        if self.method not in METHODS:
            raise ValueError(f"Unknown method {self.method!r}, expected one of {METHODS}")
        metric = check_metric(self.metric)
        rs = check_random_state(self.random_state)

        self._log(
            "Fitting K-medoids (%s) with %d clusters on %d samples",
            self.method,
            self.n_clusters,
            X.shape[0],
        )
        medoids = self._initial_medoids(X, metric, rs)
        kwargs = dict(
            metric=metric, max_iter=self.max_iter, squared=self.squared, n_jobs=self.n_jobs
        )
        if self.method == "pam":
            result = pam(X, medoids, **kwargs)
        elif self.method == "trikmeds":
            result = trikmeds(X, medoids, **kwargs)
        else:
            result = meddit(
                X, medoids, tolerance=self.tolerance, random_state=rs, **kwargs
            )
        self._log(
            "%s after %d iterations, cost %.4f, %d distance evaluations",
            "Converged" if result.converged else "Stopped",
            result.n_iter,
            result.inertia,
            result.metadata["distance_evaluations"],
        )

        self.medoid_indices_ = result.medoids
        self.cluster_centers_ = result.centers
        self.labels_ = result.labels
        self.inertia_ = result.inertia
        self.n_iter_ = result.n_iter
        self.converged_ = result.converged
        self.distance_evaluations_ = result.metadata["distance_evaluations"]
        self.n_features_in_ = X.shape[1]
        return self

    def predict(self, X) -> np.ndarray:
        """Label of the nearest medoid for every row of ``X``."""
        check_is_fitted(self, "cluster_centers_")
        X = check_data(X)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, the model was fitted with {self.n_features_in_}"
            )
        metric = check_metric(self.metric)
        # Append the medoid vectors so that they can be addressed by index.
        data = np.vstack([X, self.cluster_centers_])
        medoids = np.arange(X.shape[0], data.shape[0])
        with ParallelRunner(self.n_jobs) as runner:
            labels, _ = assign_to_medoids(data, medoids, metric, runner)
        return labels[: X.shape[0]]

    def cluster(self, X, n_clusters: Optional[int] = None) -> np.ndarray:
        """Cluster ``X`` and return the labels. With ``n_clusters`` given, a
        copy of this estimator with that many clusters is fitted."""
        if n_clusters is None:
            return self.fit(X).labels_
        return clone(self).set_params(n_clusters=n_clusters).fit(X).labels_

    def get_cluster_info(self) -> dict:
        """Get information about the clustering results."""
        check_is_fitted(self, "cluster_centers_")
        sizes = np.bincount(self.labels_, minlength=self.n_clusters)
        return {
            "n_clusters": self.n_clusters,
            "method": self.method,
            "medoid_indices": self.medoid_indices_.tolist(),
            "cost": self.inertia_,
            "n_iterations": self.n_iter_,
            "converged": self.converged_,
            "cluster_sizes": dict(enumerate(sizes.tolist())),
            "min_cluster_size": int(np.min(sizes)),
            "max_cluster_size": int(np.max(sizes)),
            "distance_evaluations": self.distance_evaluations_,
        }
