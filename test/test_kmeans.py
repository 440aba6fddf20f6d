import logging
import unittest

import numpy as np
from sklearn.exceptions import NotFittedError
from sklearn.metrics import adjusted_rand_score

from vpcluster import Clusterer, ClusteringResult
from vpcluster.distance import ManhattanDistance, SquaredEuclideanDistance
from vpcluster.kmeans import KMeans, compute_centers, hamerly_kmeans, lloyd_kmeans
from vpcluster.parallel import ParallelRunner
from vpcluster.seeding import SeedSelection, select_initial_points


def make_blobs(n_per_blob=25, sigma=0.1, seed=0):
    centers = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
    rng = np.random.RandomState(seed)
    X = np.vstack([c + sigma * rng.randn(n_per_blob, 2) for c in centers])
    return X, np.repeat(np.arange(4), n_per_blob)


def make_mixture(n=1500, dim=4, n_centers=10, seed=0):
    rng = np.random.RandomState(seed)
    centers = rng.uniform(-5, 5, size=(n_centers, dim))
    X = centers[rng.randint(n_centers, size=n)] + rng.normal(size=(n, dim))
    return X


class TestHamerlyEqualsLloyd(unittest.TestCase):
    def _assert_same(self, a: ClusteringResult, b: ClusteringResult):
        np.testing.assert_array_equal(a.labels, b.labels)
        np.testing.assert_allclose(a.centers, b.centers, rtol=1e-10, atol=1e-12)
        self.assertEqual(a.n_iter, b.n_iter)
        self.assertEqual(a.converged, b.converged)
        self.assertAlmostEqual(a.inertia, b.inertia, delta=1e-8 * max(1.0, a.inertia))

    def test_same_result_from_same_seeds(self):
        X = make_mixture()
        for seed in range(4):
            for k in (1, 3, 10, 25):
                seeds = select_initial_points(X, k, random_state=seed)
                lloyd = lloyd_kmeans(X, X[seeds])
                hamerly = hamerly_kmeans(X, X[seeds])
                self._assert_same(hamerly, lloyd)

    def test_same_result_with_threads(self):
        X = make_mixture(seed=1)
        seeds = select_initial_points(X, 12, random_state=5)
        for n_jobs in (None, 3, 8):
            lloyd = lloyd_kmeans(X, X[seeds], n_jobs=n_jobs)
            hamerly = hamerly_kmeans(X, X[seeds], n_jobs=n_jobs)
            self._assert_same(hamerly, lloyd)

    def test_same_result_other_metric(self):
        X = make_mixture(n=600, seed=2)
        seeds = select_initial_points(X, 6, metric=ManhattanDistance(), random_state=0)
        lloyd = lloyd_kmeans(X, X[seeds], metric=ManhattanDistance())
        hamerly = hamerly_kmeans(X, X[seeds], metric=ManhattanDistance())
        self._assert_same(hamerly, lloyd)

    def test_max_iter_cap(self):
        X = make_mixture(seed=3)
        seeds = select_initial_points(X, 10, method="random", random_state=0)
        for max_iter in (1, 2, 3):
            lloyd = lloyd_kmeans(X, X[seeds], max_iter=max_iter)
            hamerly = hamerly_kmeans(X, X[seeds], max_iter=max_iter)
            self._assert_same(hamerly, lloyd)
            self.assertEqual(hamerly.n_iter, max_iter)
            self.assertFalse(hamerly.converged)
            self.assertGreater(hamerly.n_changed, 0)
        # A single pass only assigns; the initial centers are reported.
        np.testing.assert_array_equal(
            lloyd_kmeans(X, X[seeds], max_iter=1).centers, X[seeds]
        )

    def test_sample_weight(self):
        X = make_mixture(n=800, seed=4)
        weights = np.random.RandomState(0).uniform(0.1, 3.0, size=len(X))
        seeds = select_initial_points(X, 7, random_state=2)
        lloyd = lloyd_kmeans(X, X[seeds], sample_weight=weights)
        hamerly = hamerly_kmeans(X, X[seeds], sample_weight=weights)
        self._assert_same(hamerly, lloyd)
        for c in range(7):
            members = lloyd.labels == c
            expected = np.average(X[members], axis=0, weights=weights[members])
            np.testing.assert_allclose(lloyd.centers[c], expected, atol=1e-10)

    def test_fewer_distance_evaluations(self):
        X = make_mixture(n=3000, seed=5)
        seeds = select_initial_points(X, 10, random_state=0)
        lloyd = lloyd_kmeans(X, X[seeds])
        hamerly = hamerly_kmeans(X, X[seeds])
        self.assertGreater(lloyd.n_iter, 2)
        self.assertLess(
            hamerly.metadata["distance_evaluations"],
            lloyd.metadata["distance_evaluations"],
        )

    def test_converged_result(self):
        X, truth = make_blobs()
        result = hamerly_kmeans(X, X[[0, 25, 50, 75]])
        self.assertTrue(result.converged)
        self.assertEqual(result.n_changed, 0)
        np.testing.assert_array_equal(result.labels, truth)
        self.assertIsNone(result.medoids)

    def test_empty_cluster_keeps_center(self):
        X = np.array([[0.0], [0.1], [0.2], [10.0]])
        centers = np.array([[0.1], [10.0], [50.0]])
        for func in (lloyd_kmeans, hamerly_kmeans):
            result = func(X, centers)
            np.testing.assert_array_equal(result.labels, [0, 0, 0, 1])
            self.assertEqual(result.centers[2, 0], 50.0)

    def test_zero_weight_cluster_keeps_center(self):
        X = np.array([[0.0], [0.2], [5.0], [10.0]])
        weights = np.array([1.0, 1.0, 0.0, 1.0])
        centers = np.array([[0.0], [5.0], [10.0]])
        for func in (lloyd_kmeans, hamerly_kmeans):
            result = func(X, centers, sample_weight=weights)
            np.testing.assert_array_equal(result.labels, [0, 0, 1, 2])
            np.testing.assert_allclose(result.centers[:, 0], [0.1, 5.0, 10.0])
            self.assertTrue(result.converged)

    def test_running_sums_match_recompute(self):
        X = make_mixture(n=2000, seed=6)
        weights = np.random.RandomState(1).uniform(0.0, 2.0, size=len(X))
        weights[::7] = 0.0
        seeds = select_initial_points(X, 20, method="random", random_state=3)
        for n_jobs in (None, 4):
            lloyd = lloyd_kmeans(X, X[seeds], sample_weight=weights, n_jobs=n_jobs)
            hamerly = hamerly_kmeans(X, X[seeds], sample_weight=weights, n_jobs=n_jobs)
            self._assert_same(hamerly, lloyd)
            self.assertTrue(hamerly.converged)
            # After convergence the centers are the means of the final labels.
            with ParallelRunner(n_jobs) as runner:
                expected = compute_centers(
                    X, hamerly.labels, weights, hamerly.centers, runner
                )
            np.testing.assert_allclose(hamerly.centers, expected, rtol=1e-10, atol=1e-12)

    def test_invalid(self):
        X = make_mixture(n=50)
        with self.assertRaises(ValueError):
            hamerly_kmeans(X, X[:3], metric=SquaredEuclideanDistance())
        with self.assertRaises(ValueError):
            lloyd_kmeans(X, np.zeros((3, 2)))
        with self.assertRaises(ValueError):
            lloyd_kmeans(X, X[:3], max_iter=0)
        with self.assertRaises(ValueError):
            lloyd_kmeans(X, X[:3], sample_weight=np.ones(10))
        with self.assertRaises(ValueError):
            hamerly_kmeans(X[:2], X[:3])


class TestKMeans(unittest.TestCase):
    def test_four_blobs_any_thread_count(self):
        X, truth = make_blobs()
        for init in (
            SeedSelection.KPP,
            SeedSelection.FARTHEST_FIRST,
            SeedSelection.MEAN_QUANTILES,
        ):
            labels = {}
            for n_jobs in (1, 8):
                model = KMeans(n_clusters=4, init=init, random_state=0, n_jobs=n_jobs)
                labels[n_jobs] = model.fit_predict(X)
                self.assertEqual(len(np.unique(labels[n_jobs])), 4)
                self.assertEqual(sorted(np.bincount(labels[n_jobs])), [25, 25, 25, 25])
                self.assertEqual(adjusted_rand_score(truth, labels[n_jobs]), 1.0)
                self.assertTrue(model.converged_)
            np.testing.assert_array_equal(labels[1], labels[8])

    def test_random_init_local_optimum(self):
        # Random seeds may put two centers in one blob. The run still
        # converges, just not to a better partition than k-means++ finds.
        X, truth = make_blobs()
        best = KMeans(n_clusters=4, random_state=0).fit(X)
        for seed in range(5):
            model = KMeans(n_clusters=4, init="random", random_state=seed).fit(X)
            self.assertTrue(model.converged_)
            self.assertEqual(model.labels_.shape, truth.shape)
            self.assertGreaterEqual(model.inertia_, best.inertia_ * (1 - 1e-9))

    def test_fit_predict(self):
        X, truth = make_blobs(seed=1)
        model = KMeans(n_clusters=4, random_state=3).fit(X)
        self.assertEqual(model.cluster_centers_.shape, (4, 2))
        self.assertEqual(model.n_features_in_, 2)
        self.assertGreater(model.distance_evaluations_, 0)
        np.testing.assert_array_equal(model.predict(X), model.labels_)
        self.assertEqual(adjusted_rand_score(truth, model.labels_), 1.0)
        # Tight blobs: every point is within a few sigma of its center.
        self.assertLess(model.inertia_, 100 * 4 * 0.1 ** 2 * 3)

    def test_lloyd_estimator_matches(self):
        X = make_mixture(n=500, seed=6)
        hamerly = KMeans(n_clusters=6, random_state=0).fit(X)
        lloyd = KMeans(n_clusters=6, algorithm="lloyd", random_state=0).fit(X)
        np.testing.assert_array_equal(hamerly.labels_, lloyd.labels_)
        self.assertEqual(hamerly.n_iter_, lloyd.n_iter_)
        self.assertLess(hamerly.distance_evaluations_, lloyd.distance_evaluations_)

    def test_init_array(self):
        X, truth = make_blobs()
        init = np.array([[1.0, 1.0], [9.0, 1.0], [1.0, 9.0], [9.0, 9.0]])
        model = KMeans(n_clusters=4, init=init).fit(X)
        np.testing.assert_array_equal(model.labels_, truth)
        with self.assertRaises(ValueError):
            KMeans(n_clusters=3, init=init).fit(X)

    def test_cluster(self):
        X, _ = make_blobs()
        model = KMeans(n_clusters=2, random_state=0)
        self.assertIsInstance(model, Clusterer)
        labels = model.cluster(X, n_clusters=4)
        self.assertEqual(len(np.unique(labels)), 4)
        self.assertFalse(hasattr(model, "labels_"))
        self.assertEqual(len(np.unique(model.cluster(X))), 2)

    def test_get_cluster_info(self):
        X, _ = make_blobs()
        model = KMeans(n_clusters=4, random_state=0).fit(X)
        info = model.get_cluster_info()
        self.assertEqual(info["n_clusters"], 4)
        self.assertEqual(info["cluster_sizes"], {0: 25, 1: 25, 2: 25, 3: 25})
        self.assertEqual(info["avg_cluster_size"], 25.0)
        self.assertEqual(info["std_cluster_size"], 0.0)
        self.assertTrue(info["converged"])

    def test_verbose_logs_info(self):
        X, _ = make_blobs()
        with self.assertLogs("vpcluster.kmeans.kmeans", level=logging.INFO) as logs:
            KMeans(n_clusters=4, random_state=0, verbose=True).fit(X)
        self.assertTrue(any("Converged" in line for line in logs.output))

    def test_errors(self):
        X, _ = make_blobs()
        with self.assertRaises(NotFittedError):
            KMeans().predict(X)
        with self.assertRaises(NotFittedError):
            KMeans().get_cluster_info()
        with self.assertRaises(ValueError):
            KMeans(n_clusters=101).fit(X)
        with self.assertRaises(ValueError):
            KMeans(n_clusters=4, algorithm="elkan").fit(X)
        with self.assertRaises(ValueError):
            KMeans(n_clusters=4, metric=SquaredEuclideanDistance()).fit(X)
        with self.assertRaises(ValueError):
            KMeans(n_clusters=4, init="nope").fit(X)
        model = KMeans(n_clusters=4, random_state=0).fit(X)
        with self.assertRaises(ValueError):
            model.predict(np.zeros((3, 5)))


if __name__ == "__main__":
    unittest.main()
