import unittest

import numpy as np

from vpcluster.distance import (
    ChebyshevDistance,
    CosineDistance,
    EuclideanDistance,
    ManhattanDistance,
    MinkowskiDistance,
    SquaredEuclideanDistance,
    check_metric,
)


class TestDistanceMetrics(unittest.TestCase):
    def setUp(self):
        rng = np.random.RandomState(3)
        self.A = rng.normal(size=(7, 4))
        self.B = rng.normal(size=(5, 4))

    def _check_against_loop(self, metric, func):
        D = metric.pairwise(self.A, self.B)
        self.assertEqual(D.shape, (7, 5))
        for i, a in enumerate(self.A):
            for j, b in enumerate(self.B):
                self.assertAlmostEqual(D[i, j], func(a, b), places=10)
                self.assertAlmostEqual(metric.dist(a, b), func(a, b), places=10)
        paired = metric.paired(self.A[:5], self.B)
        for i in range(5):
            self.assertAlmostEqual(paired[i], func(self.A[i], self.B[i]), places=10)

    def test_euclidean(self):
        self._check_against_loop(EuclideanDistance(), lambda a, b: np.linalg.norm(a - b))

    def test_squared_euclidean(self):
        self._check_against_loop(
            SquaredEuclideanDistance(), lambda a, b: np.sum((a - b) ** 2)
        )

    def test_manhattan(self):
        self._check_against_loop(ManhattanDistance(), lambda a, b: np.sum(np.abs(a - b)))

    def test_chebyshev(self):
        self._check_against_loop(ChebyshevDistance(), lambda a, b: np.max(np.abs(a - b)))

    def test_minkowski(self):
        self._check_against_loop(
            MinkowskiDistance(3), lambda a, b: np.sum(np.abs(a - b) ** 3) ** (1 / 3)
        )

    def test_cosine(self):
        def angular(a, b):
            cos = np.dot(a, b) / np.linalg.norm(a) / np.linalg.norm(b)
            return np.sqrt(0.5 * (1 - cos))

        self._check_against_loop(CosineDistance(), angular)

    def test_cosine_zero_vector(self):
        metric = CosineDistance()
        self.assertAlmostEqual(metric.dist(np.zeros(3), np.ones(3)), np.sqrt(0.5))
        self.assertAlmostEqual(metric.dist(np.ones(3), 2 * np.ones(3)), 0.0, places=7)

    def test_euclidean_cache(self):
        metric = EuclideanDistance()
        X = np.vstack([self.A, self.B])
        cache = metric.get_acceleration_cache(X)
        np.testing.assert_allclose(cache, np.sum(X * X, axis=1))
        q = self.B[0] + 0.5
        q_info = metric.get_query_info(q)
        with_cache = metric.dist_query(np.arange(len(X)), q, X, cache, q_info)
        without = metric.dist_query(np.arange(len(X)), q, X)
        np.testing.assert_allclose(with_cache, without, atol=1e-9)
        np.testing.assert_allclose(
            metric.dist_cross([1, 2], self.B, X, cache),
            metric.pairwise(X[[1, 2]], self.B),
            atol=1e-9,
        )
        self.assertAlmostEqual(
            metric.dist_index(0, 3, X, cache), np.linalg.norm(X[0] - X[3]), places=9
        )

    def test_euclidean_cache_large_offset(self):
        metric = EuclideanDistance()
        X = 1e5 + np.random.RandomState(4).rand(500, 2)
        cache = metric.get_acceleration_cache(X)
        Q = X[:20] + 1e-3
        exact = metric.pairwise(X, Q)
        np.testing.assert_allclose(
            metric.dist_cross(slice(None), Q, X, cache), exact, rtol=1e-9
        )
        np.testing.assert_allclose(
            metric.paired(X[:20], Q, cache[:20], metric.get_query_info(Q)),
            np.diag(exact[:20]),
            rtol=1e-9,
        )
        self.assertEqual(metric.dist_index(7, 7, X, cache), 0.0)

    def test_properties(self):
        self.assertTrue(EuclideanDistance().is_valid_metric())
        self.assertTrue(EuclideanDistance().supports_acceleration())
        self.assertFalse(SquaredEuclideanDistance().is_subadditive())
        self.assertFalse(SquaredEuclideanDistance().is_valid_metric())
        self.assertFalse(MinkowskiDistance(0.5).is_subadditive())
        self.assertTrue(MinkowskiDistance(1).is_subadditive())
        self.assertFalse(ManhattanDistance().supports_acceleration())
        self.assertIsNone(ManhattanDistance().get_acceleration_cache(self.A))
        self.assertEqual(CosineDistance().metric_bound(), 1.0)
        self.assertEqual(MinkowskiDistance(3), MinkowskiDistance(3))
        self.assertNotEqual(MinkowskiDistance(3), MinkowskiDistance(2))

    def test_large_block(self):
        rng = np.random.RandomState(0)
        A = rng.normal(size=(3000, 8))
        B = rng.normal(size=(400, 8))
        D = EuclideanDistance().pairwise(A, B)
        self.assertAlmostEqual(D[2999, 399], np.linalg.norm(A[2999] - B[399]))

    def test_invalid(self):
        with self.assertRaises(ValueError):
            MinkowskiDistance(0)
        with self.assertRaises(TypeError):
            check_metric(lambda a, b: 0.0)
        self.assertIsInstance(check_metric(None), EuclideanDistance)


if __name__ == "__main__":
    unittest.main()
