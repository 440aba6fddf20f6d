import unittest

import numpy as np

from vpcluster.distance import ManhattanDistance
from vpcluster.seeding import SeedSelection, select_initial_points


def make_blobs(n_per_blob=25, sigma=0.1, seed=0):
    centers = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
    rng = np.random.RandomState(seed)
    X = np.vstack([c + sigma * rng.randn(n_per_blob, 2) for c in centers])
    return X, np.repeat(np.arange(4), n_per_blob)


class TestSeedSelection(unittest.TestCase):
    def setUp(self):
        self.X = np.random.RandomState(0).rand(300, 5)

    def _check_valid(self, seeds, n, k):
        self.assertEqual(len(seeds), k)
        self.assertEqual(len(np.unique(seeds)), k)
        self.assertTrue(np.all((seeds >= 0) & (seeds < n)))

    def test_all_methods_valid(self):
        for method in SeedSelection:
            for k in (1, 2, 10, 300):
                seeds = select_initial_points(self.X, k, method=method, random_state=1)
                self._check_valid(seeds, 300, k)

    def test_deterministic(self):
        for method in SeedSelection:
            first = select_initial_points(self.X, 12, method=method, random_state=42)
            second = select_initial_points(self.X, 12, method=method, random_state=42)
            np.testing.assert_array_equal(first, second)

    def test_sequential_equals_parallel(self):
        for method in SeedSelection:
            for metric in (None, ManhattanDistance()):
                sequential = select_initial_points(
                    self.X, 15, metric=metric, method=method, random_state=3
                )
                parallel = select_initial_points(
                    self.X, 15, metric=metric, method=method, random_state=3, n_jobs=8
                )
                np.testing.assert_array_equal(sequential, parallel)

    def test_string_methods(self):
        for name in ("k-means++", "kpp", "random", "farthest_first", "MEAN_QUANTILES"):
            seeds = select_initial_points(self.X, 4, method=name, random_state=0)
            self._check_valid(seeds, 300, 4)
        with self.assertRaises(ValueError):
            select_initial_points(self.X, 4, method="nope")

    def test_mean_quantiles_ignores_seed(self):
        a = select_initial_points(self.X, 6, method="mean-quantiles", random_state=0)
        b = select_initial_points(self.X, 6, method="mean-quantiles", random_state=99)
        np.testing.assert_array_equal(a, b)
        d = np.linalg.norm(self.X - self.X.mean(axis=0), axis=1)
        self.assertEqual(a[0], np.argmin(d))

    def test_spread_strategies_hit_every_blob(self):
        X, truth = make_blobs()
        for method in (SeedSelection.KPP, SeedSelection.FARTHEST_FIRST):
            for seed in range(5):
                seeds = select_initial_points(X, 4, method=method, random_state=seed)
                self.assertEqual(sorted(truth[seeds]), [0, 1, 2, 3])

    def test_degenerate_fill(self):
        X = np.zeros((20, 3))
        X[0] = 1.0
        for method in (SeedSelection.KPP, SeedSelection.FARTHEST_FIRST):
            seeds = select_initial_points(X, 8, method=method, random_state=0)
            self._check_valid(seeds, 20, 8)

    def test_invalid(self):
        with self.assertRaises(ValueError):
            select_initial_points(self.X, 301)
        with self.assertRaises(ValueError):
            select_initial_points(self.X, 0)
        with self.assertRaises(ValueError):
            select_initial_points(np.empty((0, 5)), 1)


if __name__ == "__main__":
    unittest.main()
