import unittest
from unittest import mock

import numpy as np

from vpcluster.base import ClusterFailureError
from vpcluster.parallel import ParallelRunner, chunk_ranges, effective_n_jobs


class TestParallel(unittest.TestCase):
    def test_chunk_ranges(self):
        self.assertEqual(chunk_ranges(10, 3), [(0, 4), (4, 7), (7, 10)])
        self.assertEqual(chunk_ranges(2, 8), [(0, 1), (1, 2)])
        self.assertEqual(chunk_ranges(5, 1), [(0, 5)])

    def test_effective_n_jobs(self):
        self.assertEqual(effective_n_jobs(None), 1)
        self.assertEqual(effective_n_jobs(4), 4)
        self.assertGreaterEqual(effective_n_jobs(-1), 1)

    def test_map_ranges_order(self):
        data = np.arange(1000)
        with ParallelRunner(n_jobs=4) as runner:
            self.assertTrue(runner.parallel)
            parts = runner.map_ranges(len(data), lambda s, e: data[s:e].copy())
        self.assertEqual(len(parts), 4)
        np.testing.assert_array_equal(np.concatenate(parts), data)

    def test_sequential(self):
        with ParallelRunner() as runner:
            self.assertFalse(runner.parallel)
            self.assertEqual(runner.map_ranges(5, lambda s, e: (s, e)), [(0, 5)])
            self.assertEqual(runner.map_items([1, 2, 3], lambda x: x * 2), [2, 4, 6])
        with ParallelRunner(n_jobs=3) as runner:
            self.assertEqual(runner.map_ranges(0, lambda s, e: (s, e)), [])

    def test_worker_errors_propagate(self):
        def fail(s, e):
            raise KeyError("boom")

        with ParallelRunner(n_jobs=2) as runner:
            with self.assertRaises(KeyError):
                runner.map_ranges(10, fail)

    def test_rejected_task(self):
        runner = ParallelRunner(n_jobs=2).__enter__()
        pool = runner._pool
        pool.shutdown()
        with self.assertRaises(ClusterFailureError):
            runner.map_ranges(10, lambda s, e: None)

    def test_cancelled_task(self):
        from concurrent.futures import CancelledError

        with ParallelRunner(n_jobs=2) as runner:
            with mock.patch(
                "concurrent.futures.Future.result", side_effect=CancelledError()
            ):
                with self.assertRaises(ClusterFailureError):
                    runner.map_ranges(10, lambda s, e: None)


if __name__ == "__main__":
    unittest.main()
