#!/usr/bin/env python3
"""
vpcluster examples
==================

Nearest neighbor search with the vantage-point tree and clustering with the
accelerated K-Means and K-Medoids algorithms.
"""

import logging
import time

import numpy as np

from vpcluster import (
    CosineDistance,
    KMeans,
    KMedoids,
    ManhattanDistance,
    VPTree,
    VectorArray,
    medoid,
    meddit_medoid,
)


def basic_search_example():
    """Basic k-NN and radius search"""
    print("=== VPTree basic search ===")

    dimension = 16
    num_points = 5000
    data = np.random.random((num_points, dimension))
    print(f"Created {num_points} random vectors of dimension {dimension}")

    index = VPTree(data, random_state=0)
    print(f"Built index with {len(index)} points")

    query = data[0]
    k = 10
    print(f"\nTop {k} nearest neighbors:")
    for i, (key, distance) in enumerate(index.search(query, k=k)):
        print(f"  {i+1}. index: {key}, distance: {distance:.6f}")

    within = index.search_range(query, radius=0.6)
    print(f"\n{len(within)} points within distance 0.6")


def metric_example():
    """Search under other metrics, checked against brute force"""
    print("\n=== Other metrics ===")

    np.random.seed(42)
    cluster1 = np.random.normal([0, 0, 1], 0.1, (100, 3))
    cluster2 = np.random.normal([2, 2, 1], 0.1, (100, 3))
    data = np.vstack([cluster1, cluster2])

    for metric in (ManhattanDistance(), CosineDistance()):
        index = VPTree(data, metric=metric, random_state=0)
        brute = VectorArray(data, metric=metric)
        query = np.array([1.9, 2.1, 1.0])
        found = [key for key, _ in index.search(query, k=5)]
        expected = [key for key, _ in brute.search(query, k=5)]
        print(f"{metric!r}: {found} (brute force agrees: {found == expected})")


def dynamic_insert_example():
    """Growing an index one point at a time"""
    print("\n=== Incremental insertion ===")

    data = np.random.random((2000, 8))
    index = VPTree(random_state=0)
    for vector in data:
        index.insert(vector)
    print(f"Current index size: {len(index)}")

    new_key = index.insert(np.full(8, 0.5))
    neighbors = index.search(np.full(8, 0.5), k=3)
    print(f"Inserted point {new_key}, nearest: {neighbors[0]}")


def kmeans_example():
    """Hamerly vs Lloyd K-Means"""
    print("\n=== K-Means ===")

    rng = np.random.RandomState(0)
    centers = rng.uniform(-10, 10, size=(20, 5))
    data = centers[rng.randint(20, size=20000)] + rng.normal(size=(20000, 5))

    for algorithm in ("lloyd", "hamerly"):
        start_time = time.time()
        model = KMeans(n_clusters=20, algorithm=algorithm, random_state=1, n_jobs=4)
        model.fit(data)
        elapsed = time.time() - start_time
        print(f"\n{algorithm}:")
        print(f"  iterations: {model.n_iter_}, inertia: {model.inertia_:.2f}")
        print(f"  distance evaluations: {model.distance_evaluations_}")
        print(f"  time: {elapsed:.3f}s")

    info = model.get_cluster_info()
    print(f"\nCluster sizes: min {info['min_cluster_size']}, max {info['max_cluster_size']}")


def kmedoids_example():
    """PAM, TRIKMEDS and MEDDIT"""
    print("\n=== K-Medoids ===")

    rng = np.random.RandomState(1)
    data = np.vstack([rng.normal(c, 0.5, (500, 2)) for c in ([0, 0], [5, 0], [0, 5])])

    for method in ("pam", "trikmeds", "meddit"):
        start_time = time.time()
        model = KMedoids(n_clusters=3, method=method, squared=False, random_state=0)
        model.fit(data)
        elapsed = time.time() - start_time
        print(f"\n{method}:")
        print(f"  medoids: {sorted(model.medoid_indices_.tolist())}")
        print(f"  cost: {model.inertia_:.3f}, evaluations: {model.distance_evaluations_}")
        print(f"  time: {elapsed:.3f}s")

    exact = medoid(data)
    estimate = meddit_medoid(data, random_state=0)
    print(f"\nMedoid of the whole set: exact {exact}, MEDDIT estimate {estimate}")


def main():
    """Run all examples"""
    logging.basicConfig(level=logging.WARNING)
    print("vpcluster demo")
    print("=" * 50)

    basic_search_example()
    metric_example()
    dynamic_insert_example()
    kmeans_example()
    kmedoids_example()

    print("\n" + "=" * 50)
    print("All examples finished.")


if __name__ == "__main__":
    main()
