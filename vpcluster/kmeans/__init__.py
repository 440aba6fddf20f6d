"""
K-means clustering: Hamerly's accelerated iteration and Lloyd's baseline.
"""

from .kmeans import KMeans
from .hamerly import hamerly_kmeans
from .lloyd import assign_nearest, compute_centers, lloyd_kmeans

__all__ = ["KMeans", "hamerly_kmeans", "lloyd_kmeans", "assign_nearest", "compute_centers"]
