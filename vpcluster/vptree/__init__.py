"""
Exact metric-space nearest neighbor search with vantage-point trees.
"""

from .vptree import VPTree, VantagePointSelection
from .brute import VectorArray

__all__ = ["VPTree", "VantagePointSelection", "VectorArray"]
