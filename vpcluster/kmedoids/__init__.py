"""
K-Medoids clustering: PAM, TRIKMEDS and MEDDIT.
"""

from .kmedoids import KMedoids
from .meddit import meddit, meddit_medoid
from .pam import medoid, pam
from .trikmeds import trikmeds

__all__ = ["KMedoids", "pam", "trikmeds", "meddit", "medoid", "meddit_medoid"]
