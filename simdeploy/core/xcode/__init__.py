"""Xcode container discovery, scheme resolution and project detection."""

from .container import ContainerDiscovery, pick_best_candidate, scan_candidates, score_candidate
from .detection import ProjectDetector
from .schemes import SchemeResolver, choose_by_score, is_test_scheme, pick_default_scheme, score_scheme

__all__ = [
    "ContainerDiscovery",
    "ProjectDetector",
    "SchemeResolver",
    "choose_by_score",
    "is_test_scheme",
    "pick_best_candidate",
    "pick_default_scheme",
    "scan_candidates",
    "score_candidate",
    "score_scheme",
]
