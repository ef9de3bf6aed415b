"""
Fingerprint comparison.

Both metrics return a distance in [0, 1] where 0 means identical, so the
threshold direction in DetectionConfig decides what counts as a match.

Single Responsibility: Fingerprint pair -> distance.
"""
from typing import Any, Dict, Optional

import numpy as np

from logger import get_logger

log = get_logger(__name__)

METRIC_EUCLIDEAN = "euclidean"
METRIC_COSINE = "cosine"

# Returned for fingerprints that cannot be compared
MAX_DISTANCE = 1.0

# Largest possible distance between two unit vectors
_SQRT2 = float(np.sqrt(2.0))


def euclidean_distance(f1: np.ndarray, f2: np.ndarray) -> float:
    """``min(1, ||f1 - f2|| / sqrt(2))`` for unit-normalised fingerprints."""
    return min(1.0, float(np.linalg.norm(f1 - f2)) / _SQRT2)


def cosine_distance(f1: np.ndarray, f2: np.ndarray) -> float:
    """``1 - clamp(dot(f1, f2), 0, 1)``; anti-correlation scores as no similarity."""
    return 1.0 - min(1.0, max(0.0, float(np.dot(f1, f2))))


_METRICS = {
    METRIC_EUCLIDEAN: euclidean_distance,
    METRIC_COSINE: cosine_distance,
}


class SimilarityScorer:
    """Scores live fingerprints against a reference with one fixed metric."""

    def __init__(self, metric: str = METRIC_EUCLIDEAN):
        if metric not in _METRICS:
            raise ValueError(f"Unknown metric: {metric}")
        self.metric = metric
        self._distance = _METRICS[metric]

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SimilarityScorer":
        return cls(config["analysis"]["metric"])

    def compare(self, f1: Optional[np.ndarray], f2: Optional[np.ndarray]) -> float:
        """
        Distance between two fingerprints.

        Never raises: missing or differently sized fingerprints and
        non-finite results all score ``MAX_DISTANCE``.
        """
        if f1 is None or f2 is None:
            return MAX_DISTANCE
        f1 = np.asarray(f1, dtype=np.float64)
        f2 = np.asarray(f2, dtype=np.float64)
        if f1.shape != f2.shape:
            log.debug("Fingerprint length mismatch: %s vs %s", f1.shape, f2.shape)
            return MAX_DISTANCE

        distance = self._distance(f1, f2)
        if not np.isfinite(distance):
            return MAX_DISTANCE
        return distance
