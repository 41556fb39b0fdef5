"""
Template matching

Scores a fresh feature vector against a stored template with cosine similarity
and turns the score into an accept/reject decision. An undefined comparison
(zero-magnitude or mismatched vectors) is reported as ``None`` rather than an
exception; a low score is an ordinary rejection.
"""

import logging
import time
from typing import Optional

import numpy as np

from ..core.config import SIMILARITY_THRESHOLD, MIN_MAGNITUDE
from ..core.data_types import AuthResult, FeatureVector


def cosine_similarity(a: FeatureVector, b: FeatureVector) -> Optional[float]:
    """
    Cosine similarity clamped to [0, 1]

    Args:
        a: First feature vector
        b: Second feature vector

    Returns:
        float: dot(a, b) / (|a| * |b|), clamped; None if lengths differ or
        either magnitude is below MIN_MAGNITUDE
    """
    if a is None or b is None:
        return None

    if len(a) != len(b):
        logging.error(f"Feature vectors have different sizes: {len(a)} vs {len(b)}")
        return None

    va = a.values.astype(np.float64)
    vb = b.values.astype(np.float64)
    try:
        mag_a = float(np.linalg.norm(va))
        mag_b = float(np.linalg.norm(vb))
        if mag_a < MIN_MAGNITUDE or mag_b < MIN_MAGNITUDE:
            logging.error("Zero magnitude vector")
            return None

        similarity = float(np.dot(va, vb)) / (mag_a * mag_b)
    finally:
        va.fill(0)
        vb.fill(0)

    return min(max(similarity, 0.0), 1.0)


def match(trial: FeatureVector, stored: FeatureVector,
          threshold: float = SIMILARITY_THRESHOLD) -> Optional[AuthResult]:
    """
    Compare a trial against a stored template vector

    Returns:
        AuthResult: Always, when the comparison is defined; ``accepted`` is
        True iff the score reaches the threshold
        None: When cosine similarity is undefined for these vectors
    """
    score = cosine_similarity(trial, stored)
    if score is None:
        return None

    accepted = score >= threshold
    if accepted:
        logging.info(f"Match accepted (similarity: {score:.3f})")
    else:
        logging.warning(f"Match rejected (similarity: {score:.3f} < {threshold:.3f})")

    return AuthResult(accepted=accepted, score=score, timestamp=time.time(), attempts=1)
