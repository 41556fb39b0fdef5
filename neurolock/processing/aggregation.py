"""
Enrolment template aggregation

Repeated enrolment trials are averaged element by element into one template
vector, which reduces single-session noise.
"""

import logging
import time
from typing import Sequence

import numpy as np

from ..core.data_types import FeatureVector
from ..core.errors import ValidationError
from ..core.secure import wiping


def aggregate(vectors: Sequence[FeatureVector]) -> FeatureVector:
    """
    Average multiple feature vectors

    Args:
        vectors: One or more feature vectors of equal length

    Returns:
        FeatureVector: Elementwise arithmetic mean; task label of the first vector

    Raises:
        ValidationError: If no vectors are given or their lengths differ
    """
    if not vectors:
        raise ValidationError("Cannot aggregate zero feature vectors")

    size = len(vectors[0])
    for idx, vector in enumerate(vectors[1:], start=1):
        if len(vector) != size:
            raise ValidationError(
                f"Feature vector {idx} has {len(vector)} features, expected {size}")

    total = np.zeros(size, dtype=np.float64)
    with wiping(total):
        for vector in vectors:
            total += vector.values
        total /= len(vectors)
        mean = total.astype(np.float32)

    logging.info(f"Averaged {len(vectors)} feature vectors")
    return FeatureVector(mean, task=vectors[0].task, timestamp=time.time())


def blend(stored: FeatureVector, trial: FeatureVector, rate: float) -> FeatureVector:
    """
    Exponential update of a stored template towards a new accepted trial

    new = (1 - rate) * stored + rate * trial
    """
    if len(stored) != len(trial):
        raise ValidationError(
            f"Cannot blend vectors of length {len(stored)} and {len(trial)}")
    if not 0.0 <= rate <= 1.0:
        raise ValidationError(f"Blend rate must be in [0, 1], got {rate}")

    mixed = (1.0 - rate) * stored.values.astype(np.float64) + rate * trial.values.astype(np.float64)
    with wiping(mixed):
        values = mixed.astype(np.float32)
    return FeatureVector(values, task=stored.task, timestamp=time.time())
