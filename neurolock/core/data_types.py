"""
Core data types for NeuroLock

This module defines the fundamental data structures used throughout the system
for representing raw recordings, feature vectors, template seals and
authentication results.
"""

import re
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

import numpy as np

from .config import MAX_USERNAME_BYTES, TEMPLATE_VERSION
from .errors import ValidationError
from .secure import wipe


class MentalTask(IntEnum):
    """Mental task performed while a trial is recorded"""
    EYES_CLOSED_REST = 0
    EYES_OPEN_REST = 1
    MENTAL_ARITHMETIC = 2
    MOTOR_IMAGERY = 3
    VISUAL_IMAGERY = 4

    @property
    def title(self) -> str:
        return _TASK_TITLES[self]

    @property
    def instructions(self) -> str:
        return _TASK_INSTRUCTIONS[self]


_TASK_TITLES = {
    MentalTask.EYES_CLOSED_REST: "Eyes Closed Resting State",
    MentalTask.EYES_OPEN_REST: "Eyes Open Resting State",
    MentalTask.MENTAL_ARITHMETIC: "Mental Arithmetic",
    MentalTask.MOTOR_IMAGERY: "Motor Imagery",
    MentalTask.VISUAL_IMAGERY: "Visual Imagery",
}

_TASK_INSTRUCTIONS = {
    MentalTask.EYES_CLOSED_REST: (
        "Sit comfortably, close your eyes, relax and breathe normally. "
        "Try to stay still."
    ),
    MentalTask.EYES_OPEN_REST: (
        "Sit comfortably, keep your eyes open and focus on a point in front of you. "
        "Relax and breathe normally."
    ),
    MentalTask.MENTAL_ARITHMETIC: (
        "Solve the problem in your head without speaking, "
        "e.g. count backwards from 100 by 7."
    ),
    MentalTask.MOTOR_IMAGERY: (
        "Imagine moving your right hand. Don't actually move it, "
        "just visualize the movement clearly."
    ),
    MentalTask.VISUAL_IMAGERY: (
        "Close your eyes and imagine a peaceful scene (beach, forest) "
        "as vividly as you can."
    ),
}

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def validate_username(username: str) -> str:
    """
    Check a username against the storage rules

    Usernames become file names, so they are restricted to a safe character
    set. Over-long names are rejected rather than truncated: two long names
    sharing a prefix must never collapse onto the same template.

    Returns:
        str: The username, unchanged

    Raises:
        ValidationError: If the name is empty, too long or has illegal characters
    """
    if not isinstance(username, str) or not username:
        raise ValidationError("Username must be a non-empty string")

    n_bytes = len(username.encode("utf-8"))
    if n_bytes > MAX_USERNAME_BYTES:
        raise ValidationError(
            f"Username is {n_bytes} bytes, maximum is {MAX_USERNAME_BYTES}")

    if not _USERNAME_RE.match(username) or username.startswith("."):
        raise ValidationError(f"Username contains illegal characters: {username!r}")

    return username


@dataclass(eq=False)
class RawSignal:
    """Container for a single raw EEG recording"""
    data: np.ndarray          # Shape: (n_channels, n_samples)
    fs: float                 # Sampling frequency
    timestamp: float = field(default_factory=time.time)
    task: MentalTask = MentalTask.EYES_CLOSED_REST

    @property
    def n_channels(self) -> int:
        return self.data.shape[0] if self.data.ndim == 2 else 0

    @property
    def n_samples(self) -> int:
        return self.data.shape[1] if self.data.ndim == 2 else 0

    def wipe(self) -> None:
        wipe(self.data)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False


@dataclass(eq=False)
class FeatureVector:
    """Band-power features: channel-major, band-minor, float32"""
    values: np.ndarray
    task: MentalTask = MentalTask.EYES_CLOSED_REST
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        self.values = np.ascontiguousarray(self.values, dtype=np.float32)
        if self.values.ndim != 1:
            raise ValidationError(
                f"Feature vector must be one-dimensional, got shape {self.values.shape}")

    def __len__(self) -> int:
        return self.values.shape[0]

    def copy(self) -> "FeatureVector":
        return FeatureVector(self.values.copy(), self.task, self.timestamp)

    def wipe(self) -> None:
        wipe(self.values)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False


@dataclass(eq=False)
class HashRecord:
    """Salted digest sealing a feature vector"""
    digest: bytearray
    salt: bytearray

    def __post_init__(self):
        if not isinstance(self.digest, bytearray):
            self.digest = bytearray(self.digest)
        if not isinstance(self.salt, bytearray):
            self.salt = bytearray(self.salt)

    def hexdigest(self) -> str:
        return self.digest.hex()

    def wipe(self) -> None:
        wipe(self.digest)
        wipe(self.salt)


@dataclass(eq=False)
class Template:
    """Persisted biometric reference for one user"""
    username: str
    features: FeatureVector
    seal: HashRecord
    task: MentalTask = MentalTask.EYES_CLOSED_REST
    created_at: int = field(default_factory=lambda: int(time.time()))
    last_used: int = field(default_factory=lambda: int(time.time()))
    version: int = TEMPLATE_VERSION

    def wipe(self) -> None:
        self.features.wipe()
        self.seal.wipe()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False


@dataclass
class AuthResult:
    """Outcome of one successful comparison"""
    accepted: bool
    score: float
    timestamp: float = field(default_factory=time.time)
    attempts: int = 1
    username: Optional[str] = None
