"""
Configuration constants for NeuroLock

This module contains all configuration parameters that users may need to customize
for their specific hardware setup, matching policy and template storage.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import ValidationError

# ============================================================================
# HARDWARE CONFIGURATION - User should edit these values for their setup
# ============================================================================

# Capture Configuration
SAMPLING_RATE = 256               # Hz
NUM_CHANNELS = 8                  # Number of EEG channels
CAPTURE_DURATION = 5.0            # Seconds per trial
SERIAL_PORT = "/dev/ttyUSB0"      # Serial port for BrainFlow boards (Windows: COMx)
DEFAULT_DEVICE = "synthetic"      # "synthetic" or "brainflow"

# Filtering Configuration
BANDPASS = (0.5, 100.0)           # Band-pass filter range (Hz), covers the gamma band
NOTCH_HZ = 50.0                   # Power line frequency (50 Hz for EU, 60 Hz for US)
NOTCH_Q = 30.0                    # Notch quality factor
FILTER_ORDER = 4                  # Butterworth order
ARTIFACT_ZSCORE_THRESH = 5.0      # Samples beyond this z-score are clamped
MIN_CHANNEL_VAR = 1e-6            # Channels with lower variance are treated as flat

# Feature Extraction Configuration
WINDOW_SIZE = 256                 # FFT window (samples)

# Frequency Bands (Hz), in feature-vector order
FREQ_BANDS: Dict[str, Tuple[float, float]] = {
    "delta": (0.5, 4.0),
    "theta": (4.0, 8.0),
    "alpha": (8.0, 13.0),
    "beta": (13.0, 30.0),
    "gamma": (30.0, 100.0),
}
NUM_BANDS = len(FREQ_BANDS)
FEATURE_VECTOR_SIZE = NUM_CHANNELS * NUM_BANDS

# Enrolment / Matching Configuration
NUM_ENROLMENT_TRIALS = 3
REST_BETWEEN_TRIALS = 10.0        # Seconds of rest between enrolment trials on real devices
SIMILARITY_THRESHOLD = 0.85       # Cosine similarity threshold (0-1)
MIN_MAGNITUDE = 1e-6              # Vectors below this norm cannot be compared
MAX_AUTH_ATTEMPTS = 3
ADAPT_RATE = 0.0                  # 0 disables adaptive template updates

# Hashing Configuration
SALT_LENGTH = 32                  # bytes
HASH_PRIMITIVE = "sha256"

# Template Storage
TEMPLATE_DIR = "templates"
TEMPLATE_EXTENSION = ".nlt"       # NeuroLock Template
LOCK_EXTENSION = ".lock"
TEMPLATE_VERSION = 1
MAX_USERNAME_BYTES = 64
MAX_FEATURES = 4096
MAX_DIGEST_BYTES = 64
MAX_SALT_BYTES = 64


@dataclass
class EngineConfig:
    """
    Runtime configuration for the enrolment/authentication engine

    Every component reads its parameters from here instead of from module
    globals, so two engines with different settings can coexist in one
    process (e.g. tests using temporary template directories).

    Signal parameters:
    - fs: Expected sampling rate of captured trials (Hz)
    - n_channels: Channels per trial; fixes the feature-vector length
    - window: FFT window length in samples

    Preprocessing:
    - stages: Ordered preprocessing stage names (see processing.preprocessor.Stage)
    - bandpass / notch_hz / artifact_z: Filter parameters

    Matching and storage:
    - threshold: Minimum cosine similarity to accept
    - hash_primitive: Name of the digest used for the template seal
    - template_dir: Directory holding one .nlt file per user
    """

    fs: float = SAMPLING_RATE
    n_channels: int = NUM_CHANNELS
    window: int = WINDOW_SIZE
    freq_bands: Dict[str, Tuple[float, float]] = None

    stages: Tuple[str, ...] = None
    bandpass: Tuple[float, float] = BANDPASS
    notch_hz: float = NOTCH_HZ
    artifact_z: float = ARTIFACT_ZSCORE_THRESH
    feature_kind: str = "band_power"

    n_trials: int = NUM_ENROLMENT_TRIALS
    capture_duration: float = CAPTURE_DURATION
    threshold: float = SIMILARITY_THRESHOLD
    max_attempts: int = MAX_AUTH_ATTEMPTS
    adapt_rate: float = ADAPT_RATE

    hash_primitive: str = HASH_PRIMITIVE
    salt_length: int = SALT_LENGTH

    template_dir: str = TEMPLATE_DIR
    n_jobs: int = 1
    device: str = DEFAULT_DEVICE
    serial_port: Optional[str] = SERIAL_PORT

    def __post_init__(self):
        if self.freq_bands is None:
            self.freq_bands = dict(FREQ_BANDS)
        if self.stages is None:
            self.stages = ("bandpass", "notch", "artifact", "normalize")
        else:
            self.stages = tuple(self.stages)

    @property
    def feature_size(self) -> int:
        return self.n_channels * len(self.freq_bands)


def validate_config(config: EngineConfig) -> None:
    """
    Validate configuration parameters for common mistakes

    Args:
        config: Configuration to validate

    Raises:
        ValidationError: If configuration parameters are invalid
    """
    if config.fs <= 0:
        raise ValidationError(f"Sampling rate must be positive, got {config.fs}")

    if config.n_channels <= 0:
        raise ValidationError(f"Channel count must be positive, got {config.n_channels}")

    if config.window < 2:
        raise ValidationError(f"FFT window must be at least 2 samples, got {config.window}")

    low, high = config.bandpass
    if not 0 < low < high:
        raise ValidationError(f"Band-pass low ({low}) must be positive and < high ({high})")

    for name, (band_low, band_high) in config.freq_bands.items():
        if band_low < 0 or band_low >= band_high:
            raise ValidationError(f"Invalid frequency band {name}: ({band_low}, {band_high})")

    if config.feature_size > MAX_FEATURES:
        raise ValidationError(f"Feature vector of {config.feature_size} exceeds {MAX_FEATURES}")

    if not 0.0 <= config.threshold <= 1.0:
        raise ValidationError(f"Similarity threshold must be in [0, 1], got {config.threshold}")

    if config.n_trials < 1:
        raise ValidationError(f"Enrolment needs at least one trial, got {config.n_trials}")

    if config.max_attempts < 1:
        raise ValidationError(f"max_attempts must be >= 1, got {config.max_attempts}")

    if not 0.0 <= config.adapt_rate <= 1.0:
        raise ValidationError(f"adapt_rate must be in [0, 1], got {config.adapt_rate}")

    if not 0 < config.salt_length <= MAX_SALT_BYTES:
        raise ValidationError(f"Salt length must be in 1..{MAX_SALT_BYTES}, got {config.salt_length}")

    if config.artifact_z <= 0:
        raise ValidationError(f"Z-score threshold must be positive, got {config.artifact_z}")
