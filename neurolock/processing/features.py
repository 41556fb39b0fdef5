"""
EEG feature extraction

This module turns a raw (channels x samples) recording into a fixed-length
band-power feature vector. Power is taken from the magnitude spectrum of the
first analysis window of every channel and summed inside the canonical
delta/theta/alpha/beta/gamma bands.
"""

import logging
import time
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from ..core.config import (SAMPLING_RATE, NUM_CHANNELS, WINDOW_SIZE, FREQ_BANDS,
                           EngineConfig)
from ..core.data_types import FeatureVector, RawSignal
from ..core.errors import NotImplementedStage, ValidationError
from ..core.secure import CancelToken, wipe, wiping
from .preprocessor import Preprocessor


class FeatureKind(str, Enum):
    """Feature families the extractor can produce"""
    BAND_POWER = "band_power"
    WAVELET = "wavelet"


class SpectralFeatureExtractor:
    """
    Extract band-power features from raw EEG trials

    The output vector is channel-major, band-minor: for 8 channels and 5 bands
    slot ``ch * 5 + band`` holds the power of ``band`` on channel ``ch``.
    Channels shorter than the analysis window degrade to zero slots instead of
    failing the whole trial.
    """

    def __init__(self, fs: float = SAMPLING_RATE, n_channels: int = NUM_CHANNELS,
                 window: int = WINDOW_SIZE,
                 freq_bands: Dict[str, Tuple[float, float]] = FREQ_BANDS,
                 stages: Sequence[str] = ("bandpass", "notch", "artifact", "normalize"),
                 kind: str = FeatureKind.BAND_POWER,
                 preprocessor_kwargs: Optional[Dict] = None):
        if window < 2:
            raise ValidationError(f"FFT window must be at least 2 samples, got {window}")

        self.fs = fs
        self.n_channels = n_channels
        self.window = window
        self.freq_bands = dict(freq_bands)
        self.stages = tuple(stages)
        self.preprocessor_kwargs = dict(preprocessor_kwargs or {})
        try:
            self.kind = FeatureKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown feature kind '{kind}'")

        self._extractors = {
            FeatureKind.BAND_POWER: self._band_power_features,
            FeatureKind.WAVELET: self._wavelet_features,
        }
        self._preprocessor = Preprocessor(fs, self.stages, **self.preprocessor_kwargs)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "SpectralFeatureExtractor":
        return cls(
            fs=config.fs,
            n_channels=config.n_channels,
            window=config.window,
            freq_bands=config.freq_bands,
            stages=config.stages,
            kind=config.feature_kind,
            preprocessor_kwargs={
                "bandpass": config.bandpass,
                "notch_freq": config.notch_hz,
                "artifact_z": config.artifact_z,
            },
        )

    @property
    def feature_size(self) -> int:
        return self.n_channels * len(self.freq_bands)

    def validate(self, raw: RawSignal) -> None:
        """
        Check extraction preconditions

        Raises:
            ValidationError: On missing, empty, non-finite or wrongly shaped input
        """
        if raw is None or raw.data is None:
            raise ValidationError("No EEG data supplied")

        data = np.asarray(raw.data)
        if data.ndim != 2 or data.size == 0:
            raise ValidationError(f"EEG data must be a non-empty channels x samples matrix, "
                                  f"got shape {data.shape}")

        if data.shape[0] != self.n_channels:
            raise ValidationError(f"Expected {self.n_channels} channels, got {data.shape[0]}")

        if not raw.fs or raw.fs <= 0:
            raise ValidationError(f"Sampling rate must be positive, got {raw.fs}")

        if not np.all(np.isfinite(data)):
            raise ValidationError("EEG data contains NaN or infinite samples")

    def _preprocessor_for(self, fs: float) -> Preprocessor:
        if fs == self._preprocessor.fs:
            return self._preprocessor
        logging.debug(f"Designing filters for fs={fs}Hz")
        return Preprocessor(fs, self.stages, **self.preprocessor_kwargs)

    def compute_spectrum(self, samples: np.ndarray) -> np.ndarray:
        """
        Magnitude spectrum of one analysis window

        Args:
            samples: Exactly ``window`` samples of a single channel

        Returns:
            np.ndarray: |X[k]| for k in [0, window/2)
        """
        return np.abs(np.fft.rfft(samples, n=self.window))[: self.window // 2]

    def band_masks(self, fs: float) -> List[np.ndarray]:
        """Boolean bin masks, one per band, for bins k*fs/window in [low, high)"""
        freqs = np.arange(self.window // 2) * fs / self.window
        return [(freqs >= low) & (freqs < high) for low, high in self.freq_bands.values()]

    def band_powers(self, data: np.ndarray, fs: float) -> np.ndarray:
        """
        Summed squared spectral magnitude per channel and band

        Args:
            data: Preprocessed EEG (channels x samples)
            fs: Sampling frequency

        Returns:
            np.ndarray: (channels, bands) float64 array
        """
        n_channels, n_samples = data.shape
        powers = np.zeros((n_channels, len(self.freq_bands)), dtype=np.float64)

        if n_samples < self.window:
            logging.warning(f"Only {n_samples} samples, window is {self.window}: "
                            f"channel features set to zero")
            return powers

        masks = self.band_masks(fs)
        for ch in range(n_channels):
            spectrum = self.compute_spectrum(data[ch, : self.window])
            with wiping(spectrum):
                power = spectrum * spectrum
                with wiping(power):
                    for band_idx, mask in enumerate(masks):
                        powers[ch, band_idx] = power[mask].sum()

        return powers

    def _band_power_features(self, data: np.ndarray, fs: float) -> np.ndarray:
        return self.band_powers(data, fs).reshape(-1)

    def _wavelet_features(self, data: np.ndarray, fs: float) -> np.ndarray:
        raise NotImplementedStage("Wavelet feature extraction is not implemented")

    def extract(self, raw: RawSignal, cancel: Optional[CancelToken] = None) -> FeatureVector:
        """
        Complete feature extraction pipeline for one trial

        Args:
            raw: Raw recording; it is not modified
            cancel: Optional token checked between stages

        Returns:
            FeatureVector: ``n_channels * n_bands`` float32 band powers

        Raises:
            ValidationError: Invalid input
            NotImplementedStage: A configured stage or feature kind is a stub
            Cancelled: The token fired between stages
        """
        self.validate(raw)

        preprocessor = self._preprocessor_for(raw.fs)
        processed = preprocessor.process(raw.data, cancel)
        with wiping(processed) as scope:
            if cancel is not None:
                cancel.check("spectral features")
            features = self._extractors[self.kind](processed, raw.fs)
            scope.callback(wipe, features)

            vector = FeatureVector(features.astype(np.float32), task=raw.task,
                                   timestamp=time.time())

        logging.debug(f"Extracted {len(vector)} {self.kind.value} features")
        return vector

    def extract_batch(self, trials: Sequence[RawSignal], n_jobs: int = 1,
                      cancel: Optional[CancelToken] = None) -> List[FeatureVector]:
        """
        Extract features from independent trials, optionally in parallel

        Each trial's extraction is pure, so trials are dispatched to joblib
        worker threads with nothing shared between them. If any trial fails,
        vectors already produced are wiped before the error propagates.
        """
        if not trials:
            raise ValidationError("No trials supplied")

        vectors: List[FeatureVector] = []
        try:
            jobs = (delayed(self.extract)(trial, cancel) for trial in trials)
            for vector in Parallel(n_jobs=n_jobs, prefer="threads", return_as="generator")(jobs):
                vectors.append(vector)
        except BaseException:
            for vector in vectors:
                vector.wipe()
            raise

        logging.info(f"Extracted features from {len(vectors)} trials")
        return vectors
