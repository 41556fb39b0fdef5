"""
EEG signal preprocessing pipeline

This module handles filtering, artifact rejection and normalization of raw EEG
trials before spectral features are extracted. Each stage is an independent,
failable step; a stage that exists only as an extension point raises
NotImplementedStage instead of passing the data through untouched.
"""

import logging
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Tuple

import numpy as np
from scipy import signal as sp_signal
from scipy.stats import zscore

from ..core.config import (BANDPASS, NOTCH_HZ, NOTCH_Q, FILTER_ORDER,
                           ARTIFACT_ZSCORE_THRESH, MIN_CHANNEL_VAR)
from ..core.errors import NotImplementedStage, ValidationError
from ..core.secure import CancelToken


class Stage(str, Enum):
    """Preprocessing stages, in the order they are usually applied"""
    BANDPASS = "bandpass"
    NOTCH = "notch"
    ARTIFACT = "artifact"
    ICA = "ica"
    NORMALIZE = "normalize"


def parse_stages(names: Iterable[str]) -> Tuple[Stage, ...]:
    """Convert configured stage names into Stage members"""
    stages = []
    for name in names:
        try:
            stages.append(Stage(name))
        except ValueError:
            raise ValidationError(
                f"Unknown preprocessing stage '{name}'. "
                f"Available: {[s.value for s in Stage]}")
    return tuple(stages)


class Preprocessor:
    """
    EEG signal preprocessing pipeline

    Applies the configured stages to a working copy of a (channels x samples)
    matrix. The caller owns both the input and the returned array.
    """

    def __init__(self, fs: float, stages: Iterable[str] = ("bandpass", "notch", "artifact", "normalize"),
                 bandpass: Tuple[float, float] = BANDPASS, notch_freq: float = NOTCH_HZ,
                 artifact_z: float = ARTIFACT_ZSCORE_THRESH):
        if fs <= 0:
            raise ValidationError(f"Sampling rate must be positive, got {fs}")

        self.fs = fs
        self.stages = parse_stages(stages)
        self.bandpass = bandpass
        self.notch_freq = notch_freq
        self.artifact_z = artifact_z

        self._handlers = self._stage_handlers()
        missing = set(Stage) - set(self._handlers)
        if missing:
            raise NotImplementedStage(f"No handler for stages: {sorted(s.value for s in missing)}")

        self._design_filters()

    def _stage_handlers(self) -> Dict[Stage, Callable[[np.ndarray], None]]:
        return {
            Stage.BANDPASS: self.filter_bandpass,
            Stage.NOTCH: self.filter_notch,
            Stage.ARTIFACT: self.reject_artifacts,
            Stage.ICA: self.remove_components,
            Stage.NORMALIZE: self.normalize,
        }

    def _design_filters(self):
        """Design digital filters for preprocessing"""
        nyquist = self.fs / 2

        # Band-pass, second-order sections for stability at low cutoffs
        low, high = self.bandpass
        high = min(high, 0.99 * nyquist)
        if low >= high:
            self.bp_sos = None
            logging.warning(f"Band-pass {self.bandpass}Hz unusable at fs={self.fs}Hz; stage disabled")
        else:
            self.bp_sos = sp_signal.butter(FILTER_ORDER, [low / nyquist, high / nyquist],
                                           btype='band', output='sos')

        # Notch filter for power line interference
        if self.notch_freq < nyquist:
            self.notch_b, self.notch_a = sp_signal.iirnotch(self.notch_freq / nyquist, NOTCH_Q)
        else:
            self.notch_b = self.notch_a = None

        logging.debug(f"Filters designed: Notch {self.notch_freq}Hz, BP {self.bandpass}Hz")

    def process(self, data: np.ndarray, cancel: Optional[CancelToken] = None) -> np.ndarray:
        """
        Run every configured stage over a copy of the data

        Args:
            data: Raw EEG data (channels x samples)
            cancel: Optional token checked between stages

        Returns:
            np.ndarray: Processed float64 copy of the data
        """
        working = np.array(data, dtype=np.float64, copy=True)
        try:
            for stage in self.stages:
                if cancel is not None:
                    cancel.check(stage.value)
                self._handlers[stage](working)
        except BaseException:
            working.fill(0)
            raise
        return working

    def filter_bandpass(self, data: np.ndarray) -> None:
        """Zero-phase Butterworth band-pass, in place"""
        if self.bp_sos is None:
            return
        padlen = 3 * (2 * len(self.bp_sos) + 1)
        if data.shape[1] <= padlen:
            logging.debug(f"Band-pass skipped: {data.shape[1]} samples <= padlen {padlen}")
            return
        # Pad with the whole trial so the edge transient stays out of the FFT window
        data[:, :] = sp_signal.sosfiltfilt(self.bp_sos, data, axis=1, padlen=data.shape[1] - 1)

    def filter_notch(self, data: np.ndarray) -> None:
        """Zero-phase IIR notch at the line frequency, in place"""
        if self.notch_b is None:
            logging.debug(f"Notch at {self.notch_freq}Hz is above Nyquist; skipped")
            return
        padlen = 3 * max(len(self.notch_a), len(self.notch_b))
        if data.shape[1] <= padlen:
            logging.debug(f"Notch skipped: {data.shape[1]} samples <= padlen {padlen}")
            return
        data[:, :] = sp_signal.filtfilt(self.notch_b, self.notch_a, data, axis=1,
                                        padlen=data.shape[1] - 1)

    def reject_artifacts(self, data: np.ndarray) -> None:
        """
        Clamp blink/muscle spikes on every channel

        Samples whose absolute z-score exceeds the threshold are pulled back to
        mean +/- threshold * std. Flat channels are left alone.
        """
        n_clamped = 0
        for ch in range(data.shape[0]):
            channel = data[ch, :]
            if channel.var() < MIN_CHANNEL_VAR:
                continue
            std = channel.std()
            z_scores = zscore(channel)
            outliers = np.abs(z_scores) > self.artifact_z
            if np.any(outliers):
                mean = channel.mean()
                limit = self.artifact_z * std
                channel[outliers] = np.clip(channel[outliers], mean - limit, mean + limit)
                n_clamped += int(outliers.sum())

        if n_clamped:
            logging.debug(f"Artifact rejection clamped {n_clamped} samples")

    def remove_components(self, data: np.ndarray) -> None:
        """ICA-based ocular artifact removal"""
        raise NotImplementedStage("ICA artifact removal is not implemented")

    def normalize(self, data: np.ndarray) -> None:
        """Zero mean, unit variance per channel; near-flat channels are skipped"""
        for ch in range(data.shape[0]):
            if data[ch, :].var() < MIN_CHANNEL_VAR:
                continue
            data[ch, :] = (data[ch, :] - data[ch, :].mean()) / data[ch, :].std()
