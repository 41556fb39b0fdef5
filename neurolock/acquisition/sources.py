"""
EEG data acquisition sources

This module provides a unified capture interface over BrainFlow boards and a
synthetic generator for testing. Device state lives in an explicit
CaptureSession owned by the caller; there is no module-level device status.
"""

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

import numpy as np

from ..core.config import SAMPLING_RATE, NUM_CHANNELS, SERIAL_PORT
from ..core.data_types import MentalTask, RawSignal
from ..core.errors import CaptureError, ResourceError, ValidationError
from ..core.secure import CancelToken

# Optional imports with fallbacks
try:
    from brainflow.board_shim import BoardShim, BrainFlowInputParams, BoardIds
    BRAINFLOW_AVAILABLE = True
except ImportError:
    BRAINFLOW_AVAILABLE = False
    logging.debug("BrainFlow not available - synthetic source only")


class DeviceStatus(Enum):
    """Connection state of a capture session"""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    STREAMING = "streaming"
    ERROR = "error"


class SyntheticSource:
    """
    Generate synthetic EEG for testing enrolment and authentication

    Produces unit-variance Gaussian noise on every channel, optionally with a
    sinusoidal "signature" tone on one channel. Two sources built with the
    same tone behave like recordings of the same person.
    """

    live = False

    def __init__(self, fs: float = SAMPLING_RATE, n_channels: int = NUM_CHANNELS,
                 tone_hz: Optional[float] = 10.0, tone_amplitude: float = 50.0,
                 tone_channel: int = 0, seed: Optional[int] = None):
        if tone_hz is not None and not 0 <= tone_channel < n_channels:
            raise ValidationError(f"Tone channel {tone_channel} outside 0..{n_channels - 1}")
        self.fs = fs
        self.n_channels = n_channels
        self.tone_hz = tone_hz
        self.tone_amplitude = tone_amplitude
        self.tone_channel = tone_channel
        self.rng = np.random.default_rng(seed)

    def connect(self) -> None:
        logging.info("Using synthetic EEG data")

    def read(self, duration_sec: float) -> np.ndarray:
        """
        Generate a synthetic recording

        Returns:
            np.ndarray: EEG data (channels x samples)
        """
        n_samples = int(duration_sec * self.fs)
        data = self.rng.standard_normal((self.n_channels, n_samples))

        if self.tone_hz is not None and n_samples:
            t = np.arange(n_samples) / self.fs
            phase = self.rng.uniform(0, 2 * np.pi)
            data[self.tone_channel, :] += self.tone_amplitude * np.sin(
                2 * np.pi * self.tone_hz * t + phase)

        return data

    def disconnect(self) -> None:
        pass


class BrainFlowSource:
    """
    EEG acquisition from a BrainFlow-supported board

    Defaults to BrainFlow's own synthetic board so the full acquisition path
    can be exercised without hardware; pass a real board id and serial port
    for OpenBCI devices.
    """

    # Samples arrive in real time; a capture has to wait for the buffer to fill
    live = True

    def __init__(self, board_id: Optional[int] = None, serial_port: str = SERIAL_PORT,
                 n_channels: int = NUM_CHANNELS):
        if not BRAINFLOW_AVAILABLE:
            raise CaptureError("BrainFlow not available. Install with: pip install brainflow")

        self.board_id = BoardIds.SYNTHETIC_BOARD.value if board_id is None else board_id
        self.serial_port = serial_port
        self.n_channels = n_channels
        self.board = None
        self.eeg_channels = []
        self.fs = SAMPLING_RATE

    def connect(self) -> None:
        """Prepare a BrainFlow session and start streaming"""
        try:
            params = BrainFlowInputParams()
            params.serial_port = self.serial_port or ""
            self.board = BoardShim(self.board_id, params)

            self.eeg_channels = BoardShim.get_eeg_channels(self.board_id)
            self.fs = BoardShim.get_sampling_rate(self.board_id)

            if len(self.eeg_channels) < self.n_channels:
                raise CaptureError(f"Board offers {len(self.eeg_channels)} EEG channels, "
                                   f"{self.n_channels} required")
            self.eeg_channels = self.eeg_channels[: self.n_channels]

            logging.info(f"BrainFlow EEG channels: {self.eeg_channels}")
            logging.info(f"Sampling rate: {self.fs} Hz")

            self.board.prepare_session()
            self.board.start_stream()
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError(f"BrainFlow connection failed: {e}") from e

    def read(self, duration_sec: float) -> np.ndarray:
        """Return the most recent ``duration_sec`` of EEG from the board buffer"""
        n_samples = int(duration_sec * self.fs)
        try:
            data = self.board.get_board_data()
        except Exception as e:
            raise CaptureError(f"Failed to get data: {e}") from e

        if data.shape[1] < n_samples:
            raise CaptureError(f"Insufficient data: got {data.shape[1]}, needed {n_samples}")

        return data[self.eeg_channels, -n_samples:]

    def disconnect(self) -> None:
        if self.board is None:
            return
        try:
            self.board.stop_stream()
            self.board.release_session()
            logging.info("BrainFlow disconnected")
        except Exception as e:
            raise CaptureError(f"Disconnect error: {e}") from e
        finally:
            self.board = None


class CaptureSession:
    """
    One logical capture session against one device

    The session owns the device status and serializes use: only one
    enrolment or authentication sequence may hold it at a time. Its
    ``record`` method is the capture callable the engine consumes.
    """

    def __init__(self, source, device_name: str = "synthetic"):
        self.source = source
        self.device_name = device_name
        self.status = DeviceStatus.DISCONNECTED
        self._busy = threading.Lock()

    @property
    def fs(self) -> float:
        return self.source.fs

    def connect(self) -> None:
        logging.info(f"Connecting to device: {self.device_name}")
        try:
            self.source.connect()
        except CaptureError:
            self.status = DeviceStatus.ERROR
            raise
        self.status = DeviceStatus.STREAMING
        logging.info(f"Connected to device: {self.device_name}")

    def disconnect(self) -> None:
        if self.status == DeviceStatus.DISCONNECTED:
            return
        logging.info("Disconnecting from device...")
        try:
            self.source.disconnect()
        finally:
            self.status = DeviceStatus.DISCONNECTED

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    @contextmanager
    def exclusive(self) -> Iterator["CaptureSession"]:
        """Hold the session for one enrolment or authentication sequence"""
        if not self._busy.acquire(blocking=False):
            raise ResourceError(f"Capture session on {self.device_name} is already in use")
        try:
            yield self
        finally:
            self._busy.release()

    def record(self, duration: float, task: MentalTask = MentalTask.EYES_CLOSED_REST,
               cancel: Optional[CancelToken] = None) -> RawSignal:
        """
        Capture EEG data for a specified duration

        An empty but successful capture is returned as-is; device problems
        raise CaptureError so the calling attempt aborts.
        """
        if self.status != DeviceStatus.STREAMING:
            raise CaptureError(f"Device not streaming (status: {self.status.value})")
        if duration < 0:
            raise ValidationError(f"Capture duration must be non-negative, got {duration}")

        if getattr(self.source, "live", False):
            # Let the board buffer fill; a cancel during the wait aborts
            if cancel is not None:
                if cancel.wait(duration):
                    cancel.check("capture")
            else:
                time.sleep(duration)
        elif cancel is not None:
            cancel.check("capture")

        logging.info(f"Recording EEG data for {duration:.1f} seconds...")
        data = self.source.read(duration)
        if data is None:
            raise CaptureError("Capture returned no data")

        logging.info("EEG data capture complete")
        return RawSignal(data=np.asarray(data, dtype=np.float64), fs=float(self.source.fs),
                         timestamp=time.time(), task=MentalTask(task))


def open_session(device: str = "synthetic", serial_port: str = SERIAL_PORT,
                 n_channels: int = NUM_CHANNELS, fs: float = SAMPLING_RATE,
                 **synthetic_kwargs) -> CaptureSession:
    """Build (but do not connect) a capture session for a named device"""
    if device == "synthetic":
        source = SyntheticSource(fs=fs, n_channels=n_channels, **synthetic_kwargs)
    elif device == "brainflow":
        source = BrainFlowSource(serial_port=serial_port, n_channels=n_channels)
    else:
        raise ValidationError(f"Unknown device '{device}'. Use 'synthetic' or 'brainflow'")
    return CaptureSession(source, device_name=device)
