"""
Shared fixtures for NeuroLock tests.

Trials follow the reference enrolment scenario: 8 channels x 1280 samples at
256 Hz of unit-variance noise, optionally with a 10 Hz amplitude-50 tone on
channel 0 standing in for a user's signature.
"""

import numpy as np
import pytest

from neurolock.core.config import EngineConfig
from neurolock.core.data_types import RawSignal
from neurolock.engine import NeuroLock

FS = 256
N_CHANNELS = 8
N_SAMPLES = 1280


def make_trial(seed, tone_hz=10.0, amplitude=50.0, channel=0,
               n_channels=N_CHANNELS, n_samples=N_SAMPLES, fs=FS):
    rng = np.random.default_rng(seed)
    data = rng.standard_normal((n_channels, n_samples))
    if tone_hz is not None:
        t = np.arange(n_samples) / fs
        data[channel] += amplitude * np.sin(2 * np.pi * tone_hz * t)
    return RawSignal(data=data, fs=float(fs))


@pytest.fixture
def trial_factory():
    return make_trial


@pytest.fixture
def config(tmp_path):
    return EngineConfig(template_dir=str(tmp_path / "templates"))


@pytest.fixture
def engine(config):
    return NeuroLock(config)


@pytest.fixture
def enrolled(engine, trial_factory):
    """Engine with 'alice' enrolled from three signature trials"""
    trials = [trial_factory(seed) for seed in (1, 2, 3)]
    outcome = engine.enroll("alice", trials)
    assert outcome.ok, outcome.message
    return engine
