"""
Tests for core data types and sensitive-buffer handling.
"""

import numpy as np
import pytest

from neurolock.core.data_types import FeatureVector, MentalTask, RawSignal, Template
from neurolock.core.errors import Cancelled, ValidationError
from neurolock.core.secure import CancelToken, wipe, wiping
from neurolock.security.hashing import generate_salt, hash_features


class TestWipe:

    def test_wipes_supported_buffers(self):
        array = np.ones(8)
        buf = bytearray(b"secret")
        vector = FeatureVector(np.ones(4))
        wipe(array)
        wipe(buf)
        wipe(vector)
        assert not array.any()
        assert buf == bytearray(6)
        assert not vector.values.any()

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            wipe("immutable")

    def test_wiping_on_exception(self):
        array = np.ones(4)
        extra = bytearray(b"salt")
        with pytest.raises(RuntimeError):
            with wiping(array) as scope:
                scope.callback(wipe, extra)
                raise RuntimeError("boom")
        assert not array.any()
        assert not any(extra)

    def test_context_managers(self):
        raw = RawSignal(np.ones((2, 4)), fs=256.0)
        with raw:
            pass
        assert not raw.data.any()

        features = FeatureVector(np.ones(4))
        seal = hash_features(features, generate_salt())
        with Template("alice", features, seal):
            pass
        assert not features.values.any()
        assert not any(seal.digest)


class TestCancelToken:

    def test_check(self):
        token = CancelToken()
        token.check("hashing")
        token.cancel()
        assert token.cancelled
        with pytest.raises(Cancelled):
            token.check("hashing")

    def test_wait_returns_when_cancelled(self):
        token = CancelToken()
        token.cancel()
        assert token.wait(5.0)


class TestDataTypes:

    def test_feature_vector_is_float32(self):
        vector = FeatureVector([1, 2, 3])
        assert vector.values.dtype == np.float32
        assert len(vector) == 3

    def test_feature_vector_must_be_1d(self):
        with pytest.raises(ValidationError):
            FeatureVector(np.ones((2, 2)))

    def test_raw_signal_shape(self):
        raw = RawSignal(np.zeros((8, 100)), fs=256.0)
        assert (raw.n_channels, raw.n_samples) == (8, 100)

    def test_task_text(self):
        for task in MentalTask:
            assert task.title
            assert task.instructions
        assert MentalTask(2) is MentalTask.MENTAL_ARITHMETIC
