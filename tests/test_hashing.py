"""
Tests for salt generation and template sealing.
"""

import numpy as np
import pytest

from neurolock.core.data_types import FeatureVector, HashRecord
from neurolock.core.errors import NotImplementedStage, ValidationError
from neurolock.security.hashing import (HashPrimitive, digests_equal, generate_salt,
                                        hamming_distance, hash_compare, hash_features,
                                        serialize_features, verify_seal)


@pytest.fixture
def vector():
    return FeatureVector(np.linspace(0.1, 4.0, 40, dtype=np.float32))


class TestSalt:

    def test_length(self):
        assert len(generate_salt()) == 32
        assert len(generate_salt(16)) == 16

    def test_unique(self):
        assert generate_salt() != generate_salt()

    def test_non_positive_length(self):
        with pytest.raises(ValidationError):
            generate_salt(0)


class TestSealing:

    def test_serialization_is_little_endian_float32(self, vector):
        payload = serialize_features(vector)
        assert len(payload) == 40 * 4
        assert np.array_equal(np.frombuffer(bytes(payload), dtype="<f4"), vector.values)

    def test_deterministic_for_same_salt(self, vector):
        salt = bytes(range(32))
        assert hash_features(vector, salt).digest == hash_features(vector, salt).digest

    def test_salt_changes_digest(self, vector):
        first = hash_features(vector, generate_salt())
        second = hash_features(vector, generate_salt())
        assert not hash_compare(first, second)

    @pytest.mark.parametrize("primitive", ["sha256", "sha3_256", "blake2s"])
    def test_digest_size(self, vector, primitive):
        record = hash_features(vector, generate_salt(), primitive)
        assert len(record.digest) == 32
        assert verify_seal(vector, record, primitive)

    def test_blake3_not_implemented(self, vector):
        with pytest.raises(NotImplementedStage):
            hash_features(vector, generate_salt(), HashPrimitive.BLAKE3)

    def test_unknown_primitive(self, vector):
        with pytest.raises(ValidationError):
            hash_features(vector, generate_salt(), "md5")

    def test_tampered_vector_fails_verification(self, vector):
        record = hash_features(vector, generate_salt())
        tampered = vector.copy()
        tampered.values[5] += 1e-3
        assert verify_seal(vector, record)
        assert not verify_seal(tampered, record)

    def test_empty_salt(self, vector):
        with pytest.raises(ValidationError):
            hash_features(vector, b"")

    def test_wipe(self, vector):
        record = hash_features(vector, generate_salt())
        record.wipe()
        assert not any(record.digest)
        assert not any(record.salt)


class CountingDigest:
    """Byte sequence that counts how many bytes a comparison reads"""

    def __init__(self, data):
        self.data = bytes(data)
        self.reads = 0

    def __len__(self):
        return len(self.data)

    def __iter__(self):
        for byte in self.data:
            self.reads += 1
            yield byte


class TestConstantTimeCompare:

    def test_equal(self):
        assert digests_equal(bytes(32), bytes(32))

    def test_every_single_bit_flip_detected(self):
        digest = bytearray(range(32))
        for bit in range(len(digest) * 8):
            flipped = bytearray(digest)
            flipped[bit // 8] ^= 1 << (bit % 8)
            assert not digests_equal(digest, flipped)

    @pytest.mark.parametrize("position", [0, 15, 31])
    def test_reads_every_byte_wherever_the_mismatch_is(self, position):
        digest = bytearray(range(32))
        other = bytearray(digest)
        other[position] ^= 0xFF
        left, right = CountingDigest(digest), CountingDigest(other)

        assert not digests_equal(left, right)
        assert left.reads == right.reads == 32

    def test_length_mismatch(self):
        assert not digests_equal(bytes(32), bytes(31))

    def test_hash_compare_none(self):
        assert not hash_compare(None, HashRecord(bytes(32), bytes(32)))

    def test_hamming_distance(self):
        assert hamming_distance(b"\x00\xff", b"\x01\xff") == 1
        assert hamming_distance(bytes(32), b"\xff" * 32) == 256

    def test_hamming_length_mismatch(self):
        with pytest.raises(ValidationError):
            hamming_distance(b"\x00", b"\x00\x00")
