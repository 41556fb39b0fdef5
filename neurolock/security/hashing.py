"""
Template sealing

A template's feature vector is sealed with a salted one-way digest. The seal
gives tamper evidence for the stored vector; it is not what authenticates a
user. Two genuine recordings of the same person are never bit-identical, so
matching works on the plaintext vector (see matching.similarity) and the digest
is only ever compared against a recomputation over the stored vector.
"""

import hashlib
import logging
import secrets
from enum import Enum
from typing import Callable, Dict

import numpy as np

from ..core.config import SALT_LENGTH
from ..core.data_types import FeatureVector, HashRecord
from ..core.errors import CryptoError, NotImplementedStage, ValidationError


class HashPrimitive(str, Enum):
    """Digest algorithms available for the template seal"""
    SHA256 = "sha256"
    SHA3_256 = "sha3_256"
    BLAKE2S = "blake2s"
    BLAKE3 = "blake3"


def _hashlib_digest(name: str) -> Callable[[bytes], bytes]:
    def digest(payload: bytes) -> bytes:
        return hashlib.new(name, payload).digest()
    return digest


def _blake3_digest(payload: bytes) -> bytes:
    raise NotImplementedStage("BLAKE3 template sealing is not implemented")


_DIGESTS: Dict[HashPrimitive, Callable[[bytes], bytes]] = {
    HashPrimitive.SHA256: _hashlib_digest("sha256"),
    HashPrimitive.SHA3_256: _hashlib_digest("sha3_256"),
    HashPrimitive.BLAKE2S: _hashlib_digest("blake2s"),
    HashPrimitive.BLAKE3: _blake3_digest,
}


def resolve_primitive(primitive) -> HashPrimitive:
    try:
        return HashPrimitive(primitive)
    except ValueError:
        raise ValidationError(
            f"Unknown hash primitive '{primitive}'. "
            f"Available: {[p.value for p in HashPrimitive]}")


def serialize_features(vector: FeatureVector) -> bytearray:
    """Little-endian float32 byte image of the feature values"""
    return bytearray(np.asarray(vector.values, dtype='<f4').tobytes())


def generate_salt(length: int = SALT_LENGTH) -> bytearray:
    """
    Generate a cryptographically secure random salt

    Uses the operating system CSPRNG via ``secrets``; never a seeded generator.

    Raises:
        ValidationError: If the requested length is not positive
        CryptoError: If the OS cannot supply random bytes
    """
    if length <= 0:
        raise ValidationError(f"Salt length must be positive, got {length}")
    try:
        salt = bytearray(secrets.token_bytes(length))
    except OSError as e:
        raise CryptoError(f"Failed to generate random salt: {e}") from e

    logging.debug(f"Generated {length}-byte salt")
    return salt


def hash_features(vector: FeatureVector, salt: bytes,
                  primitive=HashPrimitive.SHA256) -> HashRecord:
    """
    Seal a feature vector: digest = H(serialize(vector) || salt)

    Args:
        vector: Feature vector to seal
        salt: Per-template random salt
        primitive: Digest algorithm

    Returns:
        HashRecord: Digest and a copy of the salt
    """
    if vector is None or len(vector) == 0:
        raise ValidationError("Cannot hash an empty feature vector")
    if not salt:
        raise ValidationError("Salt must not be empty")

    primitive = resolve_primitive(primitive)
    digest_fn = _DIGESTS[primitive]
    payload = serialize_features(vector)
    try:
        payload.extend(salt)
        try:
            digest = digest_fn(payload)
        except (ValueError, TypeError) as e:
            raise CryptoError(f"Digest computation failed: {e}") from e
    finally:
        payload[:] = bytes(len(payload))

    logging.debug(f"Computed {primitive.value} seal ({len(digest)} bytes)")
    return HashRecord(digest=bytearray(digest), salt=bytearray(salt))


def digests_equal(a: bytes, b: bytes) -> bool:
    """
    Constant-time digest comparison

    Accumulates the XOR of every byte pair and only tests the accumulator at
    the end, so the running time does not depend on where the inputs differ.
    """
    if len(a) != len(b):
        return False
    result = 0
    for x, y in zip(a, b):
        result |= x ^ y
    return result == 0


def hash_compare(first: HashRecord, second: HashRecord) -> bool:
    """Constant-time equality of two seals' digests"""
    if first is None or second is None:
        return False
    return digests_equal(first.digest, second.digest)


def verify_seal(vector: FeatureVector, record: HashRecord,
                primitive=HashPrimitive.SHA256) -> bool:
    """Recompute the digest with the stored salt and compare in constant time"""
    recomputed = hash_features(vector, record.salt, primitive)
    try:
        return digests_equal(recomputed.digest, record.digest)
    finally:
        recomputed.wipe()


def hamming_distance(a: bytes, b: bytes) -> int:
    """Number of differing bits between two equal-length digests"""
    if len(a) != len(b):
        raise ValidationError(f"Digests have different sizes: {len(a)} vs {len(b)}")
    return sum(bin(x ^ y).count("1") for x, y in zip(a, b))
