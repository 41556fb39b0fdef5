"""
Template sealing and salt generation
"""

from .hashing import (HashPrimitive, generate_salt, hash_features, hash_compare,
                      digests_equal, verify_seal, hamming_distance, serialize_features)

__all__ = ['HashPrimitive', 'generate_salt', 'hash_features', 'hash_compare',
           'digests_equal', 'verify_seal', 'hamming_distance', 'serialize_features']
