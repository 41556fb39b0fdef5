"""
Similarity matching between trial and template feature vectors
"""

from .similarity import cosine_similarity, match

__all__ = ['cosine_similarity', 'match']
