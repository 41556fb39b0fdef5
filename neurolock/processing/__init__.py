"""
EEG signal processing components

This module contains preprocessing, feature extraction and enrolment
aggregation for biometric template construction.
"""

from .preprocessor import Preprocessor, Stage
from .features import SpectralFeatureExtractor, FeatureKind
from .aggregation import aggregate, blend

__all__ = ['Preprocessor', 'Stage', 'SpectralFeatureExtractor', 'FeatureKind',
           'aggregate', 'blend']
