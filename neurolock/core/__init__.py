"""
Core data types, configuration and error taxonomy for NeuroLock

This module contains the fundamental data classes used throughout the system.
"""

from .errors import (NeuroLockError, ValidationError, ResourceError, TemplateIOError,
                     CryptoError, IntegrityError, NotImplementedStage, Cancelled,
                     CaptureError)
from .config import EngineConfig, validate_config
from .secure import CancelToken, wipe, wiping
from .data_types import (MentalTask, RawSignal, FeatureVector, HashRecord, Template,
                         AuthResult, validate_username)

__all__ = [
    'NeuroLockError', 'ValidationError', 'ResourceError', 'TemplateIOError',
    'CryptoError', 'IntegrityError', 'NotImplementedStage', 'Cancelled', 'CaptureError',
    'EngineConfig', 'validate_config',
    'CancelToken', 'wipe', 'wiping',
    'MentalTask', 'RawSignal', 'FeatureVector', 'HashRecord', 'Template',
    'AuthResult', 'validate_username',
]
