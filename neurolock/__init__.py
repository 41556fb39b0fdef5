"""
NeuroLock - EEG biometric authentication

A modular Python package that turns multichannel EEG recordings into a
band-power template, seals it against tampering, and matches fresh recordings
against it to accept or reject a user.

Python: 3.10+
"""

__version__ = "1.0.0"

# Main package imports for easy access
from .core.config import EngineConfig
from .core.data_types import RawSignal, FeatureVector, HashRecord, Template, AuthResult, MentalTask
from .core.errors import NeuroLockError
from .core.secure import CancelToken
from .acquisition.sources import CaptureSession, SyntheticSource, open_session
from .processing.features import SpectralFeatureExtractor
from .storage.template_store import TemplateStore
from .engine import NeuroLock, Outcome, Status

__all__ = [
    'EngineConfig',
    'RawSignal', 'FeatureVector', 'HashRecord', 'Template', 'AuthResult', 'MentalTask',
    'NeuroLockError', 'CancelToken',
    'CaptureSession', 'SyntheticSource', 'open_session',
    'SpectralFeatureExtractor', 'TemplateStore',
    'NeuroLock', 'Outcome', 'Status',
]
