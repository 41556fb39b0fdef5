"""
EEG data acquisition

This module provides the capture session and device sources that feed raw
recordings into the enrolment and authentication pipeline.
"""

from .sources import (CaptureSession, DeviceStatus, SyntheticSource, BrainFlowSource,
                      open_session, BRAINFLOW_AVAILABLE)

__all__ = ['CaptureSession', 'DeviceStatus', 'SyntheticSource', 'BrainFlowSource',
           'open_session', 'BRAINFLOW_AVAILABLE']
