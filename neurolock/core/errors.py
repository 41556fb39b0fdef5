"""
Error taxonomy for NeuroLock

Every failure the core can report maps onto one of these classes. The engine
turns them into typed outcomes; nothing below the CLI prints.
"""


class NeuroLockError(Exception):
    """Base class for all NeuroLock failures"""


class ValidationError(NeuroLockError, ValueError):
    """Null, empty or size-mismatched input"""


class ResourceError(NeuroLockError):
    """A resource (memory, capture session) could not be obtained"""


class TemplateIOError(NeuroLockError, OSError):
    """Open/read/write failure, or a corrupt, truncated or out-of-bounds record"""


class CryptoError(NeuroLockError):
    """Salt or digest generation failure"""


class IntegrityError(CryptoError):
    """A stored template no longer matches its seal"""


class NotImplementedStage(NeuroLockError, NotImplementedError):
    """A processing stage or primitive that exists only as an extension point"""


class Cancelled(NeuroLockError):
    """The caller cancelled a long-running operation"""


class CaptureError(NeuroLockError):
    """The acquisition collaborator failed to deliver a recording"""
