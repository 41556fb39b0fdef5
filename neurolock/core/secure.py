"""
Scoped handling of sensitive buffers

Feature values, digests and salts are zero-filled before they are released,
on every exit path. Use ``wiping(...)`` around any code that owns such buffers
so early returns and exceptions take the same cleanup route.
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Iterator

import numpy as np

from .errors import Cancelled


def wipe(buffer) -> None:
    """Zero-fill a numpy array, bytearray or anything exposing ``wipe()``"""
    if buffer is None:
        return
    if isinstance(buffer, np.ndarray):
        if buffer.flags.writeable:
            buffer.fill(0)
    elif isinstance(buffer, (bytearray, memoryview)):
        buffer[:] = bytes(len(buffer))
    elif hasattr(buffer, "wipe"):
        buffer.wipe()
    else:
        raise TypeError(f"Cannot wipe object of type {type(buffer).__name__}")


@contextmanager
def wiping(*buffers) -> Iterator[ExitStack]:
    """
    Wipe the given buffers when the block exits, however it exits

    The yielded ExitStack accepts more buffers created inside the block:

        with wiping(raw) as scope:
            vec = extract(raw)
            scope.callback(wipe, vec)
    """
    with ExitStack() as stack:
        for buffer in buffers:
            stack.callback(wipe, buffer)
        yield stack


class CancelToken:
    """
    Cancellation signal checked between pipeline stages

    Wraps a threading.Event so a signal handler or another thread can abort
    an enrolment that is waiting on captures.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, stage: str = "") -> None:
        """Raise Cancelled if cancellation was requested"""
        if self._event.is_set():
            raise Cancelled(f"Cancelled before {stage}" if stage else "Cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile"""
        return self._event.wait(timeout)
