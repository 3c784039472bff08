"""
Batch-scoped cancellation.

A `CancellationContext` is created for every batch and passed into each
blocking call the batch makes. Cancelling it wakes up anything waiting on
it and runs the callbacks registered by in-flight operations (for example,
shutting down the socket of a pending OCR upload).
"""

from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future
from typing import Callable, TypeVar

import structlog

from .errors import OcrCancelledError

log = structlog.get_logger(__name__)

T = TypeVar("T")

CANCELLED_MESSAGE = "Processing stopped by user request"


class CancellationContext:
    """Thread-safe, one-shot cancellation flag with callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Set the flag and run every registered callback once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("Cancellation callback failed")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OcrCancelledError(CANCELLED_MESSAGE)

    def add_callback(self, callback: Callable[[], None]) -> int:
        """
        Register ``callback`` to run on cancellation.

        If the context is already cancelled the callback runs immediately.
        Returns a handle for `remove_callback`.
        """
        with self._lock:
            handle = next(self._ids)
            if not self._event.is_set():
                self._callbacks[handle] = callback
                return handle
        callback()
        return handle

    def remove_callback(self, handle: int) -> None:
        with self._lock:
            self._callbacks.pop(handle, None)

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        if timeout <= 0:
            return self._event.is_set()
        return self._event.wait(timeout)

    def wait_for(self, future: Future[T]) -> T:
        """
        Block until ``future`` finishes or the context is cancelled.

        Raises:
            OcrCancelledError: the context was cancelled before the future
                finished, or the future failed after cancellation.
        """
        done = threading.Event()
        future.add_done_callback(lambda _f: done.set())
        handle = self.add_callback(done.set)
        try:
            done.wait()
        finally:
            self.remove_callback(handle)
        if not future.done():
            future.cancel()
            raise OcrCancelledError(CANCELLED_MESSAGE)
        error = future.exception()
        if error is not None and self._event.is_set():
            # failed because a cancellation callback tore down its resources
            raise OcrCancelledError(CANCELLED_MESSAGE) from error
        return future.result()
