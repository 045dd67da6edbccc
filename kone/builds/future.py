"""Single-assignment value cell shared by concurrent readers.

A Future is bound to a zero-argument producer. The first caller of get()
runs the producer in its own thread; every other caller blocks until the
producer finishes. All callers, then and later, observe the same value or
the same exception. A failed producer is never retried.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class Future(Generic[T]):
    """Compute once, read many.

    Args:
        producer: Called exactly once, by the first get().
    """

    def __init__(self, producer: Callable[[], T]) -> None:
        self._producer = producer
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._started = False
        self._value: T | None = None
        self._error: BaseException | None = None

    @property
    def done(self) -> bool:
        """True once the producer has finished."""
        return self._done.is_set()

    def get(self) -> T:
        """Return the produced value, running the producer if needed.

        Raises:
            BaseException: Whatever the producer raised, on every call.
        """
        with self._lock:
            run = not self._started
            self._started = True

        if run:
            try:
                self._value = self._producer()
            except BaseException as e:
                self._error = e
            finally:
                self._producer = None  # type: ignore[assignment]
                self._done.set()
        else:
            self._done.wait()

        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]


__all__ = ["Future"]
