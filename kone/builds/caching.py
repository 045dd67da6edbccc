"""Build result sharing.

CachingBuilder wraps any builder and shares build results for the same
inputs through Futures. Results stay cached, including failures, until
invalidate() is called with the same inputs passed to build().
"""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING

from kone.builds.future import Future

if TYPE_CHECKING:
    from kone.images.image import Image
    from kone.types import BuildInterface

logger = logging.getLogger(__name__)


def cache_key(base_dir: str, path: str) -> str:
    """Normalized join of base_dir and path."""
    return os.path.normpath(os.path.join(base_dir, path))


class CachingBuilder:
    """Deduplicates builds per (base_dir, path).

    The lock guards only membership of the results map. Builds run with the
    map unlocked, so requests for distinct keys never wait on each other;
    requests for the same key wait on the shared Future.

    Args:
        inner: Builder whose results are shared.
    """

    def __init__(self, inner: BuildInterface) -> None:
        self.inner = inner
        self._lock = threading.Lock()
        self._results: dict[str, Future[Image]] = {}

    def build(self, base_dir: str, path: str) -> Image:
        """Build through the cache.

        Raises:
            Exception: The inner build's error, replayed until invalidated.
        """
        key = cache_key(base_dir, path)

        with self._lock:
            future = self._results.get(key)
            if future is None:
                logger.debug("Cache miss for %s", key)
                future = Future(lambda: self.inner.build(base_dir, path))
                self._results[key] = future
            else:
                logger.debug("Cache hit for %s", key)

        return future.get()

    def is_supported_reference(self, base_dir: str, path: str) -> str | None:
        """Delegate to the inner builder, uncached."""
        return self.inner.is_supported_reference(base_dir, path)

    def invalidate(self, base_dir: str, path: str) -> None:
        """Forget the cached result for (base_dir, path).

        Callers already waiting on the old result still receive it.
        """
        key = cache_key(base_dir, path)
        with self._lock:
            if self._results.pop(key, None) is not None:
                logger.debug("Invalidated %s", key)


def new_caching(inner: BuildInterface) -> CachingBuilder:
    """Wrap inner in a CachingBuilder."""
    return CachingBuilder(inner)


__all__ = ["CachingBuilder", "cache_key", "new_caching"]
