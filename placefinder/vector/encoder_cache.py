"""
Process-wide encoder cache.

The text encoder is loaded once, lazily, on a background loader thread. Every
caller that arrives while the load is in flight waits on the same future and
receives the same encoder. A failed load is forgotten so the next caller
retries it, and a caller that gives up waiting never cancels the load for the
others.
"""

import asyncio
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from ..core.errors import EncoderLoadTimeout, EncodingFailure
from ..util.logging import logger
from .embeddings import TextEncoder


class EncoderCache:
    """Lazy shared TextEncoder with one-time initialization."""

    def __init__(self, loader: Callable[[], TextEncoder] = None, name: str = "text-encoder"):
        if loader is None:
            from ..core.config import build_text_encoder
            loader = build_text_encoder
        self.name = name
        self._loader = loader
        self._lock = threading.Lock()
        self._encoder: Optional[TextEncoder] = None
        self._pending: Optional[Future] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._generation = 0
        self.load_count = 0

    def is_loaded(self) -> bool:
        return self._encoder is not None

    def _load(self, generation: int) -> TextEncoder:
        start_time = time.time()
        try:
            encoder = self._loader()
        except Exception as e:
            with self._lock:
                if self._generation == generation:
                    self._pending = None
            logger.log_encoder_load(self.name, start_time, time.time(), status="failed",
                                    details={"error": str(e)[:200]})
            if isinstance(e, EncodingFailure):
                raise
            raise EncodingFailure(f"Encoder load failed: {e}") from e

        with self._lock:
            current = self._generation == generation
            if current:
                self._encoder = encoder
                self._pending = None
        if current:
            logger.log_encoder_load(self.name, start_time, time.time())
        else:
            # A shutdown happened while this attempt was running
            logger.log_encoder_load(self.name, start_time, time.time(), status="discarded")
        return encoder

    def _start_load(self) -> Future:
        """Return the in-flight load, starting one if none is running."""
        with self._lock:
            if self._encoder is not None:
                done = Future()
                done.set_result(self._encoder)
                return done

            if self._pending is None:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="encoder-load")
                self.load_count += 1
                self._pending = self._executor.submit(self._load, self._generation)
            return self._pending

    def acquire(self, timeout: Optional[float] = None) -> TextEncoder:
        """
        Get the shared encoder, loading it on first use.

        Args:
            timeout: Seconds to wait for an in-flight load. None waits forever.

        Raises:
            EncoderLoadTimeout: The wait timed out. The load keeps running.
            EncodingFailure: The load attempt this caller waited on failed.
        """
        encoder = self._encoder
        if encoder is not None:
            return encoder

        future = self._start_load()
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            raise EncoderLoadTimeout(f"Timed out after {timeout}s waiting for {self.name}") from e

    async def acquire_async(self, timeout: Optional[float] = None) -> TextEncoder:
        """Asyncio variant of acquire(). Cancelling the caller leaves the load running."""
        encoder = self._encoder
        if encoder is not None:
            return encoder

        future = self._start_load()
        try:
            return await asyncio.wait_for(asyncio.shield(asyncio.wrap_future(future)), timeout)
        except asyncio.TimeoutError as e:
            raise EncoderLoadTimeout(f"Timed out after {timeout}s waiting for {self.name}") from e

    def shutdown(self) -> None:
        """Drop the loaded encoder and stop the loader thread."""
        with self._lock:
            executor = self._executor
            self._executor = None
            self._encoder = None
            self._pending = None
            self._generation += 1
        if executor is not None:
            executor.shutdown(wait=False)


_shared_cache: Optional[EncoderCache] = None
_shared_lock = threading.Lock()


def get_encoder_cache() -> EncoderCache:
    """The process-wide encoder cache."""
    global _shared_cache
    if _shared_cache is None:
        with _shared_lock:
            if _shared_cache is None:
                _shared_cache = EncoderCache()
    return _shared_cache


def set_encoder_cache(cache: Optional[EncoderCache]) -> None:
    """Replace the process-wide cache, shutting the old one down."""
    global _shared_cache
    with _shared_lock:
        previous = _shared_cache
        _shared_cache = cache
    if previous is not None and previous is not cache:
        previous.shutdown()
