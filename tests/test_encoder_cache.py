"""
Encoder cache tests: one load per process, shared handle, retry after failure,
and waiters that give up without disturbing the others.
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from placefinder.core.errors import EncoderLoadTimeout, EncodingFailure
from placefinder.vector.embeddings import DeterministicHashEmbedding, TextEncoder
from placefinder.vector.encoder_cache import EncoderCache, get_encoder_cache, set_encoder_cache


def make_encoder():
    return TextEncoder(DeterministicHashEmbedding(dimension=384), dimension=384, model_version="hash-test")


class GatedLoader:
    """Loader that blocks until released and counts its calls."""

    def __init__(self, fail: bool = False):
        self.release = threading.Event()
        self.started = threading.Event()
        self.calls = 0
        self.fail = fail
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        self.started.set()
        self.release.wait(timeout=10)
        if self.fail:
            raise OSError("model download failed")
        return make_encoder()


def test_concurrent_first_acquire_loads_once():
    loader = GatedLoader()
    cache = EncoderCache(loader=loader)
    callers = 16

    with ThreadPoolExecutor(max_workers=callers) as pool:
        futures = [pool.submit(cache.acquire, 10) for _ in range(callers)]
        assert loader.started.wait(timeout=5)
        loader.release.set()
        encoders = [f.result(timeout=10) for f in futures]

    assert loader.calls == 1
    assert cache.load_count == 1
    assert all(e is encoders[0] for e in encoders)
    assert encoders[0].encode("red gates").shape == (384,)
    cache.shutdown()


def test_acquire_after_load_returns_cached_encoder():
    loader = GatedLoader()
    loader.release.set()
    cache = EncoderCache(loader=loader)

    first = cache.acquire()
    second = cache.acquire()

    assert first is second
    assert loader.calls == 1
    assert cache.is_loaded()
    cache.shutdown()


def test_failed_load_reaches_all_waiters_and_is_retried():
    loader = GatedLoader(fail=True)
    cache = EncoderCache(loader=loader)

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(cache.acquire, 10) for _ in range(4)]
        assert loader.started.wait(timeout=5)
        loader.release.set()
        for future in futures:
            with pytest.raises(EncodingFailure):
                future.result(timeout=10)

    assert not cache.is_loaded()
    failed_attempts = loader.calls

    # Failure is not cached: the next caller triggers a fresh load
    loader.fail = False
    encoder = cache.acquire(timeout=10)
    assert encoder is not None
    assert loader.calls == failed_attempts + 1
    cache.shutdown()


def test_load_failure_keeps_cause():
    def loader():
        raise OSError("disk full")

    cache = EncoderCache(loader=loader)
    with pytest.raises(EncodingFailure) as exc_info:
        cache.acquire(timeout=5)

    assert isinstance(exc_info.value.__cause__, OSError)
    cache.shutdown()


def test_abandoned_acquire_does_not_fail_other_waiters():
    loader = GatedLoader()
    cache = EncoderCache(loader=loader)

    with ThreadPoolExecutor(max_workers=1) as pool:
        patient = pool.submit(cache.acquire, 10)
        assert loader.started.wait(timeout=5)

        with pytest.raises(EncoderLoadTimeout):
            cache.acquire(timeout=0.05)

        loader.release.set()
        encoder = patient.result(timeout=10)

    assert encoder is cache.acquire()
    assert loader.calls == 1
    cache.shutdown()


def test_cancelled_async_waiter_leaves_load_running():
    loader = GatedLoader()
    cache = EncoderCache(loader=loader)

    async def scenario():
        abandoned = asyncio.ensure_future(cache.acquire_async())
        patient = asyncio.ensure_future(cache.acquire_async(timeout=10))
        await asyncio.get_running_loop().run_in_executor(None, loader.started.wait, 5)

        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned

        loader.release.set()
        return await patient

    encoder = asyncio.run(scenario())

    assert encoder is cache.acquire()
    assert loader.calls == 1
    cache.shutdown()


def test_async_acquire_timeout():
    loader = GatedLoader()
    cache = EncoderCache(loader=loader)

    async def scenario():
        with pytest.raises(EncoderLoadTimeout):
            await cache.acquire_async(timeout=0.05)

        loader.release.set()
        return await cache.acquire_async(timeout=10)

    assert asyncio.run(scenario()) is not None
    assert loader.calls == 1
    cache.shutdown()


def test_shutdown_forgets_encoder():
    loader = GatedLoader()
    loader.release.set()
    cache = EncoderCache(loader=loader)
    cache.acquire()

    cache.shutdown()

    assert not cache.is_loaded()
    cache.acquire()
    assert loader.calls == 2
    cache.shutdown()


def test_load_finishing_after_shutdown_is_discarded():
    loader = GatedLoader()
    cache = EncoderCache(loader=loader)

    with ThreadPoolExecutor(max_workers=1) as pool:
        early = pool.submit(cache.acquire, 10)
        assert loader.started.wait(timeout=5)

        cache.shutdown()
        loader.release.set()

        # The caller that was already waiting still gets its encoder
        assert early.result(timeout=10) is not None

    assert not cache.is_loaded()
    assert cache.load_count == 1


def test_load_finishing_after_shutdown_leaves_new_load_alone():
    loader = GatedLoader()
    cache = EncoderCache(loader=loader)

    with ThreadPoolExecutor(max_workers=1) as pool:
        early = pool.submit(cache.acquire, 10)
        assert loader.started.wait(timeout=5)
        cache.shutdown()

        # Starts a second load on a fresh loader thread
        with pytest.raises(EncoderLoadTimeout):
            cache.acquire(timeout=0.05)

        loader.release.set()
        early.result(timeout=10)

    encoder = cache.acquire(timeout=10)

    assert encoder is cache.acquire()
    assert loader.calls == 2
    assert cache.load_count == 2
    cache.shutdown()


def test_process_wide_cache_is_shared():
    replacement = EncoderCache(loader=make_encoder)
    set_encoder_cache(replacement)
    try:
        assert get_encoder_cache() is replacement
        assert get_encoder_cache() is get_encoder_cache()
    finally:
        set_encoder_cache(None)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
