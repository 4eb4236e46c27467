import threading
import weakref
import unittest
from unittest import TestCase

from seqtensor.domain._errors import DisposedAccessError, OutOfMemoryError
from seqtensor.domain._status import StepStatus
from seqtensor.domain.device._device import Device
from seqtensor.infrastructure.allocator._backends import HostArrayBackend
from seqtensor.infrastructure.allocator._pool import DeviceAllocatorPool


class TestDeviceAllocatorPool(TestCase):
    def setUp(self) -> None:
        self.pool = DeviceAllocatorPool(Device("cpu:0"), memory_limit=1 << 20)

    def tearDown(self) -> None:
        self.pool.teardown()

    def test_released_block_is_reused_without_new_allocation(self):
        h = self.pool.acquire(1000)
        self.pool.release(h)
        before = self.pool.stats().allocation_count

        h2 = self.pool.acquire(1000)
        stats = self.pool.stats()

        self.assertEqual(stats.allocation_count, before)
        self.assertEqual(stats.reuse_count, 1)
        self.pool.release(h2)

    def test_smaller_request_reuses_larger_block(self):
        h = self.pool.acquire(4096)
        self.pool.release(h)

        h2 = self.pool.acquire(100)
        self.assertEqual(self.pool.stats().allocation_count, 1)
        self.assertGreaterEqual(self.pool.capacity(h2), 100)
        self.pool.release(h2)

    def test_larger_request_allocates_new_block(self):
        h = self.pool.acquire(256)
        self.pool.release(h)

        h2 = self.pool.acquire(4096)
        self.assertEqual(self.pool.stats().allocation_count, 2)
        self.pool.release(h2)

    def test_smallest_fitting_block_is_chosen(self):
        big = self.pool.acquire(8192)
        small = self.pool.acquire(1024)
        self.pool.release(big)
        self.pool.release(small)

        h = self.pool.acquire(1000)
        self.assertEqual(self.pool.capacity(h), 1024)
        self.pool.release(h)

    def test_stale_handle_raises_disposed_access(self):
        h = self.pool.acquire(64)
        self.pool.release(h)
        with self.assertRaises(DisposedAccessError):
            self.pool.resolve(h)

    def test_reacquired_slot_does_not_revive_old_handle(self):
        h = self.pool.acquire(64)
        self.pool.release(h)
        h2 = self.pool.acquire(64)

        self.assertEqual(h.slot, h2.slot)
        self.assertNotEqual(h.generation, h2.generation)
        self.assertFalse(self.pool.is_live(h))
        self.assertTrue(self.pool.is_live(h2))
        self.pool.release(h2)

    def test_retain_keeps_buffer_until_last_release(self):
        h = self.pool.acquire(64)
        self.pool.retain(h)
        self.assertEqual(self.pool.refcount(h), 2)

        self.pool.release(h)
        self.assertTrue(self.pool.is_live(h))
        self.pool.release(h)
        self.assertFalse(self.pool.is_live(h))

    def test_acquire_over_limit_raises_out_of_memory(self):
        pool = DeviceAllocatorPool(Device("cpu:0"), memory_limit=1024)
        try:
            pool.acquire(512)
            with self.assertRaises(OutOfMemoryError) as cm:
                pool.acquire(1024)
            self.assertEqual(cm.exception.limit, 1024)
            self.assertEqual(cm.exception.requested, 1024)
        finally:
            pool.teardown()

    def test_try_acquire_reports_oom_status(self):
        pool = DeviceAllocatorPool(Device("cpu:0"), memory_limit=512)
        try:
            ok = pool.try_acquire(256)
            self.assertTrue(ok.ok)
            self.assertIsNotNone(ok.handle)

            failed = pool.try_acquire(4096)
            self.assertIs(failed.status, StepStatus.OOM)
            self.assertIsNone(failed.handle)
            self.assertIsInstance(failed.error, OutOfMemoryError)
        finally:
            pool.teardown()

    def test_stats_track_outstanding_and_reserved_bytes(self):
        h = self.pool.acquire(300)
        stats = self.pool.stats()
        self.assertEqual(stats.outstanding_bytes, 512)
        self.assertEqual(stats.reserved_bytes, 512)
        self.assertEqual(stats.live_buffers, 1)

        self.pool.release(h)
        stats = self.pool.stats()
        self.assertEqual(stats.outstanding_bytes, 0)
        self.assertEqual(stats.reserved_bytes, 512)
        self.assertEqual(stats.free_block_count, 1)

    def test_empty_cache_frees_cached_blocks(self):
        h = self.pool.acquire(256)
        self.pool.release(h)

        freed = self.pool.empty_cache()
        self.assertEqual(freed, 256)
        self.assertEqual(self.pool.stats().reserved_bytes, 0)
        self.assertEqual(self.pool.stats().free_block_count, 0)

    def test_reset_invalidates_live_handles(self):
        h = self.pool.acquire(256)
        self.pool.reset()
        with self.assertRaises(DisposedAccessError):
            self.pool.resolve(h)
        self.assertEqual(self.pool.stats().reserved_bytes, 0)

    def test_teardown_refuses_new_allocations(self):
        self.pool.teardown()
        with self.assertRaises(DisposedAccessError):
            self.pool.acquire(16)

    def test_handle_from_other_pool_is_rejected(self):
        other = DeviceAllocatorPool(Device("cpu:1"), memory_limit=1 << 16)
        try:
            h = other.acquire(16)
            with self.assertRaises(ValueError):
                self.pool.resolve(h)
        finally:
            other.teardown()

    def test_deferred_release_applies_on_next_acquire(self):
        h = self.pool.acquire(256)
        self.pool.release_later(h)
        self.assertTrue(self.pool.is_live(h))

        self.pool.acquire(256)
        self.assertFalse(self.pool.is_live(h))
        self.assertEqual(self.pool.stats().allocation_count, 1)

    def test_invalid_settings_raise(self):
        with self.assertRaises(ValueError):
            DeviceAllocatorPool(Device("cpu:0"), memory_usage_ratio=0.0)
        with self.assertRaises(ValueError):
            DeviceAllocatorPool(Device("cpu:0"), memory_limit=0)

    def test_concurrent_acquire_release_keeps_counters_consistent(self):
        def worker():
            for _ in range(200):
                self.pool.release(self.pool.acquire(512))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = self.pool.stats()
        self.assertEqual(stats.outstanding_bytes, 0)
        self.assertEqual(stats.live_buffers, 0)
        self.assertLessEqual(stats.allocation_count, 4)
        self.assertEqual(stats.allocation_count + stats.reuse_count, 800)

class _TrackingBackend(HostArrayBackend):
    """
    Host backend that records which raw arrays are still alive whenever the
    pool asks it to flush its cache.
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self.refs = []
        self.alive_at_release = []

    def allocate(self, nbytes: int):
        raw = super().allocate(nbytes)
        self.refs.append(weakref.ref(raw))
        return raw

    def release_cached(self) -> None:
        self.alive_at_release.append(sum(r() is not None for r in self.refs))


class TestCacheRelease(TestCase):
    def setUp(self) -> None:
        device = Device("cpu:0")
        self.backend = _TrackingBackend(device)
        self.pool = DeviceAllocatorPool(device, self.backend, memory_limit=1 << 20)

    def tearDown(self) -> None:
        self.pool.teardown()

    def test_empty_cache_drops_raw_arrays_before_flush(self):
        handles = [self.pool.acquire(512), self.pool.acquire(2048)]
        kept = self.pool.acquire(256)
        for h in handles:
            self.pool.release(h)

        self.assertEqual(self.pool.empty_cache(), 512 + 2048)
        # only the block behind `kept` is still referenced
        self.assertEqual(self.backend.alive_at_release, [1])
        self.assertEqual(self.pool.stats().reserved_bytes, 256)
        self.pool.release(kept)

    def test_reset_drops_live_and_cached_arrays_before_flush(self):
        self.pool.acquire(512)
        self.pool.release(self.pool.acquire(1024))

        self.pool.reset()
        self.assertEqual(self.backend.alive_at_release, [0])
        stats = self.pool.stats()
        self.assertEqual(stats.reserved_bytes, 0)
        self.assertEqual(stats.free_block_count, 0)

    def test_teardown_flushes_once(self):
        self.pool.acquire(512)
        self.pool.teardown()
        self.pool.teardown()
        self.assertEqual(self.backend.alive_at_release, [0])


if __name__ == "__main__":
    unittest.main()
