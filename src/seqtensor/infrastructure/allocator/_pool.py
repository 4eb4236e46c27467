"""
Per-device caching allocator.

`DeviceAllocatorPool` hands out device buffers to tensors and takes them back
when the last tensor aliasing a buffer is disposed. Released blocks are kept
on a size-keyed free list and reused for any later request of equal or
smaller size, so a training or decoding loop that allocates the same shapes
step after step stops touching the device allocator after warm-up.

Handles
-------
Tensors never hold a block directly. They hold a `BufferHandle`: a slot index
plus the generation the slot had when the buffer was acquired. Releasing the
last reference bumps the slot's generation, so any later `resolve()` through
a stale handle raises `DisposedAccessError` instead of silently reading a
block that now belongs to somebody else.

Thread safety
-------------
All pool state is guarded by one re-entrant lock. Several graphs on the same
device may allocate concurrently; separate devices use separate pools and
never contend.
"""

from __future__ import annotations

import bisect
import collections
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ...domain._errors import DisposedAccessError, OutOfMemoryError
from ...domain._status import Allocation, StepStatus
from ...domain.device._device_protocol import DeviceLike
from ._backends import ArrayBackend, make_backend

logger = logging.getLogger(__name__)

_ALIGNMENT = 256


@dataclass(frozen=True)
class BufferHandle:
    """
    Lightweight reference to a pool slot.

    Attributes
    ----------
    device : DeviceLike
        Device whose pool issued the handle.
    slot : int
        Slot index inside the pool.
    generation : int
        Slot generation at acquisition time.
    """

    device: DeviceLike
    slot: int
    generation: int


@dataclass
class _Block:
    nbytes: int
    raw: Any


@dataclass
class _Slot:
    block: Optional[_Block] = None
    generation: int = 0
    refcount: int = 0


@dataclass(frozen=True)
class PoolStats:
    """
    Snapshot of pool counters.
    """

    allocation_count: int
    reuse_count: int
    outstanding_bytes: int
    reserved_bytes: int
    free_block_count: int
    live_buffers: int


def _round_up(nbytes: int) -> int:
    n = max(int(nbytes), 1)
    return ((n + _ALIGNMENT - 1) // _ALIGNMENT) * _ALIGNMENT


class DeviceAllocatorPool:
    """
    Caching allocator for one device.

    Parameters
    ----------
    device : DeviceLike
        Device this pool serves.
    backend : Optional[ArrayBackend]
        Array backend used for physical allocations. Built from `device` when
        omitted.
    memory_limit : Optional[int]
        Hard cap on reserved bytes. When omitted, the cap is
        `memory_usage_ratio * backend.total_memory()` if the backend reports
        its capacity, otherwise unlimited.
    memory_usage_ratio : float
        Fraction of device memory the pool may reserve. Must be in (0, 1].

    Notes
    -----
    Reserved bytes include cached free blocks. Free blocks are only returned to
    the device by `empty_cache()`, `reset()` or `teardown()`.
    """

    def __init__(
        self,
        device: DeviceLike,
        backend: Optional[ArrayBackend] = None,
        *,
        memory_limit: Optional[int] = None,
        memory_usage_ratio: float = 0.95,
    ) -> None:
        if not 0.0 < float(memory_usage_ratio) <= 1.0:
            raise ValueError(
                f"memory_usage_ratio must be in (0, 1], got {memory_usage_ratio}"
            )
        if memory_limit is not None and int(memory_limit) <= 0:
            raise ValueError(f"memory_limit must be positive, got {memory_limit}")

        self.device = device
        self.backend = backend if backend is not None else make_backend(device)

        if memory_limit is not None:
            self.memory_limit: Optional[int] = int(memory_limit)
        else:
            total = self.backend.total_memory()
            self.memory_limit = (
                int(total * float(memory_usage_ratio)) if total is not None else None
            )

        self._lock = threading.RLock()
        self._slots: List[_Slot] = []
        self._free_slots: List[int] = []
        self._free_blocks: Dict[int, List[_Block]] = {}
        self._free_sizes: List[int] = []
        self._pending: collections.deque = collections.deque()
        self._closed = False

        self.allocation_count = 0
        self.reuse_count = 0
        self.outstanding_bytes = 0
        self.reserved_bytes = 0

    def __repr__(self) -> str:
        return (
            f"DeviceAllocatorPool(device={self.device}, reserved={self.reserved_bytes}, "
            f"outstanding={self.outstanding_bytes}, limit={self.memory_limit})"
        )

    @property
    def xp(self) -> Any:
        return self.backend.xp

    # ------------------------------------------------------------------
    # acquire / release
    # ------------------------------------------------------------------
    def acquire(self, nbytes: int) -> BufferHandle:
        """
        Acquire a buffer of at least `nbytes` bytes.

        The smallest cached free block that fits is reused when available;
        otherwise a new block is allocated from the device.

        Raises
        ------
        OutOfMemoryError
            If a new allocation would exceed the pool limit or the device
            reports it is out of memory.
        DisposedAccessError
            If the pool was torn down.
        """
        size = _round_up(nbytes)
        with self._lock:
            self._check_open()
            self._drain_pending()

            block = self._take_free_block(size)
            if block is not None:
                self.reuse_count += 1
            else:
                block = self._allocate_block(size)

            if self._free_slots:
                index = self._free_slots.pop()
                slot = self._slots[index]
            else:
                index = len(self._slots)
                slot = _Slot()
                self._slots.append(slot)

            slot.block = block
            slot.refcount = 1
            self.outstanding_bytes += block.nbytes
            return BufferHandle(self.device, index, slot.generation)

    def try_acquire(self, nbytes: int) -> Allocation:
        """
        Acquire a buffer, reporting out-of-memory as an explicit result.
        """
        try:
            handle = self.acquire(nbytes)
        except OutOfMemoryError as e:
            return Allocation(status=StepStatus.OOM, error=e)
        return Allocation(status=StepStatus.SUCCEED, handle=handle)

    def retain(self, handle: BufferHandle) -> None:
        """
        Register one more alias of a live buffer.
        """
        with self._lock:
            slot = self._live_slot(handle)
            slot.refcount += 1

    def release(self, handle: BufferHandle) -> None:
        """
        Drop one reference to a buffer.

        When the last reference is dropped the block goes back to the free
        list and the slot generation is advanced, invalidating `handle`.
        """
        with self._lock:
            self._release_locked(handle)

    def release_later(self, handle: BufferHandle) -> None:
        """
        Queue a release to be applied on the next acquire.

        Used by garbage-collection finalizers, which may run at any point,
        including while this thread is inside a locked pool method.
        """
        self._pending.append(handle)

    def resolve(self, handle: BufferHandle) -> Any:
        """
        Return the raw byte array behind a live handle.

        Raises
        ------
        DisposedAccessError
            If the handle's buffer has been released.
        """
        with self._lock:
            return self._live_slot(handle).block.raw

    def capacity(self, handle: BufferHandle) -> int:
        """
        Return the size in bytes of the block behind a live handle.
        """
        with self._lock:
            return self._live_slot(handle).block.nbytes

    def is_live(self, handle: BufferHandle) -> bool:
        with self._lock:
            if handle.slot >= len(self._slots):
                return False
            slot = self._slots[handle.slot]
            return slot.block is not None and slot.generation == handle.generation

    def refcount(self, handle: BufferHandle) -> int:
        with self._lock:
            return self._live_slot(handle).refcount

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------
    def empty_cache(self) -> int:
        """
        Physically free every cached free block.

        Returns
        -------
        int
            Number of bytes returned to the device.
        """
        with self._lock:
            freed = self._detach_free_blocks()
            self.backend.release_cached()
            if freed:
                logger.debug("Released %d cached bytes on '%s'", freed, self.device)
            return freed

    def reset(self) -> None:
        """
        Invalidate every live handle and free all device memory.

        Any tensor still referencing this pool raises `DisposedAccessError` on
        its next access.
        """
        with self._lock:
            for index, slot in enumerate(self._slots):
                if slot.block is not None:
                    self.reserved_bytes -= slot.block.nbytes
                    slot.block.raw = None
                    slot.block = None
                    slot.refcount = 0
                    slot.generation += 1
                    self._free_slots.append(index)
            self._pending.clear()
            self.outstanding_bytes = 0
            freed = self._detach_free_blocks()
            self.backend.release_cached()
            logger.debug("Reset pool for '%s' (%d cached bytes released)", self.device, freed)

    def teardown(self) -> None:
        """
        Reset the pool and refuse further allocations.
        """
        with self._lock:
            if self._closed:
                return
            self.reset()
            self._closed = True
            logger.debug(
                "Allocator pool for '%s' torn down after %d allocations",
                self.device,
                self.allocation_count,
            )

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> PoolStats:
        with self._lock:
            self._drain_pending()
            return PoolStats(
                allocation_count=self.allocation_count,
                reuse_count=self.reuse_count,
                outstanding_bytes=self.outstanding_bytes,
                reserved_bytes=self.reserved_bytes,
                free_block_count=sum(len(b) for b in self._free_blocks.values()),
                live_buffers=sum(1 for s in self._slots if s.block is not None),
            )

    # ------------------------------------------------------------------
    # internals (lock held)
    # ------------------------------------------------------------------
    def _check_open(self) -> None:
        if self._closed:
            raise DisposedAccessError(f"allocator pool for '{self.device}'")

    def _live_slot(self, handle: BufferHandle) -> _Slot:
        if handle.device != self.device:
            raise ValueError(
                f"Handle for '{handle.device}' used with pool for '{self.device}'"
            )
        if handle.slot >= len(self._slots):
            raise DisposedAccessError(f"buffer slot {handle.slot} on '{self.device}'")
        slot = self._slots[handle.slot]
        if slot.block is None or slot.generation != handle.generation:
            raise DisposedAccessError(
                f"buffer slot {handle.slot} (generation {handle.generation}) "
                f"on '{self.device}'"
            )
        return slot

    def _release_locked(self, handle: BufferHandle) -> None:
        slot = self._live_slot(handle)
        slot.refcount -= 1
        if slot.refcount > 0:
            return

        block = slot.block
        slot.block = None
        slot.generation += 1
        self._free_slots.append(handle.slot)
        self.outstanding_bytes -= block.nbytes
        self._put_free_block(block)

    def _drain_pending(self) -> None:
        while self._pending:
            handle = self._pending.popleft()
            if self.is_live(handle):
                self._release_locked(handle)

    def _take_free_block(self, size: int) -> Optional[_Block]:
        pos = bisect.bisect_left(self._free_sizes, size)
        if pos == len(self._free_sizes):
            return None
        found = self._free_sizes[pos]
        blocks = self._free_blocks[found]
        block = blocks.pop()
        if not blocks:
            del self._free_blocks[found]
            self._free_sizes.pop(pos)
        return block

    def _put_free_block(self, block: _Block) -> None:
        blocks = self._free_blocks.get(block.nbytes)
        if blocks is None:
            self._free_blocks[block.nbytes] = [block]
            bisect.insort(self._free_sizes, block.nbytes)
        else:
            blocks.append(block)

    def _detach_free_blocks(self) -> int:
        # raw arrays must be unreferenced before the backend flushes its cache
        freed = 0
        for blocks in self._free_blocks.values():
            for block in blocks:
                freed += block.nbytes
                block.raw = None
        self._free_blocks.clear()
        self._free_sizes.clear()
        self.reserved_bytes -= freed
        return freed

    def _allocate_block(self, size: int) -> _Block:
        if (
            self.memory_limit is not None
            and self.reserved_bytes + size > self.memory_limit
        ):
            raise OutOfMemoryError(
                str(self.device),
                size,
                reserved=self.reserved_bytes,
                limit=self.memory_limit,
            )

        try:
            raw = self.backend.allocate(size)
        except MemoryError as e:
            raise OutOfMemoryError(
                str(self.device), size, reserved=self.reserved_bytes
            ) from e

        self.allocation_count += 1
        self.reserved_bytes += size
        logger.debug(
            "Allocated %d bytes on '%s' (reserved=%d)",
            size,
            self.device,
            self.reserved_bytes,
        )
        return _Block(nbytes=size, raw=raw)
