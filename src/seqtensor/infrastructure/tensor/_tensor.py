"""
Concrete Tensor implementation over allocator-pool buffers.

A `Tensor` is a shaped, strided view over one device buffer owned by a
`DeviceAllocatorPool`. It never owns raw memory itself: it holds a
`BufferHandle` and resolves it through the pool on every access, so a tensor
whose buffer was released (by its own `dispose()`, or by the pool being reset
or torn down) fails loudly with `DisposedAccessError` instead of reading
recycled memory.

Views
-----
`view`, `expand`, `narrow` and `transpose` return new `Tensor` objects that
alias the same buffer with different shape/strides/offset. Each alias retains
the buffer once; the block goes back to the pool when the last alias is
disposed.

Lifetime
--------
`dispose()` releases the tensor's reference immediately and is idempotent.
A tensor that is garbage-collected without being disposed queues its release
on the pool; the pool applies queued releases on its next acquire.

Design notes
------------
- Strides and offsets are measured in elements.
- The array module (`numpy` or `cupy`) comes from the pool's backend, so the
  same code computes on host and accelerator tensors.
- Compute, view and memory methods live in mixins under `mixins/`, mirroring
  the split between storage and behavior.
"""

from __future__ import annotations

import contextlib
import weakref
from typing import Any, Optional, Sequence

import numpy as np

from ...domain._errors import DeviceMismatchError, DisposedAccessError
from ...domain._tensor import ITensor
from ...domain.device._device_protocol import DeviceLike
from .._config import normalize_dtype
from ..allocator._pool import BufferHandle, DeviceAllocatorPool
from ._shape import as_shape, contiguous_strides, max_extent, numel
from .mixins import (
    TensorArithmeticMixin,
    TensorIndexingMixin,
    TensorMemoryMixin,
    TensorNNMixin,
    TensorViewsMixin,
)


class Tensor(
    TensorViewsMixin,
    TensorIndexingMixin,
    TensorMemoryMixin,
    TensorArithmeticMixin,
    TensorNNMixin,
    ITensor,
):
    """
    Strided tensor over a pooled device buffer.

    Parameters
    ----------
    context : DeviceContext
        Context that owns the pool the buffer came from.
    pool : DeviceAllocatorPool
        Pool that issued `handle`.
    handle : BufferHandle
        Buffer reference. The new tensor takes ownership of one reference.
    shape : tuple[int, ...]
        Tensor shape.
    strides : tuple[int, ...]
        Element strides, one per dimension.
    offset : int
        Element offset of index ``(0, ..., 0)`` inside the buffer.
    dtype : np.dtype
        Element type (float32 or float16).

    Notes
    -----
    Use `Tensor.allocate`, `Tensor.zeros`, `Tensor.full` or
    `Tensor.from_numpy` rather than calling the constructor directly.
    """

    def __init__(
        self,
        context: Any,
        pool: DeviceAllocatorPool,
        handle: BufferHandle,
        shape: Sequence[int],
        strides: Sequence[int],
        offset: int,
        dtype: np.dtype,
    ) -> None:
        self._context = context
        self._pool = pool
        self._handle = handle
        self._shape = tuple(int(d) for d in shape)
        self._strides = tuple(int(s) for s in strides)
        self._offset = int(offset)
        self._dtype = np.dtype(dtype)
        self._disposed = False
        self._finalizer = weakref.finalize(self, pool.release_later, handle)

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    @classmethod
    def _allocate_in(
        cls,
        context: Any,
        pool: DeviceAllocatorPool,
        shape: Sequence[int],
        dtype: np.dtype,
    ) -> "Tensor":
        shape = as_shape(shape)
        handle = pool.acquire(numel(shape) * dtype.itemsize)
        return cls(context, pool, handle, shape, contiguous_strides(shape), 0, dtype)

    @classmethod
    def allocate(
        cls,
        shape: Sequence[int],
        device: DeviceLike,
        context: Any,
        dtype: Optional[object] = None,
    ) -> "Tensor":
        """
        Allocate an uninitialized contiguous tensor from the device pool.

        Parameters
        ----------
        shape : Sequence[int]
            Tensor shape.
        device : DeviceLike
            Target device; must be configured on `context`.
        context : DeviceContext
            Initialized device context.
        dtype : optional
            Element type. Defaults to the context dtype.

        Raises
        ------
        OutOfMemoryError
            If the pool cannot satisfy the request.
        """
        dt = normalize_dtype(context.dtype if dtype is None else dtype)
        return cls._allocate_in(context, context.pool(device), shape, dt)

    @classmethod
    def zeros(
        cls,
        shape: Sequence[int],
        device: DeviceLike,
        context: Any,
        dtype: Optional[object] = None,
    ) -> "Tensor":
        t = cls.allocate(shape, device, context, dtype)
        t.fill(0.0)
        return t

    @classmethod
    def full(
        cls,
        shape: Sequence[int],
        value: float,
        device: DeviceLike,
        context: Any,
        dtype: Optional[object] = None,
    ) -> "Tensor":
        t = cls.allocate(shape, device, context, dtype)
        t.fill(value)
        return t

    @classmethod
    def from_numpy(
        cls,
        arr: Any,
        device: DeviceLike,
        context: Any,
        dtype: Optional[object] = None,
    ) -> "Tensor":
        """
        Allocate a tensor and copy a host array into it.
        """
        a = np.asarray(arr)
        t = cls.allocate(a.shape, device, context, dtype)
        t.copy_from_numpy(a)
        return t

    def _new(self, shape: Sequence[int], dtype: Optional[np.dtype] = None) -> "Tensor":
        """
        Allocate a fresh contiguous tensor on this tensor's device.
        """
        return type(self)._allocate_in(
            self._context, self._pool, shape, self._dtype if dtype is None else dtype
        )

    def _alias(
        self, shape: Sequence[int], strides: Sequence[int], offset: int
    ) -> "Tensor":
        """
        Build another view of this tensor's buffer.

        Raises
        ------
        ValueError
            If the view would address elements outside the buffer.
        """
        self._check_alive()
        capacity = self._pool.capacity(self._handle) // self._dtype.itemsize
        if max_extent(shape, strides, offset) > capacity:
            raise ValueError(
                f"View shape={tuple(shape)} strides={tuple(strides)} offset={offset} "
                f"exceeds buffer of {capacity} elements"
            )
        self._pool.retain(self._handle)
        return type(self)(
            self._context, self._pool, self._handle, shape, strides, offset, self._dtype
        )

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------
    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def strides(self) -> tuple[int, ...]:
        return self._strides

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def itemsize(self) -> int:
        return self._dtype.itemsize

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def device(self) -> DeviceLike:
        return self._pool.device

    @property
    def context(self) -> Any:
        return self._context

    @property
    def pool(self) -> DeviceAllocatorPool:
        return self._pool

    @property
    def handle(self) -> BufferHandle:
        return self._handle

    @property
    def xp(self) -> Any:
        """
        Array module (`numpy` or `cupy`) used for this tensor's device.
        """
        return self._pool.xp

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def numel(self) -> int:
        return numel(self._shape)

    def __repr__(self) -> str:
        state = ", disposed" if self._disposed else ""
        return (
            f"Tensor(shape={self._shape}, dtype={self._dtype.name}, "
            f"device={self.device}{state})"
        )

    # ------------------------------------------------------------------
    # storage access
    # ------------------------------------------------------------------
    def _check_alive(self) -> None:
        if self._disposed:
            raise DisposedAccessError(f"tensor {self._shape} on '{self.device}'")

    def _check_same_device(self, other: "Tensor", op: str) -> None:
        if other.device != self.device:
            raise DeviceMismatchError(str(self.device), str(other.device), op)

    @property
    def data(self) -> Any:
        """
        Strided device array aliasing this tensor's elements.

        Writes through the returned array modify the buffer (and therefore
        every other alias of it).

        Raises
        ------
        DisposedAccessError
            If this tensor was disposed or its buffer was invalidated.
        """
        self._check_alive()
        raw = self._pool.resolve(self._handle)
        typed = raw.view(self._dtype)
        itemsize = self._dtype.itemsize
        return self.xp.lib.stride_tricks.as_strided(
            typed[self._offset :],
            shape=self._shape,
            strides=tuple(s * itemsize for s in self._strides),
        )

    def activate(self) -> contextlib.AbstractContextManager:
        """
        Context manager that makes this tensor's device current.
        """
        return self._pool.backend.activate()

    # ------------------------------------------------------------------
    # lifetime
    # ------------------------------------------------------------------
    def dispose(self) -> None:
        """
        Release this tensor's buffer reference.

        Calling `dispose()` more than once is a no-op. Any later access
        through this tensor raises `DisposedAccessError`.
        """
        if self._disposed:
            return
        self._disposed = True
        self._finalizer.detach()
        if self._pool.is_live(self._handle):
            self._pool.release(self._handle)
