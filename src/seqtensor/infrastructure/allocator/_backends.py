"""
Device array backends.

An array backend supplies raw device memory and the array module used to
compute on it:

- `HostArrayBackend`: NumPy arrays in host memory (`cpu:<n>` devices).
- `CudaArrayBackend`: CuPy arrays on a CUDA device (`cuda:<n>` devices).

Raw memory is always handed out as a 1-D `uint8` array of the requested byte
size; tensors reinterpret it with their element dtype and build strided views
on top.

Notes
-----
CuPy is imported lazily the first time a CUDA backend is constructed. When it
is not installed, or the device is not present, construction raises
`DeviceNotSupportedError` so host-only processes never need it.
"""

from __future__ import annotations

import contextlib
import os
from typing import Any, Optional

import numpy as np

from ...domain._errors import DeviceNotSupportedError
from ...domain.device._device_protocol import DeviceLike


class ArrayBackend:
    """
    Base class for device array backends.

    Subclasses bind an array module (`xp`) and implement raw allocation,
    host transfer and the few array primitives that differ between NumPy and
    CuPy.
    """

    xp: Any = np

    def __init__(self, device: DeviceLike) -> None:
        self.device = device

    def allocate(self, nbytes: int) -> Any:
        """
        Allocate `nbytes` of raw device memory.

        Raises
        ------
        MemoryError
            If the device cannot satisfy the request.
        """
        raise NotImplementedError

    def release_cached(self) -> None:
        """
        Return memory of unreferenced raw allocations to the device.

        Called by the pool after it has dropped its references to the blocks
        being freed.
        """
        return None

    def total_memory(self) -> Optional[int]:
        """
        Return the device's total memory in bytes, or None if unknown.
        """
        return None

    def activate(self) -> contextlib.AbstractContextManager:
        """
        Return a context manager that makes this backend's device current.
        """
        return contextlib.nullcontext()

    def to_host(self, arr: Any) -> np.ndarray:
        raise NotImplementedError

    def from_host(self, arr: np.ndarray) -> Any:
        raise NotImplementedError

    def scatter_add(self, target: Any, indices: Any, values: Any) -> None:
        """
        In-place `target[indices] += values` with accumulation on repeats.
        """
        raise NotImplementedError

    def uniform(self, shape: tuple[int, ...], rng: np.random.Generator) -> Any:
        """
        Draw float32 samples from U[0, 1) on the device.
        """
        raise NotImplementedError

    def synchronize(self) -> None:
        pass


class HostArrayBackend(ArrayBackend):
    """
    NumPy-backed host memory.
    """

    xp = np

    def allocate(self, nbytes: int) -> np.ndarray:
        return np.empty(int(nbytes), dtype=np.uint8)

    def total_memory(self) -> Optional[int]:
        try:
            return int(os.sysconf("SC_PAGE_SIZE")) * int(os.sysconf("SC_PHYS_PAGES"))
        except (AttributeError, ValueError, OSError):
            return None

    def to_host(self, arr: Any) -> np.ndarray:
        return np.array(arr, copy=True)

    def from_host(self, arr: np.ndarray) -> np.ndarray:
        return np.asarray(arr)

    def scatter_add(self, target: Any, indices: Any, values: Any) -> None:
        np.add.at(target, indices, values)

    def uniform(self, shape: tuple[int, ...], rng: np.random.Generator) -> np.ndarray:
        return rng.random(shape, dtype=np.float32)


class CudaArrayBackend(ArrayBackend):
    """
    CuPy-backed CUDA device memory.

    Parameters
    ----------
    device : DeviceLike
        A CUDA device descriptor; its index selects the physical GPU.

    Raises
    ------
    DeviceNotSupportedError
        If CuPy is not installed or the device index is not present.
    """

    def __init__(self, device: DeviceLike) -> None:
        super().__init__(device)
        try:
            import cupy
        except ImportError as e:
            raise DeviceNotSupportedError(
                "allocate", str(device), "Install the 'cupy' package for CUDA devices."
            ) from e

        try:
            count = int(cupy.cuda.runtime.getDeviceCount())
        except cupy.cuda.runtime.CUDARuntimeError as e:
            raise DeviceNotSupportedError("allocate", str(device), str(e)) from e

        if int(device.index) >= count:
            raise DeviceNotSupportedError(
                "allocate", str(device), f"Only {count} CUDA device(s) present."
            )

        self._cupy = cupy
        self.xp = cupy

    def activate(self) -> contextlib.AbstractContextManager:
        return self._cupy.cuda.Device(int(self.device.index))

    def allocate(self, nbytes: int) -> Any:
        cp = self._cupy
        with self.activate():
            try:
                return cp.empty(int(nbytes), dtype=cp.uint8)
            except cp.cuda.memory.OutOfMemoryError as e:
                raise MemoryError(str(e)) from e

    def release_cached(self) -> None:
        # unreferenced arrays sit in CuPy's own pool until flushed
        with self.activate():
            self._cupy.get_default_memory_pool().free_all_blocks()

    def total_memory(self) -> Optional[int]:
        with self.activate():
            _free, total = self._cupy.cuda.runtime.memGetInfo()
        return int(total)

    def to_host(self, arr: Any) -> np.ndarray:
        with self.activate():
            return self._cupy.asnumpy(arr)

    def from_host(self, arr: np.ndarray) -> Any:
        with self.activate():
            return self._cupy.asarray(arr)

    def scatter_add(self, target: Any, indices: Any, values: Any) -> None:
        import cupyx

        with self.activate():
            cupyx.scatter_add(target, indices, values)

    def uniform(self, shape: tuple[int, ...], rng: np.random.Generator) -> Any:
        host = rng.random(shape, dtype=np.float32)
        return self.from_host(host)

    def synchronize(self) -> None:
        with self.activate():
            self._cupy.cuda.Device(int(self.device.index)).synchronize()


def make_backend(device: DeviceLike) -> ArrayBackend:
    """
    Build the array backend matching a device descriptor.
    """
    if device.is_cpu():
        return HostArrayBackend(device)
    if device.is_cuda():
        return CudaArrayBackend(device)
    raise DeviceNotSupportedError("allocate", str(device))
