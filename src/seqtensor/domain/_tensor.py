"""
Tensor interface definitions.

This module defines the domain-level interface for tensor-like objects using
structural typing. Concrete tensors are strided views over allocator-pool
buffers; the protocol captures the surface that graphs, weight nodes and
serialization rely on.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from .device._device_protocol import DeviceLike


@runtime_checkable
class ITensor(Protocol):
    """
    Tensor interface.

    An `ITensor` is a shaped, strided view over a device buffer. Several
    tensors may alias one buffer; each holds its own reference and releases it
    through `dispose()`.
    """

    @property
    def shape(self) -> tuple[int, ...]: ...

    @property
    def strides(self) -> tuple[int, ...]: ...

    @property
    def device(self) -> DeviceLike: ...

    @property
    def dtype(self) -> Any: ...

    @property
    def is_disposed(self) -> bool: ...

    def numel(self) -> int: ...

    def get_at(self, index: Sequence[int]) -> float: ...

    def set_at(self, index: Sequence[int], value: float) -> None: ...

    def to_numpy(self) -> Any: ...

    def copy_from_numpy(self, arr: Any) -> None: ...

    def dispose(self) -> None: ...
