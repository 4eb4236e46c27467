"""
Weight node interface definitions.

A weight node pairs a value tensor with an optional gradient tensor and the
training metadata an optimizer needs (trainability, learning-rate factor).
Weight nodes are what graph operations consume and produce.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ._tensor import ITensor
from .device._device_protocol import DeviceLike


@runtime_checkable
class IWeightNode(Protocol):
    """
    Domain-level interface for value/gradient tensor pairs.

    Notes
    -----
    - `name` is unique within a graph and is the key used by serialization
      and gradient aggregation.
    - `gradient` is None until the first backward touch.
    """

    name: str
    is_trainable: bool
    learning_rate_factor: float

    @property
    def value(self) -> ITensor: ...

    @property
    def gradient(self) -> Optional[ITensor]: ...

    @property
    def shape(self) -> tuple[int, ...]: ...

    @property
    def device(self) -> DeviceLike: ...

    def zero_gradient(self) -> None: ...

    def unbind_from_graph(self) -> None: ...

    def dispose(self) -> None: ...
