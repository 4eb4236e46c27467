"""
Compute graph state definitions.

A compute graph is in exactly one of three modes:

- `RECORDING`: forward pass with gradients wanted; operations append
  backward closures to the tape.
- `REPLAYING`: inside `backward()`; the tape is consumed in reverse.
- `INERT`: inference-only; nothing is recorded. Selected at construction and
  never left.

Transitions: RECORDING -> REPLAYING on `backward()`, REPLAYING -> RECORDING
once the tape is cleared.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from .device._device_protocol import DeviceLike


class GraphMode(Enum):
    RECORDING = "recording"
    REPLAYING = "replaying"
    INERT = "inert"


@runtime_checkable
class IComputeGraph(Protocol):
    """
    Structural contract of a compute graph as seen by neural units.
    """

    @property
    def device(self) -> DeviceLike: ...

    @property
    def mode(self) -> GraphMode: ...

    @property
    def needs_gradient(self) -> bool: ...

    def backward(self) -> None: ...

    def create_subgraph(self, label: str) -> "IComputeGraph": ...

    def dispose(self) -> None: ...
