"""
Neural unit capability contract.

Client networks are built from a closed set of unit kinds. Each kind is a
concrete class that satisfies `INeuralUnit`; callers dispatch on the
capability (parameters, replication, persistence) rather than on a class
hierarchy.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Protocol, runtime_checkable

from .device._device_protocol import DeviceLike
from ._weight import IWeightNode


class NeuralUnitKind(Enum):
    """
    Closed set of unit kinds known to the engine.
    """

    FEED_FORWARD = "feed_forward"
    LAYER_NORM = "layer_norm"
    EMBEDDING = "embedding"


@runtime_checkable
class INeuralUnit(Protocol):
    """
    Capability trait shared by all neural units.

    Notes
    -----
    - `get_params()` returns the unit's persistent weight nodes in a stable
      order; names are unique per unit.
    - `clone_to_device()` builds a replica with identically named parameters
      holding copies of the current values on another device.
    """

    kind: NeuralUnitKind
    name: str

    @property
    def device(self) -> DeviceLike: ...

    def get_params(self) -> List[IWeightNode]: ...

    def clone_to_device(self, device: DeviceLike) -> "INeuralUnit": ...

    def save(self, container: Any) -> None: ...

    def load(self, container: Any) -> None: ...
