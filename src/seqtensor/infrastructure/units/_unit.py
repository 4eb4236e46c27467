"""
Shared parameter bookkeeping for neural units.

A unit owns a small ordered set of persistent weight nodes, named
``"<unit name>.<parameter>"``. The helpers here cover the capabilities every
unit kind exposes: parameter listing, cross-device cloning, persistence and
disposal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from typing_extensions import Self

from ...domain._neural_unit import NeuralUnitKind
from ...domain.device._device_protocol import DeviceLike
from ..autograd._factory import create_parameter
from ..autograd._weight import WeightNode


class NeuralUnit(ABC):
    """
    Base class holding a unit's persistent parameters.

    Parameters
    ----------
    context : DeviceContext
        Initialized device context.
    device : DeviceLike
        Device the parameters live on.
    name : str
        Unit name; prefixes every parameter name.
    """

    kind: NeuralUnitKind

    def __init__(self, context: Any, device: DeviceLike, name: str) -> None:
        self.context = context
        self._device = device
        self.name = str(name)
        self._params: Dict[str, WeightNode] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, device={self._device})"

    @property
    def device(self) -> DeviceLike:
        return self._device

    def _add_param(
        self,
        key: str,
        shape: Sequence[int],
        *,
        initializer: str,
        rng: Optional[np.random.Generator],
        learning_rate_factor: float = 1.0,
    ) -> WeightNode:
        node = create_parameter(
            self.context,
            self._device,
            f"{self.name}.{key}",
            shape,
            initializer=initializer,
            learning_rate_factor=learning_rate_factor,
            rng=rng,
        )
        self._params[key] = node
        return node

    def get_params(self) -> List[WeightNode]:
        return list(self._params.values())

    def named_params(self) -> Dict[str, WeightNode]:
        """
        Map full parameter name to node.
        """
        return {p.name: p for p in self._params.values()}

    @abstractmethod
    def get_config(self) -> Dict[str, Any]:
        """
        Return the constructor keyword arguments that rebuild this unit.
        """
        ...

    def clone_to_device(self, device: DeviceLike) -> Self:
        """
        Build a replica of this unit on `device` with copied parameter values.
        """
        clone = type(self)(self.context, device, **self.get_config())
        for key, node in self._params.items():
            clone._params[key].value.copy_from(node.value, allow_cross_device=True)
        return clone

    def save(self, container: Any) -> None:
        for p in self._params.values():
            p.save(container)

    def load(self, container: Any) -> None:
        for p in self._params.values():
            p.load(container)

    def dispose(self) -> None:
        for p in self._params.values():
            p.dispose()
