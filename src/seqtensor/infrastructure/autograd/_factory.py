"""
Weight node factory.

Each graph scope owns one `WeightFactory` that creates the scope's nodes and
remembers them so the scope can release them in bulk. Node names are checked
against a registry shared by the root graph and all of its subgraphs.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from ...domain.device._device_protocol import DeviceLike
from ..tensor._tensor import Tensor
from ._initializers import WeightInitializer
from ._weight import WeightNode


class WeightFactory:
    """
    Creates and tracks the weight nodes bound to one graph scope.

    Parameters
    ----------
    names : Dict[str, WeightNode]
        Name registry shared across the root graph and its subgraphs.
    """

    def __init__(self, names: Dict[str, WeightNode]) -> None:
        self._names = names
        self._nodes: Dict[int, WeightNode] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def nodes(self) -> List[WeightNode]:
        return list(self._nodes.values())

    def track(self, node: WeightNode) -> WeightNode:
        """
        Bind `node` to this factory.

        Raises
        ------
        ValueError
            If another live node of the same graph already uses the name.
        """
        if node.name in self._names:
            raise ValueError(f"Duplicate weight node name '{node.name}'")
        self._names[node.name] = node
        self._nodes[id(node)] = node
        node._owner = self
        return node

    def forget(self, node: WeightNode) -> None:
        self._nodes.pop(id(node), None)
        if self._names.get(node.name) is node:
            del self._names[node.name]
        node._owner = None

    def create(
        self,
        name: str,
        value: Tensor,
        *,
        is_trainable: bool = False,
        learning_rate_factor: float = 1.0,
        needs_gradient: Optional[bool] = None,
    ) -> WeightNode:
        """
        Wrap `value` in a new node bound to this factory.

        The value tensor is disposed if the name is rejected.
        """
        node = WeightNode(
            name,
            value,
            is_trainable=is_trainable,
            learning_rate_factor=learning_rate_factor,
            needs_gradient=needs_gradient,
        )
        try:
            return self.track(node)
        except ValueError:
            value.dispose()
            raise

    def release(self, keep_alive: Callable[[WeightNode], bool]) -> List[WeightNode]:
        """
        Release every tracked node.

        Nodes for which `keep_alive(node)` is true are retired instead of
        released and returned to the caller, which must release them later.
        """
        retired: List[WeightNode] = []
        for node in self.nodes():
            self.forget(node)
            if keep_alive(node):
                node._retire()
                retired.append(node)
            else:
                node._release()
        return retired


def create_parameter(
    context: Any,
    device: DeviceLike,
    name: str,
    shape: Sequence[int],
    *,
    initializer: str = "xavier",
    is_trainable: bool = True,
    learning_rate_factor: float = 1.0,
    rng: Optional[np.random.Generator] = None,
    dtype: Optional[object] = None,
) -> WeightNode:
    """
    Create a persistent, unbound parameter node.

    Parameters
    ----------
    context : DeviceContext
        Initialized device context.
    device : DeviceLike
        Device to place the parameter on.
    name : str
        Parameter name.
    shape : Sequence[int]
        Parameter shape.
    initializer : str
        Registered initializer name (see `WeightInitializer.available()`).
    rng : Optional[np.random.Generator]
        Random generator; a fresh default generator when omitted.

    Returns
    -------
    WeightNode
        A node owned by the caller; it is never released by graph disposal.
    """
    init = WeightInitializer(initializer)
    value = Tensor.allocate(shape, device, context, dtype)
    try:
        init(value, rng if rng is not None else np.random.default_rng())
    except BaseException:
        value.dispose()
        raise
    return WeightNode(
        name,
        value,
        is_trainable=is_trainable,
        learning_rate_factor=learning_rate_factor,
    )
