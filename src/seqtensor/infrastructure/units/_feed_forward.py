"""
Fully connected layer.

Computes ``y = act(x @ W + b)`` on a graph scope, with ``W`` of shape
``(in_features, out_features)`` and ``b`` of shape ``(1, out_features)``
broadcast over the batch rows. An optional inverted dropout is applied to the
output while training.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np

from ...domain._neural_unit import NeuralUnitKind
from ...domain.device._device_protocol import DeviceLike
from ..autograd._weight import WeightNode
from ._unit import NeuralUnit

_ACTIVATIONS = ("relu", "sigmoid", "tanh")


class FeedForwardLayer(NeuralUnit):
    """
    Affine layer with an optional activation and dropout.

    Parameters
    ----------
    context : DeviceContext
        Initialized device context.
    device : DeviceLike
        Parameter device.
    name : str
        Unit name; parameters are named ``"<name>.W"`` and ``"<name>.b"``.
    in_features, out_features : int
        Input and output widths.
    activation : Optional[str]
        One of ``"relu"``, ``"sigmoid"``, ``"tanh"`` or None.
    dropout : float
        Drop probability applied to the output while training.
    rng : Optional[np.random.Generator]
        Generator for the weight initialization.
    """

    kind = NeuralUnitKind.FEED_FORWARD

    def __init__(
        self,
        context: Any,
        device: DeviceLike,
        name: str,
        in_features: int,
        out_features: int,
        *,
        activation: Optional[str] = None,
        dropout: float = 0.0,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if in_features <= 0 or out_features <= 0:
            raise ValueError("in_features and out_features must be positive integers")
        if activation is not None and activation not in _ACTIVATIONS:
            raise ValueError(
                f"Unknown activation {activation!r}; expected one of {_ACTIVATIONS}"
            )
        super().__init__(context, device, name)
        self.in_features = int(in_features)
        self.out_features = int(out_features)
        self.activation = activation
        self.dropout = float(dropout)

        self.W = self._add_param(
            "W", (self.in_features, self.out_features), initializer="xavier", rng=rng
        )
        self.b = self._add_param("b", (1, self.out_features), initializer="zeros", rng=rng)

    def get_config(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "in_features": self.in_features,
            "out_features": self.out_features,
            "activation": self.activation,
            "dropout": self.dropout,
        }

    def forward(self, graph: Any, x: WeightNode) -> WeightNode:
        """
        Apply the layer to a ``(batch, in_features)`` node.
        """
        h = graph.matmul(x, self.W)
        h = graph.add(h, graph.expand(self.b, h.shape))
        if self.activation is not None:
            h = getattr(graph, self.activation)(h)
        if self.dropout > 0.0:
            h = graph.dropout(h, self.dropout)
        return h

    __call__ = forward
