from __future__ import annotations

from typing import Any, Dict

from ...domain._neural_unit import NeuralUnitKind
from ...domain.device._device_protocol import DeviceLike
from ..autograd._weight import WeightNode
from ._unit import NeuralUnit


class LayerNormalization(NeuralUnit):
    """
    Layer normalization over the last dimension with learnable scale and shift.

    Parameters are ``"<name>.alpha"`` (ones) and ``"<name>.beta"`` (zeros),
    both of shape ``(1, dim)``.
    """

    kind = NeuralUnitKind.LAYER_NORM

    def __init__(
        self,
        context: Any,
        device: DeviceLike,
        name: str,
        dim: int,
        *,
        eps: float = 1e-6,
    ) -> None:
        if dim <= 0:
            raise ValueError("dim must be a positive integer")
        super().__init__(context, device, name)
        self.dim = int(dim)
        self.eps = float(eps)

        self.alpha = self._add_param("alpha", (1, self.dim), initializer="ones", rng=None)
        self.beta = self._add_param("beta", (1, self.dim), initializer="zeros", rng=None)

    def get_config(self) -> Dict[str, Any]:
        return {"name": self.name, "dim": self.dim, "eps": self.eps}

    def forward(self, graph: Any, x: WeightNode) -> WeightNode:
        return graph.layer_norm(x, self.alpha, self.beta, self.eps)

    __call__ = forward
