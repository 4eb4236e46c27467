"""
Embedding table.

Maps integer token ids to rows of a ``(vocab_size, dim)`` table via
`index_select`; repeated ids accumulate their gradients into the same row.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np

from ...domain._neural_unit import NeuralUnitKind
from ...domain.device._device_protocol import DeviceLike
from ..autograd._weight import WeightNode
from ._unit import NeuralUnit


class Embedding(NeuralUnit):
    kind = NeuralUnitKind.EMBEDDING

    def __init__(
        self,
        context: Any,
        device: DeviceLike,
        name: str,
        vocab_size: int,
        dim: int,
        *,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if vocab_size <= 0 or dim <= 0:
            raise ValueError("vocab_size and dim must be positive integers")
        super().__init__(context, device, name)
        self.vocab_size = int(vocab_size)
        self.dim = int(dim)

        self.table = self._add_param(
            "table", (self.vocab_size, self.dim), initializer="normal", rng=rng
        )

    def get_config(self) -> Dict[str, Any]:
        return {"name": self.name, "vocab_size": self.vocab_size, "dim": self.dim}

    def forward(self, graph: Any, ids: Any) -> WeightNode:
        """
        Look up the rows for `ids`.

        Raises
        ------
        IndexError
            If an id is outside ``[0, vocab_size)``.
        """
        return graph.index_select(self.table, ids)

    __call__ = forward
