"""
Stochastic Gradient Descent (SGD) optimizer.

The optimizer updates persistent weight nodes in-place on their own device
using the gradients accumulated by `ComputeGraph.backward()`.

Design notes
------------
- Nodes with no gradient, or that are not trainable, are skipped.
- Each node's effective learning rate is ``lr * node.learning_rate_factor``.
- Gradients are not cleared by `step()`. `backward()` zeroes them before each
  replay of the nodes it reaches; call `zero_grad()` when some parameters may
  sit out a pass, or `step()` applies their stale gradients again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from ..autograd._weight import WeightNode


@dataclass
class SGD:
    """
    Stochastic Gradient Descent optimizer over weight nodes.

    Update rule
    -----------
    For each trainable node ``p`` with gradient ``g``:

    - If ``clip_value`` is set: ``g <- clip(g, -clip_value, clip_value)``
    - If ``weight_decay > 0``: ``g <- g + weight_decay * p``
    - ``p <- p - lr * p.learning_rate_factor * g``

    Parameters
    ----------
    params : Sequence[WeightNode]
        Nodes to optimize.
    lr : float
        Base learning rate. Must be positive.
    weight_decay : float
        Classical (coupled) L2 coefficient. Must be non-negative.
    clip_value : Optional[float]
        Element-wise gradient clipping bound.
    """

    params: Sequence[WeightNode]
    lr: float = 1e-3
    weight_decay: float = 0.0
    clip_value: Optional[float] = None

    def __init__(
        self,
        params: Iterable[WeightNode],
        *,
        lr: float = 1e-3,
        weight_decay: float = 0.0,
        clip_value: Optional[float] = None,
    ) -> None:
        self.params = list(params)
        self.lr = float(lr)
        self.weight_decay = float(weight_decay)
        self.clip_value = None if clip_value is None else float(clip_value)

        if self.lr <= 0.0:
            raise ValueError(f"lr must be > 0, got {self.lr}")
        if self.weight_decay < 0.0:
            raise ValueError(f"weight_decay must be >= 0, got {self.weight_decay}")
        if self.clip_value is not None and self.clip_value <= 0.0:
            raise ValueError(f"clip_value must be > 0, got {self.clip_value}")

    def zero_grad(self) -> None:
        for p in self.params:
            p.zero_gradient()

    def step(self) -> None:
        """
        Apply one update to every trainable node that has a gradient.
        """
        for p in self.params:
            if not p.is_trainable:
                continue
            g_tensor = p.gradient
            if g_tensor is None:
                continue

            value = p.value
            with value.activate():
                xp = value.xp
                g = g_tensor.data
                if self.clip_value is not None:
                    g = xp.clip(g, -self.clip_value, self.clip_value)
                if self.weight_decay != 0.0:
                    g = g + self.weight_decay * value.data
                value.data[...] -= (self.lr * p.learning_rate_factor) * g
