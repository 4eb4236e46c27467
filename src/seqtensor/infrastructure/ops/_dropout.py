"""
Inverted dropout.

During training each element is kept with probability ``1 - ratio`` and
scaled by ``1 / (1 - ratio)``, so no rescaling is needed at inference time.
The same mask multiplies the gradient in backward. Outside training the
operation is an identity copy.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ._base import apply


class DropoutFn(Function):
    @staticmethod
    def forward(
        ctx, x: Tensor, ratio: float, training: bool, rng: np.random.Generator
    ) -> Tensor:
        if not training or ratio == 0.0:
            ctx.saved_meta["mask"] = None
            return x.clone()

        xp = x.xp
        keep = 1.0 - ratio
        u = x.pool.backend.uniform(x.shape, rng)
        mask = (u >= ratio).astype(xp.float32) / keep

        out = x._new(x.shape)
        out.data[...] = x.data * mask
        ctx.saved_meta["mask"] = mask
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        mask = ctx.saved_meta["mask"]
        if mask is None:
            return (grad_out,)
        return (grad_out * mask,)


def dropout(
    graph: Any,
    x: WeightNode,
    ratio: float,
    training: Optional[bool] = None,
    *,
    name: Optional[str] = None,
) -> WeightNode:
    """
    Apply inverted dropout.

    Parameters
    ----------
    ratio : float
        Drop probability in ``[0, 1)``.
    training : Optional[bool]
        Whether to drop elements. Defaults to True on recording graphs and
        False on inference-only graphs.
    """
    ratio = float(ratio)
    if not 0.0 <= ratio < 1.0:
        raise ValueError(f"Dropout ratio must be in [0, 1), got {ratio}")
    if training is None:
        training = graph.needs_gradient
    return apply(
        graph, DropoutFn, "dropout", (x,), ratio, bool(training), graph.rng, name=name
    )
