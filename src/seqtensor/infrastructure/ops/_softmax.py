"""
Row-wise softmax over the last dimension.

Forward subtracts each row's maximum before exponentiation. Backward uses
the saved output ``y``:

    dL/dx = y * (g - sum(g * y, axis=-1, keepdims=True))
"""

from __future__ import annotations

from typing import Any, Optional

from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ._base import apply


class SoftmaxFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor) -> Tensor:
        out = x.softmax()
        ctx.save_for_backward(out)
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        (y,) = ctx.saved_tensors
        xp = y.xp
        yd = y.data.astype(xp.float32)
        g = grad_out.astype(xp.float32)
        s = (g * yd).sum(axis=-1, keepdims=True)
        return (yd * (g - s),)


def softmax(graph: Any, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, SoftmaxFn, "softmax", (x,), name=name)
