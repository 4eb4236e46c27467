"""
Matrix multiplication.

Supports plain 2-D products and batched 3-D products:

    (m, k) @ (k, n)       -> (m, n)
    (b, m, k) @ (b, k, n) -> (b, m, n)

Backward:

    dL/dA = dL/dC @ B^T
    dL/dB = A^T @ dL/dC
"""

from __future__ import annotations

from typing import Any, Optional

from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ._base import apply


class MatMulFn(Function):
    @staticmethod
    def forward(ctx, a: Tensor, b: Tensor) -> Tensor:
        out = a.matmul(b)
        ctx.save_for_backward(a, b)
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        a, b = ctx.saved_tensors
        xp = a.xp
        grad_a = xp.matmul(grad_out, b.data.swapaxes(-1, -2))
        grad_b = xp.matmul(a.data.swapaxes(-1, -2), grad_out)
        return grad_a, grad_b


def matmul(graph: Any, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    """
    Matrix product ``a @ b``.

    Raises
    ------
    ShapeMismatchError
        If inner dimensions (or batch sizes) do not agree.
    """
    return apply(graph, MatMulFn, "matmul", (a, b), name=name)
