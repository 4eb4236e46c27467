"""
Shape operations: concat, view, expand, transpose.

`view`, `expand` and `transpose` return aliases of their input's buffer; only
`concat` copies. Backward rules:

- concat:    split the output gradient along `dim`
- view:      reshape the gradient back to the input shape
- expand:    sum the gradient over the broadcast dimensions
- transpose: transpose the gradient
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from ...domain._errors import ShapeMismatchError
from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._shape import sum_to_shape
from ..tensor._tensor import Tensor
from ._base import apply


class ConcatFn(Function):
    @staticmethod
    def forward(ctx, *tensors: Tensor, dim: int) -> Tensor:
        out = Tensor.concat(tensors, dim)
        ctx.saved_meta["dim"] = dim
        ctx.saved_meta["sizes"] = [t.shape[dim] for t in tensors]
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        dim = ctx.saved_meta["dim"]
        grads = []
        start = 0
        for size in ctx.saved_meta["sizes"]:
            index = [slice(None)] * grad_out.ndim
            index[dim] = slice(start, start + size)
            grads.append(grad_out[tuple(index)])
            start += size
        return tuple(grads)


class ViewFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, shape: Sequence[int]) -> Tensor:
        ctx.saved_meta["shape"] = x.shape
        src = x.contiguous()
        try:
            return src.view(shape)
        finally:
            src.dispose()

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return (grad_out.reshape(ctx.saved_meta["shape"]),)


class ExpandFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, dims: Sequence[int]) -> Tensor:
        ctx.saved_meta["shape"] = x.shape
        ctx.saved_meta["xp"] = x.xp
        return x.expand(dims)

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return (sum_to_shape(ctx.saved_meta["xp"], grad_out, ctx.saved_meta["shape"]),)


class TransposeFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor) -> Tensor:
        return x.transpose()

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return (grad_out.swapaxes(-1, -2),)


def concat(
    graph: Any, nodes: Sequence[WeightNode], dim: int = 0, *, name: Optional[str] = None
) -> WeightNode:
    """
    Concatenate nodes along `dim` into a new node.
    """
    nodes = tuple(nodes)
    if not nodes:
        raise ShapeMismatchError("concat", "expected at least one input")
    return apply(graph, ConcatFn, "concat", nodes, dim=int(dim), name=name)


def view(
    graph: Any, x: WeightNode, shape: Sequence[int], *, name: Optional[str] = None
) -> WeightNode:
    """
    Reshape `x`. One dimension may be ``-1``.

    A non-contiguous input is copied first; a contiguous one is aliased.
    """
    return apply(graph, ViewFn, "view", (x,), tuple(shape), name=name)


def expand(
    graph: Any, x: WeightNode, dims: Sequence[int], *, name: Optional[str] = None
) -> WeightNode:
    """
    Broadcast size-1 dimensions of `x` to `dims` without copying.
    """
    return apply(graph, ExpandFn, "expand", (x,), tuple(dims), name=name)


def transpose(graph: Any, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    """
    Swap the last two dimensions of `x` without copying.
    """
    return apply(graph, TransposeFn, "transpose", (x,), name=name)
