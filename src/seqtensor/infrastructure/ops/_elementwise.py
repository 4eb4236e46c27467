"""
Elementwise arithmetic operations.

Binary operations take two nodes of equal shape; the right operand may also
be a single-element node, in which case it is broadcast in forward and
receives the summed gradient in backward.

Scalar operations take a Python number as the second argument. `scalar_sub`
computes ``k - a`` so that ``100 - x`` has a direct form, distinct from
``(-x) + 100``; both give the same gradient on ``x``.
"""

from __future__ import annotations

from typing import Any, Optional

from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ._base import apply


def _reduce_rhs(grad: Any, rhs_shape: tuple) -> Any:
    if tuple(grad.shape) == tuple(rhs_shape):
        return grad
    return grad.sum().reshape(rhs_shape)


class AddFn(Function):
    """
    ``out = a + b``; backward passes the output gradient through unchanged.
    """

    @staticmethod
    def forward(ctx, a: Tensor, b: Tensor) -> Tensor:
        ctx.saved_meta["b_shape"] = b.shape
        return a.add(b)

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return grad_out, _reduce_rhs(grad_out, ctx.saved_meta["b_shape"])


class SubFn(Function):
    @staticmethod
    def forward(ctx, a: Tensor, b: Tensor) -> Tensor:
        ctx.saved_meta["b_shape"] = b.shape
        return a.sub(b)

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return grad_out, _reduce_rhs(-grad_out, ctx.saved_meta["b_shape"])


class MulFn(Function):
    """
    Elementwise product.

    Backward:

        dL/da = g * b
        dL/db = g * a   (summed when `b` is a single element)
    """

    @staticmethod
    def forward(ctx, a: Tensor, b: Tensor) -> Tensor:
        ctx.save_for_backward(a, b)
        return a.mul(b)

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        a, b = ctx.saved_tensors
        bd = b.data if b.shape == a.shape else b.data.reshape(())
        return grad_out * bd, _reduce_rhs(grad_out * a.data, b.shape)


class MulScalarFn(Function):
    @staticmethod
    def forward(ctx, a: Tensor, k: float) -> Tensor:
        ctx.saved_meta["k"] = float(k)
        return a.mul_scalar(k)

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return (grad_out * ctx.saved_meta["k"],)


class AddScalarFn(Function):
    @staticmethod
    def forward(ctx, a: Tensor, k: float) -> Tensor:
        return a.add_scalar(k)

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return (grad_out,)


class ScalarSubFn(Function):
    """
    ``out = k - a``; backward negates the output gradient.
    """

    @staticmethod
    def forward(ctx, a: Tensor, k: float) -> Tensor:
        return a.rsub_scalar(k)

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        return (-grad_out,)


def add(graph: Any, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    """
    Elementwise sum ``a + b``.

    Parameters
    ----------
    graph : ComputeGraph | SubgraphScope
        Scope that owns the result.
    a, b : WeightNode
        Operands of equal shape, or `b` with a single element.
    name : Optional[str]
        Explicit name for the result node.

    Raises
    ------
    ShapeMismatchError
        If the shapes are incompatible.
    DeviceMismatchError
        If an operand is not on the graph's device.
    """
    return apply(graph, AddFn, "add", (a, b), name=name)


def sub(graph: Any, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, SubFn, "sub", (a, b), name=name)


def mul(graph: Any, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, MulFn, "mul", (a, b), name=name)


def mul_scalar(graph: Any, a: WeightNode, k: float, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, MulScalarFn, "mul_scalar", (a,), k, name=name)


def add_scalar(graph: Any, a: WeightNode, k: float, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, AddScalarFn, "add_scalar", (a,), k, name=name)


def scalar_sub(graph: Any, k: float, a: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    """
    Compute ``k - a``.
    """
    return apply(graph, ScalarSubFn, "scalar_sub", (a,), k, name=name)
