"""
Activation functions.

Each activation saves its output and expresses the derivative in terms of it:

- relu:    g * (y > 0)
- sigmoid: g * y * (1 - y)
- tanh:    g * (1 - y^2)
"""

from __future__ import annotations

from typing import Any, Optional

from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ._base import apply


class ReluFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor) -> Tensor:
        out = x.relu()
        ctx.save_for_backward(out)
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        (y,) = ctx.saved_tensors
        return (grad_out * (y.data > 0),)


class SigmoidFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor) -> Tensor:
        out = x.sigmoid()
        ctx.save_for_backward(out)
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        (y,) = ctx.saved_tensors
        yd = y.data
        return (grad_out * yd * (1.0 - yd),)


class TanhFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor) -> Tensor:
        out = x.tanh()
        ctx.save_for_backward(out)
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        (y,) = ctx.saved_tensors
        yd = y.data
        return (grad_out * (1.0 - yd * yd),)


def relu(graph: Any, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, ReluFn, "relu", (x,), name=name)


def sigmoid(graph: Any, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, SigmoidFn, "sigmoid", (x,), name=name)


def tanh(graph: Any, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
    return apply(graph, TanhFn, "tanh", (x,), name=name)
