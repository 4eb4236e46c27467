"""
Row gather and masked fill.

`index_select` gathers rows along dimension 0 into a fresh tensor; backward
scatter-adds the output gradient into a zero tensor of the source shape, so
repeated indices accumulate (an embedding row looked up twice gets both
gradients).

`masked_fill` writes a constant wherever the mask is non-zero; the gradient
is blocked at masked positions.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ..tensor.mixins._indexing import as_row_indices
from ._base import apply


class IndexSelectFn(Function):
    @staticmethod
    def forward(ctx, a: Tensor, indices: Any) -> Tensor:
        idx = as_row_indices(indices, a.shape[0] if a.ndim else 0)
        out = a.index_select(idx)
        ctx.saved_meta["indices"] = idx
        ctx.saved_meta["shape"] = a.shape
        ctx.saved_meta["backend"] = a.pool.backend
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        backend = ctx.saved_meta["backend"]
        xp = backend.xp
        grad = xp.zeros(ctx.saved_meta["shape"], dtype=xp.float32)
        backend.scatter_add(
            grad, xp.asarray(ctx.saved_meta["indices"]), grad_out.astype(xp.float32)
        )
        return (grad,)


class MaskedFillFn(Function):
    @staticmethod
    def forward(ctx, a: Tensor, mask: Any, value: float) -> Tensor:
        out = a.masked_fill(mask, value)
        xp = a.xp
        ctx.saved_meta["mask"] = xp.asarray(mask) != 0
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        mask = ctx.saved_meta["mask"]
        return (grad_out * (~mask),)


def index_select(
    graph: Any, a: WeightNode, indices: Any, *, name: Optional[str] = None
) -> WeightNode:
    """
    Gather rows of `a` (dimension 0) by integer `indices`.

    Raises
    ------
    IndexError
        If an index is outside ``[0, a.shape[0])``.
    """
    return apply(graph, IndexSelectFn, "index_select", (a,), indices, name=name)


def masked_fill(
    graph: Any,
    a: WeightNode,
    mask: Any,
    value: float,
    *,
    name: Optional[str] = None,
) -> WeightNode:
    """
    Replace elements of `a` with `value` where `mask` is non-zero.

    Parameters
    ----------
    mask : WeightNode | array-like
        Mask with the shape of `a`. A node is read through its value and
        never receives a gradient.
    """
    if isinstance(mask, WeightNode):
        m = mask.value.data
    else:
        m = np.asarray(mask)
    return apply(graph, MaskedFillFn, "masked_fill", (a,), m, value, name=name)
