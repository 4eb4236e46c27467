"""
Cross-entropy loss over class probabilities.

Given probabilities ``p`` of shape (N, V) and one target class per row:

    loss = -sum_i log(p[i, t_i])          (divided by N when avg_loss)

Rows whose target equals `ignore_index` contribute neither loss nor gradient.

Gradient routing
----------------
The loss is almost always applied to the output of `softmax`. In that case
the recorded tape entry routes its gradient straight to the softmax *input*
(the logits) as

    dL/dlogits = p - onehot(t)            (divided by N when avg_loss)

which is the exact derivative of the composed softmax + cross-entropy and
avoids the ill-conditioned ``-1/p`` term. The softmax entry itself then
receives no gradient through the loss.

When `p` was not produced by softmax, or its logits were already released
(closed scope with no pending tape entry), the same ``p - onehot(t)``
expression is delivered to `p` itself: the probabilities are treated as the
output of an implicit softmax.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ...domain._errors import ShapeMismatchError
from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ._base import apply

_TINY = float(np.finfo(np.float32).tiny)


class CrossEntropyLossFn(Function):
    @staticmethod
    def forward(
        ctx,
        probs: Tensor,
        targets: np.ndarray,
        avg_loss: bool,
        ignore_index: Optional[int],
    ) -> Tensor:
        n, v = probs.shape
        valid = np.ones(n, dtype=bool)
        if ignore_index is not None:
            valid = targets != int(ignore_index)
        kept = targets[valid]
        if kept.size and (kept.min() < 0 or kept.max() >= v):
            raise IndexError(
                f"cross_entropy_loss: target out of range [0, {v}): "
                f"min={kept.min()}, max={kept.max()}"
            )

        xp = probs.xp
        rows = np.nonzero(valid)[0]
        scale = 1.0 / n if avg_loss and n > 0 else 1.0

        with probs.activate():
            p = probs.data.astype(xp.float32)
            picked = p[xp.asarray(rows), xp.asarray(kept)]
            loss = -float(xp.log(xp.maximum(picked, _TINY)).sum()) * scale

        out = probs._new((1,))
        out.fill(loss)

        ctx.save_for_backward(probs)
        ctx.saved_meta["rows"] = rows
        ctx.saved_meta["targets"] = kept
        ctx.saved_meta["valid"] = valid
        ctx.saved_meta["scale"] = scale
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        (probs,) = ctx.saved_tensors
        xp = probs.xp
        meta = ctx.saved_meta

        grad = probs.data.astype(xp.float32)  # astype copies
        grad[xp.asarray(meta["rows"]), xp.asarray(meta["targets"])] -= 1.0
        invalid = ~meta["valid"]
        if invalid.any():
            grad[xp.asarray(np.nonzero(invalid)[0])] = 0.0
        grad *= grad_out.reshape(()).astype(xp.float32) * meta["scale"]
        return (grad,)


def cross_entropy_loss(
    graph: Any,
    probs: WeightNode,
    targets: Any,
    avg_loss: bool = False,
    ignore_index: Optional[int] = None,
    *,
    name: Optional[str] = None,
) -> WeightNode:
    """
    Negative log-likelihood of `targets` under row probabilities `probs`.

    Parameters
    ----------
    probs : WeightNode
        Probabilities of shape (batch, classes), usually a `softmax` output.
    targets : array-like of int
        One target class per row.
    avg_loss : bool
        Divide loss and gradient by the batch size.
    ignore_index : Optional[int]
        Target value marking rows to skip (e.g. padding).

    Returns
    -------
    WeightNode
        Single-element loss node of shape (1,).
    """
    value = probs.value
    if value.ndim != 2:
        raise ShapeMismatchError(
            "cross_entropy_loss",
            f"expected probabilities of shape (batch, classes), got {value.shape}",
            actual=value.shape,
        )
    t = np.asarray(targets, dtype=np.int64).reshape(-1)
    if t.size != value.shape[0]:
        raise ShapeMismatchError(
            "cross_entropy_loss",
            f"got {t.size} targets for batch of {value.shape[0]} rows",
            expected=(value.shape[0],),
            actual=(t.size,),
        )

    parents = (probs,)
    if probs.creator_op == "softmax" and probs.creator_ctx is not None:
        logits = probs.creator_ctx.parents[0]
        # released logits fall back to the implicit-softmax path
        if not logits._disposed:
            parents = (logits,)

    return apply(
        graph,
        CrossEntropyLossFn,
        "cross_entropy_loss",
        parents,
        t,
        bool(avg_loss),
        ignore_index,
        inputs=(value,),
        name=name,
    )
