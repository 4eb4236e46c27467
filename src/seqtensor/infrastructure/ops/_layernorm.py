"""
Layer normalization over the last dimension.

For an input x of shape (..., D):

    mean  = mean(x, axis=-1)
    var   = var(x, axis=-1)
    x_hat = (x - mean) / sqrt(var + eps)
    y     = gamma * x_hat + beta

Backward (per row, with dx_hat = g * gamma):

    dbeta  = sum(g) over leading axes
    dgamma = sum(g * x_hat) over leading axes
    dx     = inv_std / D * (D * dx_hat - sum(dx_hat) - x_hat * sum(dx_hat * x_hat))

Normalization statistics are recomputed from the saved input in backward
rather than kept alive between passes.
"""

from __future__ import annotations

from typing import Any, Optional

from ...domain._function import Function
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor
from ..tensor.mixins._nn import normalize_last_dim
from ._base import apply


class LayerNormFn(Function):
    @staticmethod
    def forward(ctx, x: Tensor, gamma: Tensor, beta: Tensor, eps: float) -> Tensor:
        out = x.layer_norm(gamma, beta, eps)
        ctx.save_for_backward(x, gamma)
        ctx.saved_meta["eps"] = float(eps)
        ctx.saved_meta["beta_shape"] = beta.shape
        return out

    @staticmethod
    def backward(ctx, grad_out: Any) -> tuple:
        x, gamma = ctx.saved_tensors
        xp = x.xp
        x_hat, inv_std = normalize_last_dim(xp, x.data, ctx.saved_meta["eps"])

        g = grad_out.astype(xp.float32)
        d = x_hat.shape[-1]
        lead = tuple(range(g.ndim - 1))

        grad_gamma = (g * x_hat).sum(axis=lead).reshape(gamma.shape)
        grad_beta = g.sum(axis=lead).reshape(ctx.saved_meta["beta_shape"])

        dx_hat = g * gamma.data.reshape(-1).astype(xp.float32)
        grad_x = (inv_std / d) * (
            d * dx_hat
            - dx_hat.sum(axis=-1, keepdims=True)
            - x_hat * (dx_hat * x_hat).sum(axis=-1, keepdims=True)
        )
        return grad_x, grad_gamma, grad_beta


def layer_norm(
    graph: Any,
    x: WeightNode,
    gamma: WeightNode,
    beta: WeightNode,
    eps: float = 1e-6,
    *,
    name: Optional[str] = None,
) -> WeightNode:
    """
    Normalize `x` over its last dimension and apply ``gamma * x_hat + beta``.

    Parameters
    ----------
    gamma, beta : WeightNode
        Affine parameters with ``x.shape[-1]`` elements (e.g. shape
        ``(1, dim)``).
    eps : float
        Variance stabilizer.
    """
    return apply(graph, LayerNormFn, "layer_norm", (x, gamma, beta), eps, name=name)
