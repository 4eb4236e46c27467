"""
Neural-network kernels for `Tensor`: softmax, layer normalization and
activations.

Reductions are accumulated in float32 regardless of the tensor dtype.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ....domain._errors import ShapeMismatchError

if TYPE_CHECKING:
    from .._tensor import Tensor


def normalize_last_dim(xp: Any, x: Any, eps: float) -> tuple[Any, Any]:
    """
    Normalize `x` over its last dimension.

    Returns
    -------
    (x_hat, inv_std)
        `x_hat` has the shape of `x`; `inv_std` keeps a trailing size-1 dim.
    """
    x = x.astype(xp.float32)
    mean = x.mean(axis=-1, keepdims=True)
    xc = x - mean
    var = (xc * xc).mean(axis=-1, keepdims=True)
    inv_std = 1.0 / xp.sqrt(var + float(eps))
    return xc * inv_std, inv_std


def check_affine_param(op: str, x_shape: tuple, p: "Tensor") -> None:
    dim = x_shape[-1]
    if p.numel() != dim or p.shape[-1] != dim:
        raise ShapeMismatchError(
            op,
            f"affine parameter shape {p.shape} does not match last dim {dim} "
            f"of input {x_shape}",
            expected=(1, dim),
            actual=p.shape,
        )


class TensorNNMixin:
    def softmax(self: "Tensor") -> "Tensor":
        """
        Row-wise softmax over the last dimension.

        The row maximum is subtracted before exponentiation.
        """
        if self.ndim < 1:
            raise ShapeMismatchError("softmax", "expected at least 1 dimension")
        xp = self.xp
        out = self._new(self.shape)
        with self.activate():
            x = self.data.astype(xp.float32)
            e = xp.exp(x - x.max(axis=-1, keepdims=True))
            out.data[...] = e / e.sum(axis=-1, keepdims=True)
        return out

    def layer_norm(
        self: "Tensor", gamma: "Tensor", beta: "Tensor", eps: float = 1e-6
    ) -> "Tensor":
        """
        Layer normalization over the last dimension with affine transform.

        Parameters
        ----------
        gamma, beta : Tensor
            Scale and shift with `self.shape[-1]` elements, e.g. shape
            ``(1, dim)``.
        eps : float
            Variance stabilizer.
        """
        if self.ndim < 1:
            raise ShapeMismatchError("layer_norm", "expected at least 1 dimension")
        for p in (gamma, beta):
            self._check_same_device(p, "layer_norm")
            check_affine_param("layer_norm", self.shape, p)

        out = self._new(self.shape)
        with self.activate():
            x_hat, _ = normalize_last_dim(self.xp, self.data, eps)
            out.data[...] = x_hat * gamma.data.reshape(-1) + beta.data.reshape(-1)
        return out

    def relu(self: "Tensor") -> "Tensor":
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.xp.maximum(self.data, 0)
        return out

    def sigmoid(self: "Tensor") -> "Tensor":
        out = self._new(self.shape)
        xp = self.xp
        with self.activate():
            # tanh form stays finite for large |x|
            out.data[...] = 0.5 * (xp.tanh(0.5 * self.data.astype(xp.float32)) + 1.0)
        return out

    def tanh(self: "Tensor") -> "Tensor":
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.xp.tanh(self.data)
        return out
