"""
Element access and gather methods for `Tensor`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from ....domain._errors import ShapeMismatchError

if TYPE_CHECKING:
    from .._tensor import Tensor


def _check_index(shape: Sequence[int], index: Sequence[int]) -> tuple[int, ...]:
    idx = tuple(int(i) for i in index)
    if len(idx) != len(shape):
        raise IndexError(
            f"Expected {len(shape)} indices for shape {tuple(shape)}, got {len(idx)}"
        )
    for i, d in zip(idx, shape):
        if not 0 <= i < d:
            raise IndexError(f"Index {idx} out of bounds for shape {tuple(shape)}")
    return idx


def as_row_indices(indices: Any, rows: int) -> np.ndarray:
    """
    Normalize row indices to a validated 1-D int64 host array.
    """
    idx = np.asarray(indices, dtype=np.int64).reshape(-1)
    if idx.size and (idx.min() < 0 or idx.max() >= rows):
        raise IndexError(
            f"Row index out of range [0, {rows}): min={idx.min()}, max={idx.max()}"
        )
    return idx


class TensorIndexingMixin:
    def get_at(self: "Tensor", index: Sequence[int]) -> float:
        """
        Read one element by multi-index.
        """
        idx = _check_index(self.shape, index)
        with self.activate():
            return float(self.data[idx])

    def set_at(self: "Tensor", index: Sequence[int], value: float) -> None:
        """
        Write one element by multi-index.
        """
        idx = _check_index(self.shape, index)
        with self.activate():
            self.data[idx] = value

    def index_select(self: "Tensor", indices: Any) -> "Tensor":
        """
        Gather rows along dimension 0 into a new tensor.

        Parameters
        ----------
        indices : array-like of int
            Row indices; repeats are allowed.

        Returns
        -------
        Tensor
            Tensor of shape ``(len(indices),) + self.shape[1:]``.
        """
        if self.ndim < 1:
            raise ShapeMismatchError("index_select", "cannot gather from a scalar")
        idx = as_row_indices(indices, self.shape[0])
        out = self._new((int(idx.size),) + self.shape[1:])
        xp = self.xp
        with self.activate():
            out.data[...] = xp.take(self.data, xp.asarray(idx), axis=0)
        return out

    def masked_fill(self: "Tensor", mask: Any, value: float) -> "Tensor":
        """
        Return a copy with `value` written wherever `mask` is non-zero.

        `mask` must have the tensor's shape. It may be a `Tensor` on the same
        device or an array.
        """
        from .._tensor import Tensor

        if isinstance(mask, Tensor):
            self._check_same_device(mask, "masked_fill")
            m = mask.data
        else:
            m = mask
        if tuple(m.shape) != self.shape:
            raise ShapeMismatchError(
                "masked_fill",
                f"mask shape {tuple(m.shape)} does not match tensor shape {self.shape}",
                expected=self.shape,
                actual=m.shape,
            )
        out = self._new(self.shape)
        xp = self.xp
        with self.activate():
            out.data[...] = xp.where(xp.asarray(m) != 0, value, self.data)
        return out
