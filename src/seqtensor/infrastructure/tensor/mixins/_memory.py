"""
Copy, fill and host-transfer methods for `Tensor`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from ....domain._errors import DeviceMismatchError, ShapeMismatchError

if TYPE_CHECKING:
    from .._tensor import Tensor


class TensorMemoryMixin:
    def to_numpy(self: "Tensor") -> np.ndarray:
        """
        Copy the tensor's elements into a new contiguous host array.
        """
        with self.activate():
            return self.pool.backend.to_host(self.data)

    def copy_from_numpy(self: "Tensor", arr: Any) -> None:
        """
        Overwrite the tensor's elements from a host array of the same shape.

        Raises
        ------
        ShapeMismatchError
            If `arr.shape` differs from the tensor shape.
        """
        a = np.asarray(arr)
        if tuple(a.shape) != self.shape:
            raise ShapeMismatchError(
                "copy_from_numpy",
                f"array shape {tuple(a.shape)} does not match tensor shape {self.shape}",
                expected=self.shape,
                actual=a.shape,
            )
        with self.activate():
            self.data[...] = self.pool.backend.from_host(
                a.astype(self.dtype, copy=False)
            )

    def copy_from(
        self: "Tensor", other: "Tensor", *, allow_cross_device: bool = False
    ) -> None:
        """
        Overwrite the tensor's elements from another tensor of the same shape.

        Parameters
        ----------
        other : Tensor
            Source tensor.
        allow_cross_device : bool
            Permit a copy between different devices (staged through host
            memory). Disallowed by default so that device placement mistakes
            surface as `DeviceMismatchError`.
        """
        if other.shape != self.shape:
            raise ShapeMismatchError(
                "copy_from",
                f"source shape {other.shape} does not match target shape {self.shape}",
                expected=self.shape,
                actual=other.shape,
            )
        if other.device != self.device:
            if not allow_cross_device:
                raise DeviceMismatchError(
                    str(self.device), str(other.device), "copy_from"
                )
            self.copy_from_numpy(other.to_numpy())
            return
        with self.activate():
            self.data[...] = other.data

    def fill(self: "Tensor", value: float) -> None:
        with self.activate():
            self.data[...] = value

    def clone(self: "Tensor") -> "Tensor":
        """
        Return a contiguous copy with its own buffer.
        """
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.data
        return out

    def contiguous(self: "Tensor") -> "Tensor":
        """
        Return a contiguous tensor with the same elements.

        An alias is returned when the tensor is already contiguous; otherwise
        the elements are copied. Either way the caller owns the result.
        """
        if self.is_contiguous():
            return self._alias(self.shape, self.strides, self.offset)
        return self.clone()

    @classmethod
    def concat(cls, tensors: Sequence["Tensor"], dim: int = 0) -> "Tensor":
        """
        Concatenate tensors along `dim` into a new tensor.

        All inputs must share device, dtype, rank and every dimension except
        `dim`.
        """
        if not tensors:
            raise ValueError("concat requires at least one tensor")
        first = tensors[0]
        if not 0 <= dim < first.ndim:
            raise ShapeMismatchError(
                "concat", f"dim {dim} out of range for shape {first.shape}"
            )
        for t in tensors[1:]:
            first._check_same_device(t, "concat")
            if t.ndim != first.ndim or any(
                a != b for i, (a, b) in enumerate(zip(t.shape, first.shape)) if i != dim
            ):
                raise ShapeMismatchError(
                    "concat",
                    f"shape {t.shape} incompatible with {first.shape} along dim {dim}",
                    expected=first.shape,
                    actual=t.shape,
                )

        shape = list(first.shape)
        shape[dim] = sum(t.shape[dim] for t in tensors)
        out = first._new(shape)
        xp = first.xp
        with first.activate():
            out.data[...] = xp.concatenate([t.data for t in tensors], axis=dim)
        return out
