"""
Aliasing views for `Tensor`.

Every method here returns a new `Tensor` that shares the source buffer. No
element is copied; writes through one alias are visible through all others.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from ....domain._errors import ShapeMismatchError
from .._shape import as_shape, contiguous_strides, infer_view_shape, numel

if TYPE_CHECKING:
    from .._tensor import Tensor


class TensorViewsMixin:
    def is_contiguous(self: "Tensor") -> bool:
        """
        Return True if elements are laid out densely in row-major order.
        """
        if self.numel() == 0:
            return True
        expected = 1
        for d, s in zip(reversed(self.shape), reversed(self.strides)):
            if d == 1:
                continue
            if s != expected:
                return False
            expected *= d
        return True

    def view(self: "Tensor", new_shape: Sequence[int]) -> "Tensor":
        """
        Reinterpret a contiguous tensor with a new shape.

        Parameters
        ----------
        new_shape : Sequence[int]
            Target shape. One entry may be ``-1`` and is inferred.

        Raises
        ------
        ShapeMismatchError
            If the element counts differ or the source is not contiguous.
        """
        total = self.numel()
        try:
            shape = infer_view_shape(new_shape, total)
        except ValueError as e:
            raise ShapeMismatchError("view", str(e), actual=self.shape) from None

        if numel(shape) != total:
            raise ShapeMismatchError(
                "view",
                f"cannot view {self.shape} ({total} elements) as {shape} "
                f"({numel(shape)} elements)",
                expected=self.shape,
                actual=shape,
            )
        if not self.is_contiguous():
            raise ShapeMismatchError(
                "view",
                f"source with shape {self.shape} and strides {self.strides} is "
                "not contiguous; call contiguous() first",
            )
        return self._alias(shape, contiguous_strides(shape), self.offset)

    def expand(self: "Tensor", dims: Sequence[int]) -> "Tensor":
        """
        Broadcast size-1 dimensions to `dims` without copying.

        Leading dimensions may be added. Broadcast dimensions get stride 0.
        """
        dims = as_shape(dims)
        lead = len(dims) - self.ndim
        if lead < 0:
            raise ShapeMismatchError(
                "expand",
                f"cannot expand {self.shape} to fewer dimensions {dims}",
                expected=self.shape,
                actual=dims,
            )

        strides = [0] * lead
        for d, s, st in zip(dims[lead:], self.shape, self.strides):
            if d == s:
                strides.append(st)
            elif s == 1:
                strides.append(0)
            else:
                raise ShapeMismatchError(
                    "expand",
                    f"cannot expand {self.shape} to {dims}; only size-1 dims broadcast",
                    expected=self.shape,
                    actual=dims,
                )
        return self._alias(dims, strides, self.offset)

    def narrow(self: "Tensor", dim: int, start: int, length: int) -> "Tensor":
        """
        Restrict dimension `dim` to ``[start, start + length)``.
        """
        if not 0 <= dim < self.ndim:
            raise ShapeMismatchError(
                "narrow", f"dim {dim} out of range for shape {self.shape}"
            )
        if start < 0 or length < 0 or start + length > self.shape[dim]:
            raise ShapeMismatchError(
                "narrow",
                f"range [{start}, {start + length}) out of bounds for dim {dim} "
                f"of size {self.shape[dim]}",
            )
        shape = list(self.shape)
        shape[dim] = int(length)
        return self._alias(shape, self.strides, self.offset + start * self.strides[dim])

    def transpose(self: "Tensor") -> "Tensor":
        """
        Swap the last two dimensions.
        """
        if self.ndim < 2:
            raise ShapeMismatchError(
                "transpose", f"expected at least 2 dimensions, got shape {self.shape}"
            )
        shape = list(self.shape)
        strides = list(self.strides)
        shape[-1], shape[-2] = shape[-2], shape[-1]
        strides[-1], strides[-2] = strides[-2], strides[-1]
        return self._alias(shape, strides, self.offset)
