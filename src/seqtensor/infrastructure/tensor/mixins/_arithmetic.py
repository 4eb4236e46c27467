"""
Elementwise arithmetic and matrix products for `Tensor`.

Binary operations require equal shapes, except that the right operand may be
a single element, which is broadcast. Every method allocates a fresh output
from the device pool.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

from ....domain._errors import ShapeMismatchError
from .._shape import sum_to_shape

if TYPE_CHECKING:
    from .._tensor import Tensor


class TensorArithmeticMixin:
    def _rhs(self: "Tensor", other: "Tensor", op: str) -> Any:
        self._check_same_device(other, op)
        if other.shape == self.shape:
            return other.data
        if other.numel() == 1:
            return other.data.reshape(())
        raise ShapeMismatchError(
            op,
            f"operand shapes {self.shape} and {other.shape} are incompatible; "
            "expected equal shapes or a single-element right operand",
            expected=self.shape,
            actual=other.shape,
        )

    def add(self: "Tensor", other: "Tensor") -> "Tensor":
        rhs = self._rhs(other, "add")
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.data + rhs
        return out

    def sub(self: "Tensor", other: "Tensor") -> "Tensor":
        rhs = self._rhs(other, "sub")
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.data - rhs
        return out

    def mul(self: "Tensor", other: "Tensor") -> "Tensor":
        rhs = self._rhs(other, "mul")
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.data * rhs
        return out

    def mul_scalar(self: "Tensor", k: float) -> "Tensor":
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.data * float(k)
        return out

    def add_scalar(self: "Tensor", k: float) -> "Tensor":
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = self.data + float(k)
        return out

    def rsub_scalar(self: "Tensor", k: float) -> "Tensor":
        """
        Return ``k - self``.
        """
        out = self._new(self.shape)
        with self.activate():
            out.data[...] = float(k) - self.data
        return out

    def matmul(self: "Tensor", other: "Tensor") -> "Tensor":
        """
        Matrix product of 2-D tensors, or batched product of 3-D tensors.

        Shapes
        ------
        - ``(m, k) @ (k, n) -> (m, n)``
        - ``(b, m, k) @ (b, k, n) -> (b, m, n)``
        """
        self._check_same_device(other, "matmul")
        a, b = self.shape, other.shape
        if len(a) == 2 and len(b) == 2 and a[1] == b[0]:
            out_shape = (a[0], b[1])
        elif len(a) == 3 and len(b) == 3 and a[0] == b[0] and a[2] == b[1]:
            out_shape = (a[0], a[1], b[2])
        else:
            raise ShapeMismatchError(
                "matmul",
                f"incompatible shapes {a} and {b}; expected (m,k)@(k,n) or "
                "(b,m,k)@(b,k,n)",
                expected=a,
                actual=b,
            )
        out = self._new(out_shape)
        with self.activate():
            out.data[...] = self.xp.matmul(self.data, other.data)
        return out

    def sum_to_shape(self: "Tensor", shape: Sequence[int]) -> "Tensor":
        """
        Sum broadcast dimensions away so the result has `shape`.
        """
        shape = tuple(int(d) for d in shape)
        with self.activate():
            try:
                reduced = sum_to_shape(self.xp, self.data, shape)
            except ValueError as e:
                raise ShapeMismatchError("sum_to_shape", str(e)) from None
            out = self._new(shape)
            out.data[...] = reduced
        return out
