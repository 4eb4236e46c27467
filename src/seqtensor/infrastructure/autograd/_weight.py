"""
Concrete weight node implementation.

A `WeightNode` pairs a value tensor with a lazily allocated gradient tensor
and the training metadata the optimizer reads. Every operation input and
output on a compute graph is a weight node.

Ownership
---------
A node created through a graph scope is *bound* to it: the scope's factory
tracks it and releases it when the scope is disposed. `unbind_from_graph()`
detaches a node so it outlives the scope. Persistent parameters (the trainable
weights of neural units) are created unbound.

Retirement
----------
When a scope is disposed while the shared tape still references one of its
nodes, the node is *retired*: client access raises `DisposedAccessError`
immediately, but its tensors stay alive for the reverse replay and are
released once the tape is cleared.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import numpy as np

from ...domain._errors import DisposedAccessError, ShapeMismatchError
from ...domain.device._device_protocol import DeviceLike
from ..tensor._tensor import Tensor

if TYPE_CHECKING:
    from ._factory import WeightFactory


class WeightNode:
    """
    Value/gradient tensor pair.

    Parameters
    ----------
    name : str
        Node name. Unique among the live nodes of one graph and used as the
        key for serialization and gradient aggregation.
    value : Tensor
        Value tensor. The node takes ownership and disposes it.
    is_trainable : bool
        Whether an optimizer updates this node.
    learning_rate_factor : float
        Multiplier applied to the optimizer learning rate for this node.
    needs_gradient : Optional[bool]
        Whether the reverse replay accumulates a gradient into this node.
        Defaults to `is_trainable`.
    """

    def __init__(
        self,
        name: str,
        value: Tensor,
        *,
        is_trainable: bool = False,
        learning_rate_factor: float = 1.0,
        needs_gradient: Optional[bool] = None,
    ) -> None:
        self.name = str(name)
        self.is_trainable = bool(is_trainable)
        self.learning_rate_factor = float(learning_rate_factor)
        self._needs_gradient = (
            self.is_trainable if needs_gradient is None else bool(needs_gradient)
        )

        self._value: Optional[Tensor] = value
        self._gradient: Optional[Tensor] = None
        self._owner: Optional["WeightFactory"] = None
        self._retired = False
        self._disposed = False

        # producing operation, used for cross-op gradient routing
        self.creator_op: Optional[str] = None
        self.creator_ctx: Any = None

    def __repr__(self) -> str:
        state = ""
        if self._disposed:
            state = ", disposed"
        elif self._retired:
            state = ", retired"
        return (
            f"WeightNode(name={self.name!r}, shape={self._shape_or_none()}, "
            f"trainable={self.is_trainable}{state})"
        )

    def _shape_or_none(self) -> Optional[tuple[int, ...]]:
        return None if self._value is None else self._value.shape

    # ------------------------------------------------------------------
    # access
    # ------------------------------------------------------------------
    def _check_alive(self) -> None:
        if self._disposed or self._retired:
            raise DisposedAccessError(f"weight node '{self.name}'")

    @property
    def value(self) -> Tensor:
        self._check_alive()
        return self._value

    @property
    def gradient(self) -> Optional[Tensor]:
        self._check_alive()
        return self._gradient

    @property
    def shape(self) -> tuple[int, ...]:
        return self.value.shape

    @property
    def device(self) -> DeviceLike:
        return self.value.device

    @property
    def dtype(self) -> np.dtype:
        return self.value.dtype

    @property
    def needs_gradient(self) -> bool:
        return self._needs_gradient

    @property
    def is_bound(self) -> bool:
        return self._owner is not None

    @property
    def is_disposed(self) -> bool:
        return self._disposed or self._retired

    def to_numpy(self) -> np.ndarray:
        return self.value.to_numpy()

    def gradient_to_numpy(self) -> Optional[np.ndarray]:
        g = self.gradient
        return None if g is None else g.to_numpy()

    # ------------------------------------------------------------------
    # gradients
    # ------------------------------------------------------------------
    def ensure_gradient(self) -> Tensor:
        """
        Return the gradient tensor, allocating it zero-filled on first touch.
        """
        self._check_alive()
        return self._ensure_gradient()

    def _ensure_gradient(self) -> Tensor:
        if self._gradient is None:
            v = self._value
            self._gradient = Tensor.zeros(v.shape, v.device, v.context, v.dtype)
        return self._gradient

    def seed_gradient(self, values: Any = 1.0) -> None:
        """
        Overwrite the gradient with `values` (a scalar or a host array).
        """
        g = self.ensure_gradient()
        if np.ndim(values) == 0:
            g.fill(float(values))
        else:
            g.copy_from_numpy(values)

    def zero_gradient(self) -> None:
        """
        Reset an allocated gradient to zero. A missing gradient stays missing.
        """
        self._check_alive()
        if self._gradient is not None:
            self._gradient.fill(0.0)

    def _accumulate(self, grad: Any) -> None:
        """
        Add a device array into the gradient.

        Used by the reverse replay; works on retired nodes.
        """
        v = self._value
        if tuple(grad.shape) != v.shape:
            raise ShapeMismatchError(
                "backward",
                f"gradient shape {tuple(grad.shape)} does not match node "
                f"'{self.name}' shape {v.shape}",
                expected=v.shape,
                actual=grad.shape,
            )
        g = self._ensure_gradient()
        with g.activate():
            g.data[...] += grad

    # ------------------------------------------------------------------
    # graph binding / lifetime
    # ------------------------------------------------------------------
    def unbind_from_graph(self) -> None:
        """
        Detach the node from its graph scope so scope disposal keeps it.

        The caller becomes responsible for calling `dispose()`.
        """
        if self._owner is not None:
            self._owner.forget(self)

    def _retire(self) -> None:
        self._retired = True

    def _release(self) -> None:
        for t in (self._value, self._gradient):
            if t is not None:
                t.dispose()
        self._disposed = True

    def dispose(self) -> None:
        """
        Release the value and gradient tensors. Idempotent.
        """
        if self._disposed:
            return
        if self._owner is not None:
            self._owner.forget(self)
        self._release()

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def save(self, container: Any) -> None:
        """
        Store the value under this node's name.
        """
        container.put(self.name, self.value.to_numpy())

    def load(self, container: Any) -> None:
        """
        Overwrite the value from the entry stored under this node's name.

        Raises
        ------
        KeyError
            If the container has no entry for this name.
        ShapeMismatchError
            If the stored shape differs from the node shape.
        """
        arr = container.get(self.name)
        if tuple(arr.shape) != self.shape:
            raise ShapeMismatchError(
                "load",
                f"stored shape {tuple(arr.shape)} for '{self.name}' does not match "
                f"node shape {self.shape}",
                expected=self.shape,
                actual=arr.shape,
            )
        self.value.copy_from_numpy(arr)
