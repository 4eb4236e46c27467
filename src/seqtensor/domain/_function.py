"""
Differentiable operation contract.

Every catalog operation is a `Function` subclass with two static methods.
`forward` runs eagerly on tensor values and stashes whatever backward will
need on the tape entry's `Context`; `backward` later maps the gradient of
the single output to one gradient per parent node.

Gradients travel as raw device arrays (NumPy or CuPy), never as tensors, so
a replay allocates nothing from the pools.
"""

from abc import ABC, abstractmethod
from typing import Any


class Function(ABC):
    """
    Base class of tape-recorded operations.

    Notes
    -----
    - Both methods are static; per-call state lives on `ctx` only, so one
      class serves every graph and device concurrently.
    - Tensors placed in ``ctx.saved_tensors`` are borrowed from the parent
      or output nodes and must not be disposed by the operation.
    - Non-tensor data (shapes, indices, masks, scalars) goes into
      ``ctx.saved_meta``.
    """

    @staticmethod
    @abstractmethod
    def forward(ctx, *inputs: Any) -> Any:
        """
        Compute the output tensor from parent values and extra arguments.

        Returns
        -------
        Tensor
            A tensor owned by the caller; the graph wraps it in a node.
        """
        ...

    @staticmethod
    @abstractmethod
    def backward(ctx, grad_out: Any) -> tuple:
        """
        Map the output gradient array to parent gradient arrays.

        Returns
        -------
        tuple
            One entry per ``ctx.parents``, in order; None where a parent
            receives nothing.
        """
        ...
