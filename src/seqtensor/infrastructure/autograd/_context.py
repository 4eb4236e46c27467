from typing import Any, Callable, Optional, Sequence
from dataclasses import dataclass, field

from ...domain._tensor import ITensor
from ...domain._weight import IWeightNode


@dataclass
class Context:
    """
    Backward context recorded for one operation on a compute graph's tape.

    A `Context` records the information required to compute gradients for an
    operation during the reverse replay.

    Attributes
    ----------
    parents : Sequence[IWeightNode]
        The weight nodes that receive gradients from this operation, in the
        order `backward_fn` returns them. Usually the operation's inputs; an
        operation may instead route its gradient to an upstream node (see
        cross-entropy over softmax probabilities).
    backward_fn : Callable[[Any], Sequence[Optional[Any]]]
        Maps the output gradient array to one gradient array (or None) per
        parent.
    saved_tensors : list[ITensor]
        Tensors saved during forward for use in backward (input values,
        outputs).
    saved_meta : dict[str, Any]
        Non-tensor metadata required for backward (shapes, indices, masks,
        scalars).

    Notes
    -----
    Saved tensors are borrowed, not owned: they belong to the nodes referenced
    by the tape entry and stay valid until the tape is cleared.
    """

    parents: Sequence["IWeightNode"]
    backward_fn: Optional[Callable[[Any], Sequence[Optional[Any]]]] = None
    saved_tensors: list["ITensor"] = field(default_factory=list)
    saved_meta: dict[str, Any] = field(default_factory=dict)

    def save_for_backward(self, *tensors: "ITensor") -> None:
        """
        Save tensors for use during the backward computation.

        Parameters
        ----------
        *tensors : Tensor
            Any number of tensors to be stored in `saved_tensors`.
        """
        self.saved_tensors.extend(tensors)
