"""
Shared wiring for catalog operations.

Every functional entry point in the catalog funnels through `apply()`, which
validates device placement, builds the `Context`, runs the `Function`'s
forward pass under the graph's device and hands the result to the graph,
which wraps it in a node and records the tape entry when a gradient is
needed.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Type

from ...domain._errors import DeviceMismatchError
from ...domain._function import Function
from ..autograd._context import Context
from ..autograd._weight import WeightNode


def check_devices(graph: Any, nodes: Sequence[WeightNode], op: str) -> None:
    for n in nodes:
        # retired nodes keep their storage until the pending tape replays
        device = n._value.device if n._retired and not n._disposed else n.device
        if device != graph.device:
            raise DeviceMismatchError(str(graph.device), str(device), op)


def apply(
    graph: Any,
    fn: Type[Function],
    op_name: str,
    parents: Sequence[WeightNode],
    *args: Any,
    inputs: Optional[Sequence[Any]] = None,
    name: Optional[str] = None,
    **kwargs: Any,
) -> WeightNode:
    """
    Run `fn.forward` on the parents' values and emit the output node.

    Parameters
    ----------
    graph : ComputeGraph | SubgraphScope
        Scope that will own the output node.
    fn : Type[Function]
        Operation implementation.
    op_name : str
        Name recorded on the tape and used for automatic node names.
    parents : Sequence[WeightNode]
        Nodes that receive gradients from this operation.
    *args, **kwargs
        Extra non-tensor arguments forwarded to `fn.forward`.
    inputs : Optional[Sequence[Tensor]]
        Tensors passed to `fn.forward` instead of the parents' values.
    name : Optional[str]
        Explicit output node name.
    """
    graph._check_usable()
    check_devices(graph, parents, op_name)

    values = tuple(p.value for p in parents) if inputs is None else tuple(inputs)
    ctx = Context(parents=tuple(parents))
    with graph.activate():
        out = fn.forward(ctx, *values, *args, **kwargs)
    ctx.backward_fn = lambda grad_out: fn.backward(ctx, grad_out)
    return graph._emit(op_name, ctx, out, name=name)
