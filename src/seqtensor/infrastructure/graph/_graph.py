"""
Tape-based compute graph and nested subgraph scopes.

`ComputeGraph` executes catalog operations eagerly and, in recording mode,
appends one tape entry per operation whose inputs need a gradient.
`backward()` first zeroes the existing gradients of the recorded inputs that no
entry produced (parameters and other leaves), then replays the tape in exact
reverse: for each entry whose output carries a gradient it calls the entry's
backward function and adds the returned arrays into the parents' gradients.
The tape is then cleared.

Scopes
------
`create_subgraph(label)` returns a `SubgraphScope` that shares the root's tape
but owns its own weight factory. Disposing the scope releases every node it
created that was not unbound. Nodes that the pending tape still references are
retired instead: they become inaccessible at once, and their tensors are
released when the root's tape is cleared by `backward()` (or the root is
disposed).

Modes
-----
- RECORDING: forward pass with gradients wanted.
- REPLAYING: inside `backward()`; recording is illegal.
- INERT: inference only (``needs_gradient=False``); nothing is recorded and
  `backward()` raises `GraphStateError`.

Out-of-memory checkpoints
-------------------------
`guarded(fn)` runs `fn` and converts `OutOfMemoryError` into a
`StepOutcome(status=OOM)` with a logged warning.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import warnings
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
from typing_extensions import Self

from ...domain._errors import GraphStateError, OutOfMemoryError
from ...domain._graph import GraphMode
from ...domain._status import StepOutcome, StepStatus
from ...domain.device._device_protocol import DeviceLike
from .. import ops
from ..autograd._context import Context
from ..autograd._factory import WeightFactory, create_parameter
from ..autograd._tape import Tape, TapeEntry
from ..autograd._weight import WeightNode
from ..tensor._tensor import Tensor

logger = logging.getLogger(__name__)


class _GraphScope:
    """
    Behavior shared by the root graph and its subgraph scopes.
    """

    def __init__(self, root: "ComputeGraph", label: str) -> None:
        self._root = root
        self.label = str(label)
        self._factory = WeightFactory(root._names)
        self._children: List["SubgraphScope"] = []
        self._disposed = False

    # ------------------------------------------------------------------
    # properties
    # ------------------------------------------------------------------
    @property
    def root(self) -> "ComputeGraph":
        return self._root

    @property
    def context(self) -> Any:
        return self._root._context

    @property
    def device(self) -> DeviceLike:
        return self._root._device

    @property
    def mode(self) -> GraphMode:
        return self._root._mode

    @property
    def needs_gradient(self) -> bool:
        return self._root._mode is not GraphMode.INERT

    @property
    def rng(self) -> np.random.Generator:
        return self._root._rng

    @property
    def is_disposed(self) -> bool:
        return self._disposed or self._root._disposed

    def nodes(self) -> List[WeightNode]:
        """
        Return the live nodes bound to this scope.
        """
        return self._factory.nodes()

    def activate(self) -> contextlib.AbstractContextManager:
        return self.context.pool(self.device).backend.activate()

    def _check_usable(self) -> None:
        if self.is_disposed:
            raise GraphStateError(f"Graph scope '{self.label}' is disposed")

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._disposed:
            self.dispose()

    # ------------------------------------------------------------------
    # recording
    # ------------------------------------------------------------------
    def _auto_name(self, op_name: str) -> str:
        n = next(self._root._counter)
        if self is self._root:
            return f"{op_name}_{n}"
        return f"{self.label}.{op_name}_{n}"

    def _emit(
        self, op_name: str, ctx: Context, value: Tensor, *, name: Optional[str] = None
    ) -> WeightNode:
        """
        Wrap an operation result in a node and record it when needed.
        """
        mode = self._root._mode
        if mode is GraphMode.REPLAYING:
            value.dispose()
            raise GraphStateError(f"Cannot run '{op_name}' while replaying the tape")

        needs = mode is GraphMode.RECORDING and any(
            p.needs_gradient for p in ctx.parents
        )
        node = self._factory.create(
            name if name is not None else self._auto_name(op_name),
            value,
            needs_gradient=needs,
        )
        node.creator_op = op_name
        node.creator_ctx = ctx
        if needs:
            self.record(op_name, ctx, node)
        return node

    def record(self, op_name: str, ctx: Context, output: WeightNode) -> None:
        """
        Append a tape entry. A no-op on inference-only graphs.

        Raises
        ------
        GraphStateError
            If the scope is disposed or the tape is being replayed.
        """
        self._check_usable()
        root = self._root
        if root._mode is GraphMode.INERT:
            return
        if root._mode is GraphMode.REPLAYING:
            raise GraphStateError(f"Cannot record '{op_name}' while replaying the tape")
        root._tape.append(TapeEntry(op_name, ctx, output))
        root._consumed = False

    # ------------------------------------------------------------------
    # node factory
    # ------------------------------------------------------------------
    def create_weight(
        self,
        name: Optional[str],
        shape: Sequence[int],
        fill: float = 0.0,
        *,
        is_trainable: bool = False,
        learning_rate_factor: float = 1.0,
        dtype: Optional[object] = None,
    ) -> WeightNode:
        """
        Create a node bound to this scope, filled with a constant.

        Parameters
        ----------
        name : Optional[str]
            Node name; generated when None.
        shape : Sequence[int]
            Node shape.
        fill : float
            Initial value of every element.
        is_trainable : bool
            Whether the node receives gradients and optimizer updates.
        """
        self._check_usable()
        value = Tensor.full(shape, fill, self.device, self.context, dtype)
        return self._factory.create(
            name if name is not None else self._auto_name("weight"),
            value,
            is_trainable=is_trainable,
            learning_rate_factor=learning_rate_factor,
        )

    def from_numpy(
        self,
        name: Optional[str],
        arr: Any,
        *,
        is_trainable: bool = False,
        learning_rate_factor: float = 1.0,
        dtype: Optional[object] = None,
    ) -> WeightNode:
        """
        Create a node bound to this scope from a host array.
        """
        self._check_usable()
        value = Tensor.from_numpy(arr, self.device, self.context, dtype)
        return self._factory.create(
            name if name is not None else self._auto_name("input"),
            value,
            is_trainable=is_trainable,
            learning_rate_factor=learning_rate_factor,
        )

    def create_parameter(
        self,
        name: str,
        shape: Sequence[int],
        *,
        initializer: str = "xavier",
        learning_rate_factor: float = 1.0,
        is_trainable: bool = True,
        dtype: Optional[object] = None,
    ) -> WeightNode:
        """
        Create a persistent parameter on this graph's device.

        The node is unbound: graph and scope disposal never release it.
        """
        self._check_usable()
        return create_parameter(
            self.context,
            self.device,
            name,
            shape,
            initializer=initializer,
            is_trainable=is_trainable,
            learning_rate_factor=learning_rate_factor,
            rng=self.rng,
            dtype=dtype,
        )

    def create_subgraph(self, label: str) -> "SubgraphScope":
        """
        Open a nested scope sharing this graph's tape.
        """
        self._check_usable()
        scope = SubgraphScope(self, label)
        self._children.append(scope)
        return scope

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def unbind(self, node: WeightNode) -> None:
        """
        Detach `node` from its scope so disposal keeps it alive.
        """
        node.unbind_from_graph()

    def release_intermediates(self) -> int:
        """
        Release every node of this scope that the pending tape does not use.

        Returns
        -------
        int
            Number of nodes released.
        """
        tape = self._root._tape
        released = 0
        for node in self._factory.nodes():
            if not tape.references(node):
                node.dispose()
                released += 1
        return released

    def guarded(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> StepOutcome:
        """
        Run `fn` as an out-of-memory checkpoint.

        Returns
        -------
        StepOutcome
            `SUCCEED` with `fn`'s return value, or `OOM` with the error.
        """
        try:
            value = fn(*args, **kwargs)
        except OutOfMemoryError as e:
            logger.warning("Out of memory in graph scope '%s': %s", self.label, e)
            return StepOutcome(status=StepStatus.OOM, error=e)
        return StepOutcome(status=StepStatus.SUCCEED, value=value)

    def backward(self, seed: Optional[WeightNode] = None) -> None:
        self._root.backward(seed)

    def _dispose_children(self) -> None:
        for child in list(self._children):
            if not child._disposed:
                child.dispose()
        self._children.clear()

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def add(self, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.add(self, a, b, name=name)

    def sub(self, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.sub(self, a, b, name=name)

    def mul(self, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.mul(self, a, b, name=name)

    def mul_scalar(self, a: WeightNode, k: float, *, name: Optional[str] = None) -> WeightNode:
        return ops.mul_scalar(self, a, k, name=name)

    def add_scalar(self, a: WeightNode, k: float, *, name: Optional[str] = None) -> WeightNode:
        return ops.add_scalar(self, a, k, name=name)

    def scalar_sub(self, k: float, a: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.scalar_sub(self, k, a, name=name)

    def matmul(self, a: WeightNode, b: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.matmul(self, a, b, name=name)

    def softmax(self, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.softmax(self, x, name=name)

    def index_select(self, a: WeightNode, indices: Any, *, name: Optional[str] = None) -> WeightNode:
        return ops.index_select(self, a, indices, name=name)

    def masked_fill(
        self, a: WeightNode, mask: Any, value: float, *, name: Optional[str] = None
    ) -> WeightNode:
        return ops.masked_fill(self, a, mask, value, name=name)

    def layer_norm(
        self,
        x: WeightNode,
        gamma: WeightNode,
        beta: WeightNode,
        eps: float = 1e-6,
        *,
        name: Optional[str] = None,
    ) -> WeightNode:
        return ops.layer_norm(self, x, gamma, beta, eps, name=name)

    def cross_entropy_loss(
        self,
        probs: WeightNode,
        targets: Any,
        avg_loss: bool = False,
        ignore_index: Optional[int] = None,
        *,
        name: Optional[str] = None,
    ) -> WeightNode:
        return ops.cross_entropy_loss(
            self, probs, targets, avg_loss, ignore_index, name=name
        )

    def dropout(
        self,
        x: WeightNode,
        ratio: float,
        training: Optional[bool] = None,
        *,
        name: Optional[str] = None,
    ) -> WeightNode:
        return ops.dropout(self, x, ratio, training, name=name)

    def concat(
        self, nodes: Sequence[WeightNode], dim: int = 0, *, name: Optional[str] = None
    ) -> WeightNode:
        return ops.concat(self, nodes, dim, name=name)

    def view(self, x: WeightNode, shape: Sequence[int], *, name: Optional[str] = None) -> WeightNode:
        return ops.view(self, x, shape, name=name)

    def expand(self, x: WeightNode, dims: Sequence[int], *, name: Optional[str] = None) -> WeightNode:
        return ops.expand(self, x, dims, name=name)

    def transpose(self, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.transpose(self, x, name=name)

    def relu(self, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.relu(self, x, name=name)

    def sigmoid(self, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.sigmoid(self, x, name=name)

    def tanh(self, x: WeightNode, *, name: Optional[str] = None) -> WeightNode:
        return ops.tanh(self, x, name=name)


class ComputeGraph(_GraphScope):
    """
    Root compute graph for one device.

    Parameters
    ----------
    context : DeviceContext
        Initialized device context providing the allocator pool.
    device : DeviceLike
        Device every node of this graph lives on.
    needs_gradient : bool
        True for a recording (training) graph, False for an inference-only
        graph.
    seed : Optional[int]
        Seed for the graph's random generator (dropout, parameter init).
    label : str
        Name used in logs and automatic node names.
    """

    def __init__(
        self,
        context: Any,
        device: DeviceLike,
        needs_gradient: bool = True,
        *,
        seed: Optional[int] = None,
        label: str = "root",
    ) -> None:
        context.pool(device)  # validate early

        self._context = context
        self._device = device
        self._mode = GraphMode.RECORDING if needs_gradient else GraphMode.INERT
        self._rng = np.random.default_rng(seed)
        self._names: Dict[str, WeightNode] = {}
        self._counter = itertools.count()
        self._tape = Tape()
        self._deferred: List[WeightNode] = []
        self._consumed = False
        super().__init__(self, label)

    def __repr__(self) -> str:
        return (
            f"ComputeGraph(device={self._device}, mode={self._mode.name}, "
            f"tape={len(self._tape)}, nodes={len(self._factory)})"
        )

    @property
    def tape_length(self) -> int:
        return len(self._tape)

    def backward(self, seed: Optional[WeightNode] = None) -> None:
        """
        Replay the tape in reverse and accumulate parameter gradients.

        Parameters
        ----------
        seed : Optional[WeightNode]
            Node whose gradient starts the replay. If it has no gradient yet it
            is seeded with ones. When omitted and no recorded output carries a
            gradient, the output of the last recorded operation is seeded with
            ones.

            Existing gradients of leaf inputs (parents that are not the output
            of a recorded entry, other than `seed`) are zeroed first, so each
            call yields the gradients of this pass only.

        Raises
        ------
        GraphStateError
            On an inference-only or disposed graph, during a replay, or when
            the tape was already replayed and nothing was recorded since.
        """
        self._check_usable()
        if self._mode is GraphMode.INERT:
            raise GraphStateError("backward() is not available on an inference-only graph")
        if self._mode is GraphMode.REPLAYING:
            raise GraphStateError("backward() is already running")
        if not self._tape:
            if self._consumed:
                raise GraphStateError(
                    "The tape was already replayed; run a new forward pass first"
                )
            return

        entries = self._tape.entries()
        self._clear_leaf_gradients(entries, seed)
        if seed is not None:
            if seed._gradient is None:
                seed._ensure_gradient().fill(1.0)
        elif not any(e.output._gradient is not None for e in entries):
            entries[-1].output._ensure_gradient().fill(1.0)

        self._mode = GraphMode.REPLAYING
        try:
            with self.activate():
                for entry in self._tape.reversed():
                    g = entry.output._gradient
                    if g is None:
                        continue
                    parents = entry.ctx.parents
                    grads = entry.ctx.backward_fn(g.data)
                    if len(grads) != len(parents):
                        raise RuntimeError(
                            f"'{entry.op_name}' returned {len(grads)} gradients "
                            f"for {len(parents)} parents"
                        )
                    for parent, grad in zip(parents, grads):
                        if grad is None or not parent.needs_gradient or parent._disposed:
                            continue
                        parent._accumulate(grad)
        finally:
            replayed = len(self._tape)
            self._tape.clear()
            self._mode = GraphMode.RECORDING
            self._consumed = True
            self._release_deferred()
        logger.debug("Replayed %d tape entries on '%s'", replayed, self._device)

    @staticmethod
    def _clear_leaf_gradients(entries: List[TapeEntry], seed: Optional[WeightNode]) -> None:
        # recorded outputs keep caller-provided seeds
        outputs = {id(e.output) for e in entries}
        if seed is not None:
            outputs.add(id(seed))
        for entry in entries:
            for parent in entry.ctx.parents:
                if id(parent) in outputs or parent._disposed:
                    continue
                if parent._gradient is not None:
                    parent._gradient.fill(0.0)

    def _release_deferred(self) -> None:
        for node in self._deferred:
            node._release()
        self._deferred.clear()

    def dispose(self) -> None:
        """
        Release every scope, node and pending tape entry of this graph.

        Unbound nodes (including persistent parameters) are left intact.
        """
        if self._disposed:
            return
        self._dispose_children()
        self._tape.clear()
        self._factory.release(lambda node: False)
        self._release_deferred()
        self._disposed = True


class SubgraphScope(_GraphScope):
    """
    Nested disposable recording context.

    Created by `create_subgraph()`; normally used as a context manager:

        with graph.create_subgraph("DecodeStep_3") as step:
            h = step.matmul(x, w)
            ...

    The scope shares the root's tape, mode and name registry.
    """

    def __init__(self, parent: _GraphScope, label: str) -> None:
        super().__init__(parent.root, label)
        self._parent = parent

    def __repr__(self) -> str:
        return f"SubgraphScope(label={self.label!r}, nodes={len(self._factory)})"

    @property
    def parent(self) -> _GraphScope:
        return self._parent

    def dispose(self) -> None:
        """
        Release this scope's nodes (and those of nested scopes).

        Nodes still referenced by the pending tape are retired and released
        after the next `backward()`.
        """
        if self._disposed:
            warnings.warn(
                f"Subgraph scope '{self.label}' was already disposed",
                RuntimeWarning,
                stacklevel=2,
            )
            return
        self._dispose_children()
        root = self._root
        retired = self._factory.release(root._tape.references)
        root._deferred.extend(retired)
        self._disposed = True
        if self in self._parent._children:
            self._parent._children.remove(self)
