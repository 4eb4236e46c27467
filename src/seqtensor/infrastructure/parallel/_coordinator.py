"""
Data-parallel training across the devices of one `DeviceContext`.

`MultiDeviceCoordinator.replicate()` builds one replica of a unit (or a group
of units) per device. `run_parallel()` runs one worker thread per shard; each
worker builds its own recording graph on its device, calls the client step
function to obtain a loss node and replays the tape. Replicas never share
tensors, so workers need no locking beyond the per-device allocator pools.

Completion of every worker future is the barrier before
`aggregate_gradients()`, which sums (or averages) each parameter's gradient
over the shards that succeeded and writes the result into device 0's
replica. After the optimizer step on that replica, `broadcast_weights()`
copies its values to all other replicas.

A shard that runs out of memory is reported as `StepStatus.OOM`, logged, and
excluded from aggregation; the other shards are unaffected.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ...domain._errors import OutOfMemoryError
from ...domain._status import StepStatus
from ...domain.device._device_protocol import DeviceLike
from ..autograd._weight import WeightNode
from ..graph._graph import ComputeGraph

logger = logging.getLogger(__name__)

UnitGroup = Union[Any, Sequence[Any]]


@dataclass(frozen=True)
class ShardOutcome:
    """
    Result of one device worker.

    Attributes
    ----------
    device_index : int
        Position of the worker's device in the context's device list.
    status : StepStatus
        `SUCCEED` or `OOM`.
    cost : float
        Loss value of the shard (0.0 on failure).
    error : Optional[BaseException]
        The out-of-memory error on failure.
    """

    device_index: int
    status: StepStatus
    cost: float = 0.0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCEED


@dataclass
class ParallelStepResult:
    outcomes: List[ShardOutcome] = field(default_factory=list)
    total_cost: float = 0.0
    succeeded: int = 0

    @property
    def status(self) -> StepStatus:
        """
        `SUCCEED` only if every shard succeeded.
        """
        if self.succeeded == len(self.outcomes):
            return StepStatus.SUCCEED
        return StepStatus.OOM


def _as_units(group: UnitGroup) -> Tuple[Any, ...]:
    if isinstance(group, (list, tuple)):
        return tuple(group)
    return (group,)


class NetworkReplicas:
    """
    One replica of a unit group per device of `context`.

    Parameters
    ----------
    master : INeuralUnit | Sequence[INeuralUnit]
        Unit(s) living on the context's first device. They become replica 0
        and are used as is; every other device receives clones.
    context : DeviceContext
        Initialized device context.

    Raises
    ------
    ValueError
        If a master unit is not on the context's first device.
    """

    def __init__(self, master: UnitGroup, context: Any) -> None:
        self.context = context
        self._single = not isinstance(master, (list, tuple))
        units = _as_units(master)
        first = context.device_at(0)
        for u in units:
            if u.device != first:
                raise ValueError(
                    f"Master unit '{u.name}' is on {u.device}; expected {first}"
                )

        self._replicas: List[Tuple[Any, ...]] = [units]
        for device in context.devices[1:]:
            self._replicas.append(tuple(u.clone_to_device(device) for u in units))
        logger.debug("Replicated %d unit(s) over %d devices", len(units), len(self._replicas))

    def __len__(self) -> int:
        return len(self._replicas)

    @property
    def replicas(self) -> List[UnitGroup]:
        return [self.get_on_device(i) for i in range(len(self._replicas))]

    @property
    def master(self) -> UnitGroup:
        return self.get_on_device(0)

    def get_on_device(self, index: int) -> UnitGroup:
        """
        Return the replica living on the `index`-th device.
        """
        units = self._replicas[index]
        return units[0] if self._single else units

    def named_params(self, index: int) -> Dict[str, WeightNode]:
        out: Dict[str, WeightNode] = {}
        for u in self._replicas[index]:
            for p in u.get_params():
                out[p.name] = p
        return out

    def dispose(self) -> None:
        """
        Dispose every clone. The master units stay with the caller.
        """
        for units in self._replicas[1:]:
            for u in units:
                u.dispose()
        del self._replicas[1:]


class MultiDeviceCoordinator:
    """
    Fans shards out to one worker per device and merges their gradients.

    Parameters
    ----------
    context : DeviceContext
        Initialized device context whose device list defines the workers.
    seed : Optional[int]
        Base seed for the per-worker graphs (worker ``i`` uses ``seed + i``).
    """

    def __init__(self, context: Any, *, seed: Optional[int] = None) -> None:
        self.context = context
        self.seed = seed
        self._replicas: Optional[NetworkReplicas] = None
        self._last: Optional[ParallelStepResult] = None

    @property
    def num_devices(self) -> int:
        return len(self.context.devices)

    @property
    def replicas(self) -> NetworkReplicas:
        if self._replicas is None:
            raise RuntimeError("No network replicated yet; call replicate() first")
        return self._replicas

    def next_device(self) -> DeviceLike:
        """
        Round-robin device for placing a new unit.
        """
        return self.context.next_device()

    def replicate(self, master: UnitGroup) -> NetworkReplicas:
        """
        Build one replica of `master` per device.
        """
        if self._replicas is not None:
            self._replicas.dispose()
        self._replicas = NetworkReplicas(master, self.context)
        return self._replicas

    def get_on_device(self, index: int) -> UnitGroup:
        return self.replicas.get_on_device(index)

    # ------------------------------------------------------------------
    # parallel step
    # ------------------------------------------------------------------
    def _run_shard(
        self,
        index: int,
        step_fn: Callable[[ComputeGraph, int, Any], WeightNode],
        shard: Any,
    ) -> ShardOutcome:
        device = self.context.device_at(index)
        seed = None if self.seed is None else self.seed + index
        graph = ComputeGraph(
            self.context, device, needs_gradient=True, seed=seed, label=f"shard_{index}"
        )
        try:
            loss = step_fn(graph, index, shard)
            cost = float(np.sum(loss.to_numpy()))
            graph.backward(loss)
        except OutOfMemoryError as e:
            logger.warning("Shard %d on %s ran out of memory: %s", index, device, e)
            return ShardOutcome(index, StepStatus.OOM, error=e)
        finally:
            graph.dispose()
        return ShardOutcome(index, StepStatus.SUCCEED, cost=cost)

    def run_parallel(
        self,
        step_fn: Callable[[ComputeGraph, int, Any], WeightNode],
        shards: Sequence[Any],
    ) -> ParallelStepResult:
        """
        Run `step_fn` on every shard, one device per shard, in parallel.

        Parameters
        ----------
        step_fn : Callable[[ComputeGraph, int, Any], WeightNode]
            Called as ``step_fn(graph, device_index, shard)`` on a fresh
            recording graph; returns the shard's loss node. Use
            `get_on_device(device_index)` for the device-local replica.
        shards : Sequence[Any]
            At most one shard per device.

        Returns
        -------
        ParallelStepResult
            Per-shard outcomes, summed cost of the successful shards and their
            count.

        Notes
        -----
        Errors other than out-of-memory propagate after all workers finish.
        """
        shards = list(shards)
        if not shards:
            raise ValueError("run_parallel() needs at least one shard")
        if len(shards) > self.num_devices:
            raise ValueError(
                f"Got {len(shards)} shards for {self.num_devices} devices"
            )

        with ThreadPoolExecutor(
            max_workers=len(shards), thread_name_prefix="seqtensor-shard"
        ) as executor:
            futures = [
                executor.submit(self._run_shard, i, step_fn, shard)
                for i, shard in enumerate(shards)
            ]
        # executor exit waits for every worker
        outcomes = [f.result() for f in futures]

        result = ParallelStepResult(
            outcomes=outcomes,
            total_cost=sum(o.cost for o in outcomes if o.ok),
            succeeded=sum(1 for o in outcomes if o.ok),
        )
        if result.succeeded < len(outcomes):
            logger.warning(
                "%d of %d shards failed; their gradients are excluded",
                len(outcomes) - result.succeeded,
                len(outcomes),
            )
        self._last = result
        return result

    # ------------------------------------------------------------------
    # synchronisation
    # ------------------------------------------------------------------
    def aggregate_gradients(
        self, average: bool = False, result: Optional[ParallelStepResult] = None
    ) -> int:
        """
        Merge replica gradients into device 0's replica.

        Parameters
        ----------
        average : bool
            Divide the sum by the number of successful shards.
        result : Optional[ParallelStepResult]
            Step whose successful shards are merged. Defaults to the last
            `run_parallel()` call.

        Returns
        -------
        int
            Number of shards that contributed.
        """
        result = result if result is not None else self._last
        if result is None:
            raise RuntimeError("No parallel step to aggregate; call run_parallel() first")
        replicas = self.replicas

        indices = [o.device_index for o in result.outcomes if o.ok]
        master_params = replicas.named_params(0)
        per_device = {i: replicas.named_params(i) for i in indices}

        for name, master in master_params.items():
            if not master.is_trainable:
                continue
            total: Optional[np.ndarray] = None
            for i in indices:
                g = per_device[i][name].gradient_to_numpy()
                if g is None:
                    continue
                total = g.astype(np.float64) if total is None else total + g
            if total is None:
                master.zero_gradient()
                continue
            if average:
                total /= len(indices)
            master.seed_gradient(total)
        return len(indices)

    def broadcast_weights(self) -> None:
        """
        Copy device 0's parameter values to every other replica.
        """
        replicas = self.replicas
        master_params = replicas.named_params(0)
        for i in range(1, len(replicas)):
            for name, node in replicas.named_params(i).items():
                node.value.copy_from(master_params[name].value, allow_cross_device=True)

    def zero_gradients(self) -> None:
        replicas = self.replicas
        for i in range(len(replicas)):
            for node in replicas.named_params(i).values():
                node.zero_gradient()
