"""
Step-wise generation driver.

Each step runs inside its own subgraph scope, so per-step intermediates are
released as soon as the step finishes, and the step is an out-of-memory
checkpoint: an `OutOfMemoryError` ends the loop early and the result is
tagged `StepStatus.OOM`, keeping every output produced so far.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

from ...domain._status import DecodeResult, StepStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


def decode(
    graph: Any,
    step_fn: Callable[[Any, int], Optional[T]],
    max_steps: int,
    *,
    label: str = "DecodeStep",
) -> DecodeResult[T]:
    """
    Run `step_fn` for up to `max_steps` steps.

    Parameters
    ----------
    graph : ComputeGraph
        Graph that owns the per-step scopes; usually inference-only.
    step_fn : Callable[[SubgraphScope, int], Optional[T]]
        Called as ``step_fn(scope, step)``. Returns the step's output, or
        None to stop (e.g. an end-of-sequence token). Nodes the step must
        keep beyond its scope (such as a recurrent state) have to be
        unbound from the scope by the step function.
    max_steps : int
        Upper bound on the number of steps.

    Returns
    -------
    DecodeResult
        Outputs of the completed steps and `SUCCEED`, or `OOM` when a step
        ran out of memory.
    """
    if max_steps < 0:
        raise ValueError(f"max_steps must be >= 0, got {max_steps}")

    result: DecodeResult[T] = DecodeResult()
    for step in range(max_steps):
        with graph.create_subgraph(f"{label}_{step}") as scope:
            outcome = scope.guarded(step_fn, scope, step)
        if not outcome.ok:
            logger.warning(
                "Decoding stopped at step %d of %d: out of memory", step, max_steps
            )
            result.status = StepStatus.OOM
            break
        if outcome.value is None:
            break
        result.outputs.append(outcome.value)
        result.steps += 1
    return result
