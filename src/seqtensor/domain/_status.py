"""
Explicit status and result types.

Out-of-memory conditions are surfaced to checkpoint callers as values rather
than as exceptions travelling through client control flow. A checkpoint (an
allocator `try_acquire`, a guarded graph step, a decode loop, a coordinator
shard) converts `OutOfMemoryError` into one of these records, and callers
match on `status`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")


class StepStatus(Enum):
    """
    Outcome of one unit of work (allocation, decode step, device shard).
    """

    SUCCEED = "succeed"
    OOM = "oom"


@dataclass(frozen=True)
class Allocation:
    """
    Result of a non-raising allocator request.

    Attributes
    ----------
    status : StepStatus
        `SUCCEED` when `handle` is valid, `OOM` otherwise.
    handle : Optional[object]
        The acquired buffer handle, or None on failure.
    error : Optional[BaseException]
        The underlying out-of-memory error on failure.
    """

    status: StepStatus
    handle: Optional[Any] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCEED


@dataclass(frozen=True)
class StepOutcome(Generic[T]):
    """
    Result of a guarded step executed at an OOM checkpoint.
    """

    status: StepStatus
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCEED


@dataclass
class DecodeResult(Generic[T]):
    """
    Output of an iterative decode loop.

    Attributes
    ----------
    status : StepStatus
        `OOM` if decoding was abandoned early because a step ran out of
        memory; `SUCCEED` otherwise.
    outputs : list
        Per-step outputs produced before the loop ended.
    steps : int
        Number of steps that completed successfully.
    """

    status: StepStatus = StepStatus.SUCCEED
    outputs: List[T] = field(default_factory=list)
    steps: int = 0
