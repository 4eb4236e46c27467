from ._coordinator import (
    MultiDeviceCoordinator,
    NetworkReplicas,
    ParallelStepResult,
    ShardOutcome,
)

__all__ = [
    MultiDeviceCoordinator.__name__,
    NetworkReplicas.__name__,
    ParallelStepResult.__name__,
    ShardOutcome.__name__,
]
