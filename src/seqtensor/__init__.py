"""
SeqTensor: a tape-based automatic-differentiation tensor engine with pooled
device memory, scoped node lifetimes and multi-device data parallelism.
"""

from .domain import (
    Device,
    DeviceMismatchError,
    DeviceNotSupportedError,
    DisposedAccessError,
    GraphMode,
    GraphStateError,
    NeuralUnitKind,
    OutOfMemoryError,
    ProcessorType,
    ShapeMismatchError,
    StepStatus,
)
from .infrastructure import (
    SGD,
    ComputeGraph,
    DeviceContext,
    EngineConfig,
    Embedding,
    FeedForwardLayer,
    LayerNormalization,
    ModelContainer,
    MultiDeviceCoordinator,
    SubgraphScope,
    Tensor,
    WeightNode,
    decode,
)

__version__ = "0.1.0"
