from ._config import EngineConfig, normalize_dtype
from .allocator import BufferHandle, DeviceAllocatorPool, DeviceContext, PoolStats
from .autograd import Context, WeightFactory, WeightInitializer, WeightNode, create_parameter
from .decoding import decode
from .graph import ComputeGraph, SubgraphScope
from .optimizers import SGD
from .parallel import (
    MultiDeviceCoordinator,
    NetworkReplicas,
    ParallelStepResult,
    ShardOutcome,
)
from .serialization import ModelContainer
from .tensor import Tensor
from .units import Embedding, FeedForwardLayer, LayerNormalization, NeuralUnit
