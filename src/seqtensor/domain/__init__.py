from ._errors import (
    DeviceMismatchError,
    DeviceNotSupportedError,
    DisposedAccessError,
    GraphStateError,
    OutOfMemoryError,
    ShapeMismatchError,
)
from ._function import Function
from ._graph import GraphMode, IComputeGraph
from ._neural_unit import INeuralUnit, NeuralUnitKind
from ._status import Allocation, DecodeResult, StepOutcome, StepStatus
from ._tensor import ITensor
from ._weight import IWeightNode
from .device import Device, DeviceLike, DeviceType, ProcessorType
