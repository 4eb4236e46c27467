from ._context import Context
from ._factory import WeightFactory, create_parameter
from ._initializers import WeightInitializer
from ._tape import Tape, TapeEntry
from ._weight import WeightNode

__all__ = [
    Context.__name__,
    WeightFactory.__name__,
    create_parameter.__name__,
    WeightInitializer.__name__,
    Tape.__name__,
    TapeEntry.__name__,
    WeightNode.__name__,
]
