from ._arithmetic import TensorArithmeticMixin
from ._indexing import TensorIndexingMixin
from ._memory import TensorMemoryMixin
from ._nn import TensorNNMixin
from ._views import TensorViewsMixin

__all__ = [
    TensorArithmeticMixin.__name__,
    TensorIndexingMixin.__name__,
    TensorMemoryMixin.__name__,
    TensorNNMixin.__name__,
    TensorViewsMixin.__name__,
]
