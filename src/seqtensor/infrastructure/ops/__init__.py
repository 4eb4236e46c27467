"""
Differentiable operation catalog.

Each operation is a `Function` subclass plus a functional entry point taking
the owning graph scope as its first argument. The same operations are
available as methods on `ComputeGraph` and `SubgraphScope`.
"""

from ._activations import ReluFn, SigmoidFn, TanhFn, relu, sigmoid, tanh
from ._dropout import DropoutFn, dropout
from ._elementwise import (
    AddFn,
    AddScalarFn,
    MulFn,
    MulScalarFn,
    ScalarSubFn,
    SubFn,
    add,
    add_scalar,
    mul,
    mul_scalar,
    scalar_sub,
    sub,
)
from ._indexing import IndexSelectFn, MaskedFillFn, index_select, masked_fill
from ._layernorm import LayerNormFn, layer_norm
from ._linalg import MatMulFn, matmul
from ._losses import CrossEntropyLossFn, cross_entropy_loss
from ._shape import ConcatFn, ExpandFn, TransposeFn, ViewFn, concat, expand, transpose, view
from ._softmax import SoftmaxFn, softmax

__all__ = [
    "add",
    "sub",
    "mul",
    "mul_scalar",
    "add_scalar",
    "scalar_sub",
    "matmul",
    "softmax",
    "index_select",
    "masked_fill",
    "layer_norm",
    "cross_entropy_loss",
    "dropout",
    "concat",
    "view",
    "expand",
    "transpose",
    "relu",
    "sigmoid",
    "tanh",
    AddFn.__name__,
    SubFn.__name__,
    MulFn.__name__,
    MulScalarFn.__name__,
    AddScalarFn.__name__,
    ScalarSubFn.__name__,
    MatMulFn.__name__,
    SoftmaxFn.__name__,
    IndexSelectFn.__name__,
    MaskedFillFn.__name__,
    LayerNormFn.__name__,
    CrossEntropyLossFn.__name__,
    DropoutFn.__name__,
    ConcatFn.__name__,
    ViewFn.__name__,
    ExpandFn.__name__,
    TransposeFn.__name__,
    ReluFn.__name__,
    SigmoidFn.__name__,
    TanhFn.__name__,
]
