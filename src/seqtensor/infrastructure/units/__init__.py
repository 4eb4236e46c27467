from ._embedding import Embedding
from ._feed_forward import FeedForwardLayer
from ._layer_norm import LayerNormalization
from ._unit import NeuralUnit

__all__ = [
    NeuralUnit.__name__,
    FeedForwardLayer.__name__,
    LayerNormalization.__name__,
    Embedding.__name__,
]
