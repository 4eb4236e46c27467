from ._graph import ComputeGraph, SubgraphScope

__all__ = [
    ComputeGraph.__name__,
    SubgraphScope.__name__,
]
