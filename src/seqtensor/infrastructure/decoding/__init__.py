from ._loop import decode

__all__ = [
    decode.__name__,
]
