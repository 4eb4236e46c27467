from ._b64 import ndarray_to_payload, payload_to_ndarray
from ._container import ModelContainer

__all__ = [
    ModelContainer.__name__,
    ndarray_to_payload.__name__,
    payload_to_ndarray.__name__,
]
