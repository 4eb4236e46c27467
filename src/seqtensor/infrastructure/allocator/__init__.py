from ._backends import ArrayBackend, CudaArrayBackend, HostArrayBackend, make_backend
from ._context import DeviceContext
from ._pool import BufferHandle, DeviceAllocatorPool, PoolStats

__all__ = [
    ArrayBackend.__name__,
    CudaArrayBackend.__name__,
    HostArrayBackend.__name__,
    make_backend.__name__,
    DeviceContext.__name__,
    BufferHandle.__name__,
    DeviceAllocatorPool.__name__,
    PoolStats.__name__,
]
