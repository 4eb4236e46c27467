"""
Device abstraction contracts for SeqTensor.

This module defines a duck-typed `DeviceLike` protocol that represents a
computation device descriptor without coupling to the concrete `Device`
class. Allocator pools, tensors and graphs only rely on this structural
contract.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class DeviceLike(Protocol):
    """
    Duck-typed device contract.

    Any object that provides these members can be used as a computation device
    descriptor within the engine, regardless of its concrete class identity.
    """

    type: object
    index: int

    def is_cpu(self) -> bool: ...
    def is_cuda(self) -> bool: ...
    def __str__(self) -> str: ...
