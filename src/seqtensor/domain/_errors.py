"""
Engine exceptions for SeqTensor.

This module defines the error taxonomy raised by the tensor engine. Errors are
split by how callers are expected to react:

- `ShapeMismatchError` and `DeviceMismatchError` are fatal to the operation
  that raised them and are never retried.
- `OutOfMemoryError` is recoverable at well-defined checkpoints (one decode
  step, one device shard of a batch) where partial work can be abandoned.
- `DisposedAccessError` signals use of a tensor or weight node after its
  buffer was released back to the allocator pool.
- `GraphStateError` signals an illegal compute-graph state transition.
- `DeviceNotSupportedError` signals a device whose array backend is not
  available in the current process.
"""

from __future__ import annotations

from typing import Optional, Sequence


class DeviceNotSupportedError(RuntimeError):
    """
    Raised when an operation is requested on a device backend that is not
    available.

    Attributes
    ----------
    op : str
        The name of the operation that was attempted (e.g., "allocate").
    device : str
        String representation of the device on which the operation
        was attempted.
    """

    def __init__(self, op: str, device: str, reason: str = "") -> None:
        msg = f"{op} is not available for device '{device}'."
        if reason:
            msg = f"{msg} {reason}"
        super().__init__(msg)
        self.op = op
        self.device = device


class DeviceMismatchError(RuntimeError):
    """
    Raised when an operation is attempted between tensors on different devices.

    Tensors never migrate implicitly; an explicit cross-device copy is
    required before combining them.
    """

    def __init__(self, device_a: str, device_b: str, op: str = "") -> None:
        """
        Initialize the DeviceMismatchError.

        Parameters
        ----------
        device_a : str
            Device identifier of the first operand.
        device_b : str
            Device identifier of the second operand.
        op : str, optional
            Name of the operation being executed, if known.
        """
        prefix = f"{op}: " if op else ""
        super().__init__(f"{prefix}Device mismatch: '{device_a}' vs '{device_b}'.")
        self.device_a = device_a
        self.device_b = device_b
        self.op = op


class ShapeMismatchError(ValueError):
    """
    Raised when operand shapes are incompatible for the requested operation.

    Attributes
    ----------
    op : str
        Operation name.
    expected : Optional[Sequence[int]]
        The expected shape, when a single one applies.
    actual : Optional[Sequence[int]]
        The shape that was received.
    """

    def __init__(
        self,
        op: str,
        message: str,
        *,
        expected: Optional[Sequence[int]] = None,
        actual: Optional[Sequence[int]] = None,
    ) -> None:
        super().__init__(f"{op}: {message}")
        self.op = op
        self.expected = tuple(expected) if expected is not None else None
        self.actual = tuple(actual) if actual is not None else None


class OutOfMemoryError(MemoryError):
    """
    Raised when a device allocator cannot satisfy a request.

    Attributes
    ----------
    device : str
        Device on which the allocation failed.
    requested : int
        Requested size in bytes.
    reserved : int
        Bytes already reserved by the pool when the request failed.
    limit : Optional[int]
        Configured pool limit in bytes, or None when the device reported the
        failure itself.
    """

    def __init__(
        self,
        device: str,
        requested: int,
        *,
        reserved: int = 0,
        limit: Optional[int] = None,
    ) -> None:
        if limit is None:
            msg = (
                f"Out of memory on '{device}': device could not allocate "
                f"{requested} bytes ({reserved} bytes reserved)."
            )
        else:
            msg = (
                f"Out of memory on '{device}': requested {requested} bytes with "
                f"{reserved} bytes reserved exceeds limit of {limit} bytes."
            )
        super().__init__(msg)
        self.device = device
        self.requested = int(requested)
        self.reserved = int(reserved)
        self.limit = limit


class DisposedAccessError(RuntimeError):
    """
    Raised when a tensor or weight node is used after its storage was released.

    Attributes
    ----------
    what : str
        Human-readable description of the object that was accessed.
    """

    def __init__(self, what: str) -> None:
        super().__init__(f"Access to disposed {what}.")
        self.what = what


class GraphStateError(RuntimeError):
    """
    Raised when a compute graph is asked to perform an action that its current
    state does not allow (e.g. replaying a consumed tape, running backward on
    an inference-only graph, or recording into a disposed scope).
    """
