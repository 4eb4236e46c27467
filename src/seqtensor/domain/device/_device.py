"""
Device abstraction utilities.

This module defines lightweight abstractions for representing computation
devices (host processors and CUDA accelerators). It provides:

- `DeviceType`: an enumeration of supported device categories
- `ProcessorType`: the processor kind a whole run is configured for
- `Device`: a concrete device descriptor that validates and normalizes
  user-facing device strings such as "cpu", "cpu:1" or "cuda:0"

Host devices carry an index as well, so a single machine can expose several
logical host devices (each with its own allocator pool) to the multi-device
coordinator.
"""

from __future__ import annotations

from enum import Enum
import re


class DeviceType(Enum):
    """
    Enumeration of supported device categories.

    Attributes
    ----------
    CPU : DeviceType
        Host processor.
    CUDA : DeviceType
        NVIDIA CUDA-enabled accelerator.
    """

    CPU = "cpu"
    CUDA = "cuda"


class ProcessorType(Enum):
    """
    Processor kind selected for a run.

    A run is either host-only or accelerator-backed; the device-id list given
    alongside it is interpreted as `cpu:<id>` or `cuda:<id>` accordingly.
    """

    CPU = "cpu"
    CUDA = "cuda"

    @classmethod
    def parse(cls, value: "str | ProcessorType") -> "ProcessorType":
        if isinstance(value, ProcessorType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid processor type '{value}'. Expected 'cpu' or 'cuda'."
            ) from None


class Device:
    """
    Concrete computation device descriptor.

    Parameters
    ----------
    device : str
        Device identifier string. Must be one of:
        - "cpu" (alias of "cpu:0")
        - "cpu:<index>"
        - "cuda:<index>"

    Raises
    ------
    ValueError
        If the provided device string does not match the supported formats.

    Notes
    -----
    Descriptors are hashable and key the per-device allocator pools of a
    `DeviceContext`; they hold no backend resources themselves.
    """

    __slots__ = ("type", "index")

    _PATTERN = re.compile(r"^(cpu|cuda):(\d+)$")

    def __init__(self, device: str):
        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = 0
            return

        m = self._PATTERN.match(device)
        if not m:
            raise ValueError(
                f"Invalid device '{device}'. Expected 'cpu', 'cpu:<index>' or 'cuda:<index>'"
            )
        self.type = DeviceType(m.group(1))
        self.index = int(m.group(2))

    @classmethod
    def of(cls, processor: ProcessorType, index: int) -> "Device":
        """
        Build a device descriptor from a processor kind and a device id.
        """
        if int(index) < 0:
            raise ValueError(f"Device index must be non-negative, got {index}")
        return cls(f"{processor.value}:{int(index)}")

    def __str__(self) -> str:
        return f"{self.type.value}:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"

    def __eq__(self, other: object) -> bool:
        # same kind and index; host and accelerator never compare equal
        if not isinstance(other, Device):
            return NotImplemented
        return (self.type, self.index) == (other.type, other.index)

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def is_cpu(self) -> bool:
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        return self.type is DeviceType.CUDA
