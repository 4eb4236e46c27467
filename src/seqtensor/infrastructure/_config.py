"""
Engine configuration.

`EngineConfig` collects the settings that decide which devices a run uses and
how much memory each device pool may reserve. It can be built directly or
from environment variables:

- ``SEQTENSOR_PROCESSOR``: ``cpu`` or ``cuda`` (default ``cpu``)
- ``SEQTENSOR_DEVICE_IDS``: comma-separated ids, e.g. ``0,1`` (default ``0``)
- ``SEQTENSOR_MEMORY_USAGE_RATIO``: float in (0, 1] (default ``0.95``)
- ``SEQTENSOR_MEMORY_LIMIT``: per-device byte cap (default unset)
- ``SEQTENSOR_DTYPE``: ``float32`` or ``float16`` (default ``float32``)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np

from ..domain.device._device import Device, ProcessorType

_SUPPORTED_DTYPES = (np.dtype(np.float32), np.dtype(np.float16))


def normalize_dtype(dtype: object) -> np.dtype:
    """
    Validate and normalize an element dtype.

    Raises
    ------
    TypeError
        If the dtype is not float32 or float16.
    """
    dt = np.dtype(dtype)
    if dt not in _SUPPORTED_DTYPES:
        raise TypeError(f"Unsupported element dtype {dt}; expected float32 or float16")
    return dt


@dataclass
class EngineConfig:
    """
    Device and memory settings for a `DeviceContext`.

    Attributes
    ----------
    processor_type : ProcessorType
        Host-only or accelerator run.
    device_ids : tuple[int, ...]
        Ordered device ids; new units are placed round-robin over this list.
    memory_usage_ratio : float
        Fraction of each device's memory its pool may reserve.
    memory_limit : Optional[int]
        Explicit per-device byte cap. Takes precedence over the ratio.
    dtype : np.dtype
        Default element type for new tensors.
    """

    processor_type: ProcessorType = ProcessorType.CPU
    device_ids: Sequence[int] = field(default_factory=lambda: (0,))
    memory_usage_ratio: float = 0.95
    memory_limit: Optional[int] = None
    dtype: np.dtype = field(default_factory=lambda: np.dtype(np.float32))

    def __post_init__(self) -> None:
        self.processor_type = ProcessorType.parse(self.processor_type)
        self.device_ids = tuple(int(i) for i in self.device_ids)
        if not self.device_ids:
            raise ValueError("device_ids must not be empty")
        if len(set(self.device_ids)) != len(self.device_ids):
            raise ValueError(f"device_ids must be unique, got {self.device_ids}")
        if any(i < 0 for i in self.device_ids):
            raise ValueError(f"device_ids must be non-negative, got {self.device_ids}")
        if not 0.0 < float(self.memory_usage_ratio) <= 1.0:
            raise ValueError(
                f"memory_usage_ratio must be in (0, 1], got {self.memory_usage_ratio}"
            )
        self.memory_usage_ratio = float(self.memory_usage_ratio)
        if self.memory_limit is not None:
            self.memory_limit = int(self.memory_limit)
            if self.memory_limit <= 0:
                raise ValueError(f"memory_limit must be positive, got {self.memory_limit}")
        self.dtype = normalize_dtype(self.dtype)

    @property
    def devices(self) -> tuple[Device, ...]:
        return tuple(Device.of(self.processor_type, i) for i in self.device_ids)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a configuration from ``SEQTENSOR_*`` environment variables.

        Parameters
        ----------
        environ : Optional[Mapping[str, str]]
            Mapping to read instead of `os.environ`.
        """
        env = os.environ if environ is None else environ

        ids_raw = env.get("SEQTENSOR_DEVICE_IDS", "0")
        ids = tuple(int(x) for x in ids_raw.split(",") if x.strip())

        limit_raw = env.get("SEQTENSOR_MEMORY_LIMIT", "").strip()

        return cls(
            processor_type=ProcessorType.parse(env.get("SEQTENSOR_PROCESSOR", "cpu")),
            device_ids=ids,
            memory_usage_ratio=float(env.get("SEQTENSOR_MEMORY_USAGE_RATIO", "0.95")),
            memory_limit=int(limit_raw) if limit_raw else None,
            dtype=env.get("SEQTENSOR_DTYPE", "float32"),
        )
