"""
Explicit device context.

A `DeviceContext` owns one `DeviceAllocatorPool` per configured device and is
passed by reference into every graph and tensor creation call. There is no
process-wide allocator: two contexts in one process are fully independent.

Lifecycle
---------
Pools are created by `init()` (or on entering the context manager) and
released by `teardown()`. Using a context before `init()` or after
`teardown()` raises.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from ...domain._errors import DeviceNotSupportedError
from ...domain.device._device import Device, ProcessorType
from ...domain.device._device_protocol import DeviceLike
from .._config import EngineConfig
from ._pool import DeviceAllocatorPool

logger = logging.getLogger(__name__)


class DeviceContext:
    """
    Owner of the per-device allocator pools for one run.

    Parameters
    ----------
    processor_type : ProcessorType | str
        Host-only (``cpu``) or accelerator (``cuda``).
    device_ids : Sequence[int]
        Ordered device ids.
    memory_usage_ratio : float
        Fraction of device memory each pool may reserve.
    memory_limit : Optional[int]
        Explicit per-device byte cap.
    dtype : np.dtype
        Default element type for tensors created through this context.
    """

    def __init__(
        self,
        processor_type: "ProcessorType | str" = ProcessorType.CPU,
        device_ids: Sequence[int] = (0,),
        *,
        memory_usage_ratio: float = 0.95,
        memory_limit: Optional[int] = None,
        dtype: object = np.float32,
    ) -> None:
        self.config = EngineConfig(
            processor_type=processor_type,
            device_ids=device_ids,
            memory_usage_ratio=memory_usage_ratio,
            memory_limit=memory_limit,
            dtype=dtype,
        )
        self._pools: Dict[Device, DeviceAllocatorPool] = {}
        self._initialized = False
        self._rr_lock = threading.Lock()
        self._rr_next = 0

    @classmethod
    def from_config(cls, config: EngineConfig) -> "DeviceContext":
        return cls(
            config.processor_type,
            config.device_ids,
            memory_usage_ratio=config.memory_usage_ratio,
            memory_limit=config.memory_limit,
            dtype=config.dtype,
        )

    def __repr__(self) -> str:
        devs = ", ".join(str(d) for d in self.devices)
        return f"DeviceContext([{devs}], initialized={self._initialized})"

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def init(self) -> "DeviceContext":
        """
        Create one allocator pool per configured device.

        Returns
        -------
        DeviceContext
            `self`, for chaining.
        """
        if self._initialized:
            return self
        for device in self.config.devices:
            self._pools[device] = DeviceAllocatorPool(
                device,
                memory_limit=self.config.memory_limit,
                memory_usage_ratio=self.config.memory_usage_ratio,
            )
        self._initialized = True
        logger.debug("Initialized device context for %s", self.devices)
        return self

    def teardown(self) -> None:
        """
        Tear down every pool. All outstanding tensors become inaccessible.
        """
        for pool in self._pools.values():
            pool.teardown()
        self._pools.clear()
        self._initialized = False

    def __enter__(self) -> "DeviceContext":
        return self.init()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    @property
    def devices(self) -> List[Device]:
        return list(self.config.devices)

    @property
    def dtype(self) -> np.dtype:
        return self.config.dtype

    @property
    def processor_type(self) -> ProcessorType:
        return self.config.processor_type

    def pool(self, device: DeviceLike) -> DeviceAllocatorPool:
        """
        Return the allocator pool for `device`.

        Raises
        ------
        RuntimeError
            If the context has not been initialized.
        DeviceNotSupportedError
            If the device is not part of this context.
        """
        if not self._initialized:
            raise RuntimeError("DeviceContext is not initialized; call init() first.")
        try:
            return self._pools[device]
        except KeyError:
            raise DeviceNotSupportedError(
                "pool", str(device), f"Configured devices: {self.devices}."
            ) from None

    def device_at(self, index: int) -> Device:
        """
        Return the device at position `index` of the configured list.
        """
        return self.config.devices[index]

    def device_index(self, device: DeviceLike) -> int:
        """
        Return the position of `device` in the configured list.
        """
        for i, d in enumerate(self.config.devices):
            if d == device:
                return i
        raise DeviceNotSupportedError("device_index", str(device))

    def next_device(self) -> Device:
        """
        Return devices round-robin over the configured list.
        """
        with self._rr_lock:
            devices = self.config.devices
            device = devices[self._rr_next % len(devices)]
            self._rr_next += 1
            return device
