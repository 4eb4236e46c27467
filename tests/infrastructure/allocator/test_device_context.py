import unittest
from unittest import TestCase

from seqtensor.domain._errors import DeviceNotSupportedError
from seqtensor.domain.device._device import Device, ProcessorType
from seqtensor.infrastructure._config import EngineConfig
from seqtensor.infrastructure.allocator._context import DeviceContext


class TestDeviceContext(TestCase):
    def test_init_creates_one_pool_per_device(self):
        with DeviceContext(ProcessorType.CPU, [0, 1], memory_limit=1 << 20) as ctx:
            self.assertEqual(ctx.devices, [Device("cpu:0"), Device("cpu:1")])
            p0 = ctx.pool(Device("cpu:0"))
            p1 = ctx.pool(Device("cpu:1"))
            self.assertIsNot(p0, p1)
            self.assertEqual(p0.memory_limit, 1 << 20)

    def test_pool_before_init_raises(self):
        ctx = DeviceContext(ProcessorType.CPU, [0])
        with self.assertRaises(RuntimeError):
            ctx.pool(Device("cpu:0"))

    def test_unknown_device_raises(self):
        with DeviceContext(ProcessorType.CPU, [0]) as ctx:
            with self.assertRaises(DeviceNotSupportedError):
                ctx.pool(Device("cpu:3"))

    def test_teardown_closes_pools(self):
        ctx = DeviceContext(ProcessorType.CPU, [0]).init()
        pool = ctx.pool(Device("cpu:0"))
        ctx.teardown()
        self.assertTrue(pool.closed)
        self.assertFalse(ctx.initialized)

    def test_next_device_round_robins(self):
        with DeviceContext(ProcessorType.CPU, [0, 1]) as ctx:
            seen = [str(ctx.next_device()) for _ in range(5)]
        self.assertEqual(seen, ["cpu:0", "cpu:1", "cpu:0", "cpu:1", "cpu:0"])

    def test_device_index(self):
        with DeviceContext("cpu", [2, 5]) as ctx:
            self.assertEqual(ctx.device_index(Device("cpu:5")), 1)
            self.assertEqual(ctx.device_at(0), Device("cpu:2"))
            with self.assertRaises(DeviceNotSupportedError):
                ctx.device_index(Device("cpu:0"))

    def test_from_config(self):
        cfg = EngineConfig(device_ids=(0, 1), memory_limit=4096, dtype="float16")
        with DeviceContext.from_config(cfg) as ctx:
            self.assertEqual(len(ctx.devices), 2)
            self.assertEqual(ctx.dtype.name, "float16")
            self.assertEqual(ctx.pool(ctx.device_at(1)).memory_limit, 4096)


if __name__ == "__main__":
    unittest.main()
