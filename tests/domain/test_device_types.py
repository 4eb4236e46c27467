import unittest
from unittest import TestCase

from seqtensor.domain.device._device import Device, DeviceType, ProcessorType


class TestDevice(TestCase):
    def test_cpu_alias(self):
        d = Device("cpu")
        self.assertIs(d.type, DeviceType.CPU)
        self.assertEqual(d.index, 0)
        self.assertEqual(str(d), "cpu:0")
        self.assertEqual(d, Device("cpu:0"))

    def test_indexed_devices(self):
        d = Device("cuda:3")
        self.assertTrue(d.is_cuda())
        self.assertFalse(d.is_cpu())
        self.assertEqual(d.index, 3)
        self.assertEqual(repr(d), "Device('cuda:3')")

    def test_invalid_strings(self):
        for bad in ("gpu", "cuda", "cpu:-1", "cuda:x", " cpu:0"):
            with self.subTest(device=bad):
                with self.assertRaises(ValueError):
                    Device(bad)

    def test_hash_and_equality(self):
        pools = {Device("cpu:1"): "a"}
        self.assertEqual(pools[Device("cpu:1")], "a")
        self.assertNotEqual(Device("cpu:1"), Device("cuda:1"))
        self.assertNotEqual(Device("cpu:0"), "cpu:0")

    def test_of(self):
        self.assertEqual(Device.of(ProcessorType.CUDA, 2), Device("cuda:2"))
        with self.assertRaises(ValueError):
            Device.of(ProcessorType.CPU, -1)


class TestProcessorType(TestCase):
    def test_parse(self):
        self.assertIs(ProcessorType.parse("CPU"), ProcessorType.CPU)
        self.assertIs(ProcessorType.parse(" cuda "), ProcessorType.CUDA)
        self.assertIs(ProcessorType.parse(ProcessorType.CPU), ProcessorType.CPU)

    def test_parse_rejects_unknown(self):
        with self.assertRaises(ValueError):
            ProcessorType.parse("tpu")


if __name__ == "__main__":
    unittest.main()
