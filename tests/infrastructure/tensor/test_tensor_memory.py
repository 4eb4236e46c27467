import gc
import unittest
from unittest import TestCase

import numpy as np

from seqtensor.domain._errors import (
    DeviceMismatchError,
    DisposedAccessError,
    OutOfMemoryError,
    ShapeMismatchError,
)
from seqtensor.domain.device._device import ProcessorType
from seqtensor.infrastructure.allocator._context import DeviceContext
from seqtensor.infrastructure.tensor._tensor import Tensor


class TestTensorMemory(TestCase):
    def setUp(self) -> None:
        self.ctx = DeviceContext(ProcessorType.CPU, [0, 1], memory_limit=1 << 20).init()
        self.d0 = self.ctx.device_at(0)
        self.d1 = self.ctx.device_at(1)

    def tearDown(self) -> None:
        self.ctx.teardown()

    def test_from_numpy_round_trip_preserves_values(self):
        arr = np.random.default_rng(0).standard_normal((3, 5)).astype(np.float32)
        t = Tensor.from_numpy(arr, self.d0, self.ctx)
        np.testing.assert_array_equal(t.to_numpy(), arr)
        self.assertEqual(t.dtype, np.float32)

    def test_float16_tensor(self):
        t = Tensor.full((2, 2), 1.5, self.d0, self.ctx, dtype="float16")
        self.assertEqual(t.dtype, np.float16)
        self.assertEqual(t.to_numpy().dtype, np.float16)

    def test_copy_from_numpy_shape_mismatch(self):
        t = Tensor.zeros((2, 2), self.d0, self.ctx)
        with self.assertRaises(ShapeMismatchError):
            t.copy_from_numpy(np.zeros((4,), dtype=np.float32))

    def test_copy_from_other_device_requires_opt_in(self):
        a = Tensor.full((2,), 3.0, self.d0, self.ctx)
        b = Tensor.zeros((2,), self.d1, self.ctx)
        with self.assertRaises(DeviceMismatchError):
            b.copy_from(a)
        b.copy_from(a, allow_cross_device=True)
        np.testing.assert_array_equal(b.to_numpy(), [3.0, 3.0])

    def test_binary_op_across_devices_raises(self):
        a = Tensor.zeros((2,), self.d0, self.ctx)
        b = Tensor.zeros((2,), self.d1, self.ctx)
        with self.assertRaises(DeviceMismatchError):
            a.add(b)

    def test_get_set_at_bounds(self):
        t = Tensor.zeros((2, 3), self.d0, self.ctx)
        t.set_at((1, 2), 7.0)
        self.assertEqual(t.get_at((1, 2)), 7.0)
        with self.assertRaises(IndexError):
            t.get_at((2, 0))
        with self.assertRaises(IndexError):
            t.get_at((0,))

    def test_index_select_gathers_rows(self):
        arr = np.arange(12, dtype=np.float32).reshape(4, 3)
        t = Tensor.from_numpy(arr, self.d0, self.ctx)
        g = t.index_select([3, 0, 3])
        np.testing.assert_array_equal(g.to_numpy(), arr[[3, 0, 3]])
        with self.assertRaises(IndexError):
            t.index_select([4])

    def test_concat_along_dims(self):
        a = Tensor.from_numpy(np.ones((2, 3), dtype=np.float32), self.d0, self.ctx)
        b = Tensor.from_numpy(np.zeros((1, 3), dtype=np.float32), self.d0, self.ctx)
        c = Tensor.concat([a, b], 0)
        self.assertEqual(c.shape, (3, 3))
        with self.assertRaises(ShapeMismatchError):
            Tensor.concat([a, b], 1)

    def test_matmul_shapes(self):
        a = Tensor.from_numpy(np.ones((2, 3), dtype=np.float32), self.d0, self.ctx)
        b = Tensor.from_numpy(np.ones((3, 4), dtype=np.float32), self.d0, self.ctx)
        np.testing.assert_array_equal(a.matmul(b).to_numpy(), np.full((2, 4), 3.0))
        with self.assertRaises(ShapeMismatchError):
            b.matmul(b)

    def test_softmax_rows_sum_to_one_for_large_inputs(self):
        arr = np.array([[1000.0, 1001.0, 1002.0], [-5.0, 0.0, 5.0]], dtype=np.float32)
        t = Tensor.from_numpy(arr, self.d0, self.ctx)
        s = t.softmax().to_numpy()
        self.assertTrue(np.all(np.isfinite(s)))
        np.testing.assert_allclose(s.sum(axis=1), [1.0, 1.0], rtol=1e-6)

    def test_allocation_beyond_limit_raises_out_of_memory(self):
        with self.assertRaises(OutOfMemoryError):
            Tensor.allocate((1 << 20,), self.d0, self.ctx)

    def test_released_tensor_memory_is_reused(self):
        pool = self.ctx.pool(self.d0)
        t = Tensor.zeros((64, 64), self.d0, self.ctx)
        t.dispose()
        before = pool.stats().allocation_count

        t2 = Tensor.zeros((64, 64), self.d0, self.ctx)
        self.assertEqual(pool.stats().allocation_count, before)
        t2.dispose()

    def test_garbage_collected_tensor_returns_buffer(self):
        pool = self.ctx.pool(self.d0)
        t = Tensor.zeros((16,), self.d0, self.ctx)
        del t
        gc.collect()
        self.assertEqual(pool.stats().live_buffers, 0)

    def test_teardown_invalidates_tensors(self):
        ctx = DeviceContext(ProcessorType.CPU, [0]).init()
        t = Tensor.zeros((2,), ctx.device_at(0), ctx)
        ctx.teardown()
        with self.assertRaises(DisposedAccessError):
            t.to_numpy()


if __name__ == "__main__":
    unittest.main()
