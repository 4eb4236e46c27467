import unittest
from unittest import TestCase

import numpy as np

from seqtensor.domain._errors import DisposedAccessError, ShapeMismatchError
from seqtensor.domain.device._device import ProcessorType
from seqtensor.infrastructure.allocator._context import DeviceContext
from seqtensor.infrastructure.tensor._tensor import Tensor


class TestTensorViews(TestCase):
    def setUp(self) -> None:
        self.ctx = DeviceContext(ProcessorType.CPU, [0], memory_limit=1 << 22).init()
        self.device = self.ctx.device_at(0)

    def tearDown(self) -> None:
        self.ctx.teardown()

    def _t(self, arr) -> Tensor:
        return Tensor.from_numpy(np.asarray(arr, dtype=np.float32), self.device, self.ctx)

    def test_view_shares_buffer(self):
        t = self._t(np.arange(6))
        v = t.view((2, 3))
        self.assertEqual(v.shape, (2, 3))
        self.assertEqual(v.handle, t.handle)

        v.set_at((1, 2), 42.0)
        self.assertEqual(t.get_at((5,)), 42.0)

    def test_view_infers_minus_one(self):
        t = self._t(np.zeros((4, 6)))
        self.assertEqual(t.view((-1, 3)).shape, (8, 3))

    def test_view_element_count_mismatch_raises(self):
        t = self._t(np.zeros((2, 3)))
        with self.assertRaises(ShapeMismatchError):
            t.view((4, 2))

    def test_view_of_non_contiguous_raises(self):
        t = self._t(np.zeros((2, 3)))
        with self.assertRaises(ShapeMismatchError):
            t.transpose().view((6,))

    def test_expand_uses_zero_strides(self):
        t = self._t([[1.0, 2.0, 3.0]])
        e = t.expand((4, 3))
        self.assertEqual(e.strides, (0, 1))
        np.testing.assert_array_equal(e.to_numpy(), np.tile([[1.0, 2.0, 3.0]], (4, 1)))

    def test_expand_adds_leading_dimensions(self):
        t = self._t([1.0, 2.0])
        e = t.expand((3, 2))
        self.assertEqual(e.shape, (3, 2))
        self.assertEqual(e.strides, (0, 1))

    def test_expand_non_unit_dimension_raises(self):
        t = self._t(np.zeros((2, 3)))
        with self.assertRaises(ShapeMismatchError):
            t.expand((4, 3))

    def test_narrow_offsets_into_buffer(self):
        t = self._t(np.arange(12).reshape(3, 4))
        n = t.narrow(0, 1, 2)
        self.assertEqual(n.offset, 4)
        np.testing.assert_array_equal(n.to_numpy(), np.arange(4, 12).reshape(2, 4))

        c = t.narrow(1, 1, 2)
        self.assertFalse(c.is_contiguous())
        np.testing.assert_array_equal(c.to_numpy(), np.arange(12).reshape(3, 4)[:, 1:3])

    def test_narrow_out_of_range_raises(self):
        t = self._t(np.zeros((3, 4)))
        with self.assertRaises(ShapeMismatchError):
            t.narrow(1, 3, 2)

    def test_transpose_is_alias(self):
        arr = np.arange(6, dtype=np.float32).reshape(2, 3)
        t = self._t(arr)
        tt = t.transpose()
        np.testing.assert_array_equal(tt.to_numpy(), arr.T)
        self.assertEqual(tt.handle, t.handle)

    def test_alias_keeps_buffer_after_source_dispose(self):
        t = self._t(np.arange(4))
        v = t.view((2, 2))
        t.dispose()

        with self.assertRaises(DisposedAccessError):
            _ = t.data
        np.testing.assert_array_equal(v.to_numpy(), [[0, 1], [2, 3]])

        v.dispose()
        self.assertEqual(self.ctx.pool(self.device).stats().live_buffers, 0)

    def test_dispose_twice_is_noop(self):
        t = self._t(np.zeros(3))
        t.dispose()
        t.dispose()
        self.assertTrue(t.is_disposed)

    def test_contiguous_copies_strided_tensor(self):
        arr = np.arange(6, dtype=np.float32).reshape(2, 3)
        t = self._t(arr).transpose()
        c = t.contiguous()
        self.assertTrue(c.is_contiguous())
        self.assertNotEqual(c.handle, t.handle)
        np.testing.assert_array_equal(c.to_numpy(), arr.T)


if __name__ == "__main__":
    unittest.main()
