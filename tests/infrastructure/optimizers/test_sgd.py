import unittest
from unittest import TestCase

import numpy as np

from seqtensor.domain.device._device import ProcessorType
from seqtensor.infrastructure.allocator._context import DeviceContext
from seqtensor.infrastructure.autograd._factory import create_parameter
from seqtensor.infrastructure.graph._graph import ComputeGraph
from seqtensor.infrastructure.optimizers import SGD


class TestSGD(TestCase):
    def setUp(self) -> None:
        self.ctx = DeviceContext(ProcessorType.CPU, [0]).init()
        self.device = self.ctx.device_at(0)

    def tearDown(self) -> None:
        self.ctx.teardown()

    def _param(self, name, values, **kwargs):
        p = create_parameter(self.ctx, self.device, name, np.shape(values), initializer="zeros", **kwargs)
        p.value.copy_from_numpy(np.asarray(values, dtype=np.float32))
        return p

    def test_basic_update(self):
        p = self._param("p", [1.0, 2.0])
        p.seed_gradient(np.array([0.5, -1.0]))
        SGD([p], lr=0.1).step()
        np.testing.assert_allclose(p.to_numpy(), [0.95, 2.1], rtol=1e-6)

    def test_learning_rate_factor(self):
        p = self._param("p", [1.0], learning_rate_factor=0.5)
        p.seed_gradient(1.0)
        SGD([p], lr=0.2).step()
        np.testing.assert_allclose(p.to_numpy(), [0.9], rtol=1e-6)

    def test_weight_decay(self):
        p = self._param("p", [2.0])
        p.seed_gradient(0.0)
        SGD([p], lr=0.1, weight_decay=0.5).step()
        np.testing.assert_allclose(p.to_numpy(), [1.9], rtol=1e-6)

    def test_clip_value(self):
        p = self._param("p", [0.0, 0.0])
        p.seed_gradient(np.array([10.0, -0.5]))
        SGD([p], lr=1.0, clip_value=1.0).step()
        np.testing.assert_allclose(p.to_numpy(), [-1.0, 0.5], rtol=1e-6)

    def test_skips_frozen_and_gradient_free_nodes(self):
        frozen = self._param("frozen", [1.0], is_trainable=False)
        untouched = self._param("untouched", [1.0])
        frozen.ensure_gradient().fill(1.0)
        SGD([frozen, untouched], lr=1.0).step()
        np.testing.assert_array_equal(frozen.to_numpy(), [1.0])
        np.testing.assert_array_equal(untouched.to_numpy(), [1.0])

    def test_zero_grad(self):
        p = self._param("p", [1.0, 1.0])
        p.seed_gradient(3.0)
        opt = SGD([p])
        opt.zero_grad()
        np.testing.assert_array_equal(p.gradient_to_numpy(), [0.0, 0.0])

    def test_invalid_settings(self):
        with self.assertRaises(ValueError):
            SGD([], lr=0.0)
        with self.assertRaises(ValueError):
            SGD([], weight_decay=-1.0)
        with self.assertRaises(ValueError):
            SGD([], clip_value=0.0)

    def test_fits_linear_regression(self):
        rng = np.random.default_rng(0)
        x_np = rng.standard_normal((16, 3)).astype(np.float32)
        true_w = np.array([[1.0], [-2.0], [0.5]], dtype=np.float32)
        y_np = x_np @ true_w

        w = create_parameter(self.ctx, self.device, "w", (3, 1), initializer="zeros")
        opt = SGD([w], lr=0.02)
        with ComputeGraph(self.ctx, self.device) as g:
            x = g.from_numpy("x", x_np)
            y = g.from_numpy("y", y_np)
            for i in range(200):
                opt.zero_grad()
                with g.create_subgraph(f"iter_{i}") as step:
                    diff = step.sub(step.matmul(x, w), y)
                    step.backward(step.mul(diff, diff))
                opt.step()
            self.assertEqual(g.tape_length, 0)
        np.testing.assert_allclose(w.to_numpy(), true_w, atol=1e-3)


if __name__ == "__main__":
    unittest.main()
