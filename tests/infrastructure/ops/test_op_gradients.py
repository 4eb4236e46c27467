import unittest
from unittest import TestCase

import numpy as np

from seqtensor.domain._errors import ShapeMismatchError
from seqtensor.domain.device._device import ProcessorType
from seqtensor.infrastructure.allocator._context import DeviceContext
from seqtensor.infrastructure.graph._graph import ComputeGraph


def numeric_grad(fn, arrays, index, seed, eps=1e-6):
    """
    Central-difference gradient of ``sum(fn(*arrays) * seed)`` w.r.t.
    ``arrays[index]``, in float64.
    """
    base = [np.array(a, dtype=np.float64) for a in arrays]
    x = base[index]
    grad = np.zeros_like(x)
    for i in np.ndindex(x.shape):
        orig = x[i]
        x[i] = orig + eps
        fp = np.sum(fn(*base) * seed)
        x[i] = orig - eps
        fm = np.sum(fn(*base) * seed)
        x[i] = orig
        grad[i] = (fp - fm) / (2.0 * eps)
    return grad


def _away_from_zero(rng, shape):
    mag = rng.uniform(0.2, 1.5, size=shape)
    sign = rng.choice([-1.0, 1.0], size=shape)
    return (mag * sign).astype(np.float32)


def _layer_norm_ref(x, gamma, beta, eps=1e-6):
    mean = x.mean(axis=-1, keepdims=True)
    var = ((x - mean) ** 2).mean(axis=-1, keepdims=True)
    return (x - mean) / np.sqrt(var + eps) * gamma.reshape(-1) + beta.reshape(-1)


def _softmax_ref(x):
    e = np.exp(x - x.max(axis=-1, keepdims=True))
    return e / e.sum(axis=-1, keepdims=True)


class TestOpGradients(TestCase):
    def setUp(self) -> None:
        self.ctx = DeviceContext(ProcessorType.CPU, [0], memory_limit=1 << 24).init()
        self.graph = ComputeGraph(self.ctx, self.ctx.device_at(0), seed=0)
        self.rng = np.random.default_rng(1234)

    def tearDown(self) -> None:
        self.graph.dispose()
        self.ctx.teardown()

    def _check(self, op, ref, arrays, *, atol=2e-3):
        g = self.graph
        nodes = [g.from_numpy(None, a, is_trainable=True) for a in arrays]
        out = op(g, *nodes)

        expected = ref(*[np.asarray(a, dtype=np.float64) for a in arrays])
        np.testing.assert_allclose(out.to_numpy(), expected, rtol=1e-5, atol=1e-5)

        seed = self.rng.standard_normal(out.shape)
        out.seed_gradient(seed)
        g.backward()

        for i, node in enumerate(nodes):
            np.testing.assert_allclose(
                node.gradient_to_numpy(),
                numeric_grad(ref, arrays, i, seed),
                rtol=1e-3,
                atol=atol,
                err_msg=f"gradient of input {i}",
            )

    def _randn(self, *shape):
        return self.rng.standard_normal(shape).astype(np.float32)

    def test_add(self):
        self._check(lambda g, a, b: g.add(a, b), lambda a, b: a + b,
                    [self._randn(3, 4), self._randn(3, 4)])

    def test_add_single_element_rhs(self):
        self._check(lambda g, a, b: g.add(a, b), lambda a, b: a + b.reshape(()),
                    [self._randn(3, 4), self._randn(1, 1)])

    def test_sub(self):
        self._check(lambda g, a, b: g.sub(a, b), lambda a, b: a - b,
                    [self._randn(2, 5), self._randn(2, 5)])

    def test_mul(self):
        self._check(lambda g, a, b: g.mul(a, b), lambda a, b: a * b,
                    [self._randn(3, 3), self._randn(3, 3)])

    def test_mul_single_element_rhs(self):
        self._check(lambda g, a, b: g.mul(a, b), lambda a, b: a * b.reshape(()),
                    [self._randn(2, 3), self._randn(1)])

    def test_scalar_ops(self):
        self._check(lambda g, a: g.mul_scalar(a, -2.5), lambda a: a * -2.5, [self._randn(4)])

    def test_add_scalar(self):
        self._check(lambda g, a: g.add_scalar(a, 7.0), lambda a: a + 7.0, [self._randn(2, 2)])

    def test_scalar_sub(self):
        self._check(lambda g, a: g.scalar_sub(3.0, a), lambda a: 3.0 - a, [self._randn(2, 2)])

    def test_matmul_2d(self):
        self._check(lambda g, a, b: g.matmul(a, b), lambda a, b: a @ b,
                    [self._randn(3, 4), self._randn(4, 2)])

    def test_matmul_batched(self):
        self._check(lambda g, a, b: g.matmul(a, b), lambda a, b: np.matmul(a, b),
                    [self._randn(2, 3, 4), self._randn(2, 4, 5)])

    def test_softmax(self):
        self._check(lambda g, a: g.softmax(a), _softmax_ref, [self._randn(3, 6)])

    def test_index_select_accumulates_repeats(self):
        idx = [2, 0, 2, 2]
        self._check(lambda g, a: g.index_select(a, idx), lambda a: a[idx], [self._randn(4, 3)])

    def test_index_select_out_of_range(self):
        a = self.graph.create_weight("a", (3, 2))
        with self.assertRaises(IndexError):
            self.graph.index_select(a, [3])

    def test_masked_fill(self):
        mask = np.array([[1, 0, 0], [0, 1, 1]], dtype=np.float32)
        self._check(lambda g, a: g.masked_fill(a, mask, -1e4),
                    lambda a: np.where(mask != 0, -1e4, a), [self._randn(2, 3)])

    def test_masked_fill_with_node_mask(self):
        g = self.graph
        a = g.from_numpy("a", np.ones((2, 2), dtype=np.float32), is_trainable=True)
        mask = g.from_numpy("mask", np.array([[0, 1], [1, 0]], dtype=np.float32))
        out = g.masked_fill(a, mask, 5.0)
        np.testing.assert_array_equal(out.to_numpy(), [[1.0, 5.0], [5.0, 1.0]])
        g.backward(out)
        np.testing.assert_array_equal(a.gradient_to_numpy(), [[1.0, 0.0], [0.0, 1.0]])
        self.assertIsNone(mask.gradient)

    def test_layer_norm(self):
        self._check(lambda g, x, gm, bt: g.layer_norm(x, gm, bt),
                    _layer_norm_ref,
                    [self._randn(3, 5), self._randn(1, 5), self._randn(1, 5)],
                    atol=5e-3)

    def test_layer_norm_rejects_bad_affine_shape(self):
        g = self.graph
        x = g.create_weight("x", (2, 4))
        gamma = g.create_weight("gamma", (1, 3), fill=1.0)
        beta = g.create_weight("beta", (1, 4))
        with self.assertRaises(ShapeMismatchError):
            g.layer_norm(x, gamma, beta)

    def test_concat(self):
        self._check(lambda g, a, b: g.concat([a, b], 1),
                    lambda a, b: np.concatenate([a, b], axis=1),
                    [self._randn(2, 3), self._randn(2, 1)])

    def test_view(self):
        self._check(lambda g, a: g.view(a, (3, -1)), lambda a: a.reshape(3, 4),
                    [self._randn(2, 6)])

    def test_view_of_transposed_input(self):
        self._check(lambda g, a: g.view(g.transpose(a), (-1,)), lambda a: a.T.reshape(-1),
                    [self._randn(2, 3)])

    def test_expand(self):
        self._check(lambda g, a: g.expand(a, (4, 3)), lambda a: np.broadcast_to(a, (4, 3)),
                    [self._randn(1, 3)])

    def test_transpose(self):
        self._check(lambda g, a: g.transpose(a), lambda a: a.T, [self._randn(3, 2)])

    def test_relu(self):
        self._check(lambda g, a: g.relu(a), lambda a: np.maximum(a, 0.0),
                    [_away_from_zero(self.rng, (3, 4))])

    def test_sigmoid(self):
        self._check(lambda g, a: g.sigmoid(a), lambda a: 1.0 / (1.0 + np.exp(-a)),
                    [self._randn(3, 4)])

    def test_tanh(self):
        self._check(lambda g, a: g.tanh(a), np.tanh, [self._randn(3, 4)])

    def test_chain_through_shared_subexpression(self):
        def op(g, x, w):
            h = g.tanh(g.matmul(x, w))
            return g.mul(h, h)

        self._check(op, lambda x, w: np.tanh(x @ w) ** 2, [self._randn(2, 3), self._randn(3, 2)])


class TestDropout(TestCase):
    def setUp(self) -> None:
        self.ctx = DeviceContext(ProcessorType.CPU, [0]).init()
        self.device = self.ctx.device_at(0)

    def tearDown(self) -> None:
        self.ctx.teardown()

    def test_training_mask_scales_and_routes_gradient(self):
        with ComputeGraph(self.ctx, self.device, seed=7) as g:
            x = g.from_numpy("x", np.ones((50, 40), dtype=np.float32), is_trainable=True)
            y = g.dropout(x, 0.25)
            out = y.to_numpy()

            kept = out != 0
            np.testing.assert_allclose(out[kept], 1.0 / 0.75, rtol=1e-6)
            self.assertGreater(kept.mean(), 0.65)
            self.assertLess(kept.mean(), 0.85)

            g.backward(y)
            np.testing.assert_allclose(x.gradient_to_numpy(), out, rtol=1e-6)

    def test_inference_graph_is_identity(self):
        with ComputeGraph(self.ctx, self.device, needs_gradient=False) as g:
            x = g.from_numpy("x", np.arange(6, dtype=np.float32))
            np.testing.assert_array_equal(g.dropout(x, 0.5).to_numpy(), np.arange(6))

    def test_invalid_ratio(self):
        with ComputeGraph(self.ctx, self.device) as g:
            x = g.create_weight("x", (2,))
            with self.assertRaises(ValueError):
                g.dropout(x, 1.0)


if __name__ == "__main__":
    unittest.main()
