import unittest
from unittest import TestCase

import numpy as np

from seqtensor.domain._status import StepStatus
from seqtensor.domain.device._device import ProcessorType
from seqtensor.infrastructure.allocator._context import DeviceContext
from seqtensor.infrastructure.decoding import decode
from seqtensor.infrastructure.graph._graph import ComputeGraph
from seqtensor.infrastructure.units import Embedding, FeedForwardLayer


class TestDecodeLoop(TestCase):
    def setUp(self) -> None:
        self.ctx = DeviceContext(ProcessorType.CPU, [0], memory_limit=1 << 20).init()
        self.device = self.ctx.device_at(0)
        self.pool = self.ctx.pool(self.device)
        rng = np.random.default_rng(2)
        self.emb = Embedding(self.ctx, self.device, "emb", 8, 4, rng=rng)
        self.out = FeedForwardLayer(self.ctx, self.device, "out", 4, 8, rng=rng)
        self.graph = ComputeGraph(self.ctx, self.device, needs_gradient=False)

    def tearDown(self) -> None:
        self.graph.dispose()
        self.ctx.teardown()

    def _greedy_step(self, token):
        def step(scope, i):
            probs = scope.softmax(self.out(scope, self.emb(scope, [token[0]])))
            token[0] = int(np.argmax(probs.to_numpy()[0]))
            return token[0]

        return step

    def test_runs_every_step_and_releases_scopes(self):
        before = self.pool.stats().live_buffers
        result = decode(self.graph, self._greedy_step([1]), 5)

        self.assertIs(result.status, StepStatus.SUCCEED)
        self.assertEqual(result.steps, 5)
        self.assertEqual(len(result.outputs), 5)
        self.assertTrue(all(0 <= t < 8 for t in result.outputs))
        self.assertEqual(self.pool.stats().live_buffers, before)
        self.assertEqual(self.graph.nodes(), [])

    def test_none_stops_the_loop(self):
        result = decode(self.graph, lambda scope, i: None if i == 2 else i * 10, 10)
        self.assertIs(result.status, StepStatus.SUCCEED)
        self.assertEqual(result.outputs, [0, 10])
        self.assertEqual(result.steps, 2)

    def test_out_of_memory_keeps_earlier_outputs(self):
        before = self.pool.stats().live_buffers

        def step(scope, i):
            x = scope.create_weight(None, (4, 4), fill=float(i))
            if i == 3:
                scope.create_weight(None, (1024, 1024))
            return float(x.to_numpy().sum())

        with self.assertLogs("seqtensor.infrastructure.decoding._loop", level="WARNING"):
            result = decode(self.graph, step, 10)

        self.assertIs(result.status, StepStatus.OOM)
        self.assertEqual(result.steps, 3)
        self.assertEqual(result.outputs, [0.0, 16.0, 32.0])
        # the failed step's scope was still released
        self.assertEqual(self.pool.stats().live_buffers, before)

    def test_step_labels(self):
        seen = []

        def step(scope, i):
            seen.append(scope.label)
            return i

        decode(self.graph, step, 2, label="Beam")
        self.assertEqual(seen, ["Beam_0", "Beam_1"])

    def test_zero_steps(self):
        result = decode(self.graph, lambda scope, i: i, 0)
        self.assertEqual(result.steps, 0)
        self.assertEqual(result.outputs, [])

    def test_negative_steps(self):
        with self.assertRaises(ValueError):
            decode(self.graph, lambda scope, i: i, -1)


if __name__ == "__main__":
    unittest.main()
