import json
import tempfile
import unittest
from pathlib import Path
from unittest import TestCase

import numpy as np

from seqtensor.domain._errors import ShapeMismatchError
from seqtensor.domain.device._device import ProcessorType
from seqtensor.infrastructure.allocator._context import DeviceContext
from seqtensor.infrastructure.serialization import (
    ModelContainer,
    ndarray_to_payload,
    payload_to_ndarray,
)
from seqtensor.infrastructure.units import FeedForwardLayer, LayerNormalization


class TestPayload(TestCase):
    def test_payload_preserves_dtype_and_shape(self):
        arr = np.arange(12, dtype=np.float16).reshape(3, 4)
        out = payload_to_ndarray(ndarray_to_payload(arr))
        self.assertEqual(out.dtype, np.float16)
        np.testing.assert_array_equal(out, arr)

    def test_payload_of_non_contiguous_array(self):
        arr = np.arange(6, dtype=np.float32).reshape(2, 3).T
        out = payload_to_ndarray(ndarray_to_payload(arr))
        np.testing.assert_array_equal(out, arr)

    def test_payload_is_json_serializable(self):
        payload = ndarray_to_payload(np.ones((2, 2), dtype=np.float32))
        self.assertEqual(json.loads(json.dumps(payload))["shape"], [2, 2])

    def test_payload_element_count_mismatch(self):
        payload = ndarray_to_payload(np.ones((2, 2), dtype=np.float32))
        payload["shape"] = [5]
        with self.assertRaises(ValueError):
            payload_to_ndarray(payload)


class TestModelContainer(TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "nested" / "weights.json"

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_put_copies_input(self):
        c = ModelContainer()
        arr = np.zeros(3, dtype=np.float32)
        c.put("a", arr)
        arr[0] = 9.0
        self.assertEqual(c.get("a")[0], 0.0)
        self.assertIn("a", c)
        self.assertEqual(len(c), 1)

    def test_missing_name(self):
        with self.assertRaises(KeyError):
            ModelContainer().get("nope")

    def test_save_and_load_file(self):
        c = ModelContainer()
        c.put("ffn.W", np.arange(6, dtype=np.float32).reshape(2, 3))
        c.put("ffn.b", np.zeros((1, 3), dtype=np.float32))
        c.save(self.path)

        loaded = ModelContainer.load(self.path)
        self.assertEqual(sorted(loaded.names()), ["ffn.W", "ffn.b"])
        np.testing.assert_array_equal(loaded.get("ffn.W"), c.get("ffn.W"))

    def test_unknown_format(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"format": "other", "weights": {}}), encoding="utf-8")
        with self.assertRaises(ValueError):
            ModelContainer.load(self.path)


class TestUnitPersistence(TestCase):
    def setUp(self) -> None:
        self.ctx = DeviceContext(ProcessorType.CPU, [0]).init()
        self.device = self.ctx.device_at(0)
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self.tmp.cleanup()
        self.ctx.teardown()

    def test_layer_round_trip_through_file(self):
        rng = np.random.default_rng(0)
        src = FeedForwardLayer(self.ctx, self.device, "ffn", 4, 3, rng=rng)
        src.b.value.fill(0.5)
        c = ModelContainer()
        src.save(c)
        path = Path(self.tmp.name) / "ffn.json"
        c.save(path)

        dst = FeedForwardLayer(self.ctx, self.device, "ffn", 4, 3, rng=np.random.default_rng(1))
        dst.load(ModelContainer.load(path))
        np.testing.assert_array_equal(dst.W.to_numpy(), src.W.to_numpy())
        np.testing.assert_array_equal(dst.b.to_numpy(), np.full((1, 3), 0.5))

    def test_load_missing_weight(self):
        ln = LayerNormalization(self.ctx, self.device, "ln", 4)
        with self.assertRaises(KeyError):
            ln.load(ModelContainer())

    def test_load_shape_mismatch(self):
        c = ModelContainer()
        LayerNormalization(self.ctx, self.device, "ln", 4).save(c)
        other = LayerNormalization(self.ctx, self.device, "ln", 5)
        with self.assertRaises(ShapeMismatchError):
            other.load(c)


if __name__ == "__main__":
    unittest.main()
