"""
Named weight container persisted as a single JSON file.

A `ModelContainer` maps unique weight names to host arrays. Weight nodes and
neural units write themselves into a container with `save(container)` and
read themselves back with `load(container)`; the container handles the file
format.

Format
------
{
  "format": "seqtensor.json.weights.v1",
  "weights": {
    "ffn.W": {"b64": "...", "dtype": "<f4", "shape": [...], "order": "C"},
    ...
  }
}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterator, List

import numpy as np
from typing_extensions import Self

from ._b64 import ndarray_to_payload, payload_to_ndarray

FORMAT = "seqtensor.json.weights.v1"


class ModelContainer:
    """
    In-memory map of weight name to host array.
    """

    def __init__(self) -> None:
        self._weights: Dict[str, np.ndarray] = {}

    def __repr__(self) -> str:
        return f"ModelContainer(weights={len(self._weights)})"

    def __contains__(self, name: object) -> bool:
        return name in self._weights

    def __len__(self) -> int:
        return len(self._weights)

    def __iter__(self) -> Iterator[str]:
        return iter(self._weights)

    def names(self) -> List[str]:
        return list(self._weights)

    def put(self, name: str, arr: Any) -> None:
        """
        Store a copy of `arr` under `name`, replacing any previous entry.
        """
        self._weights[str(name)] = np.array(arr, copy=True, order="C")

    def get(self, name: str) -> np.ndarray:
        """
        Return the array stored under `name`.

        Raises
        ------
        KeyError
            If no entry has that name.
        """
        try:
            return self._weights[name]
        except KeyError:
            raise KeyError(f"Missing weight in container: '{name}'") from None

    def save(self, path: str | Path) -> None:
        """
        Write the container to `path` as JSON with base64 payloads.
        """
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "format": FORMAT,
            "weights": {k: ndarray_to_payload(v) for k, v in self._weights.items()},
        }
        p.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path) -> Self:
        """
        Read a container written by `save()`.

        Raises
        ------
        ValueError
            If the file format is unsupported.
        """
        p = Path(path)
        payload = json.loads(p.read_text(encoding="utf-8"))

        fmt = payload.get("format")
        if fmt != FORMAT:
            raise ValueError(f"Unsupported weight container format: {fmt!r}")

        container = cls()
        for name, entry in payload["weights"].items():
            container._weights[str(name)] = payload_to_ndarray(entry)
        return container
