"""
Base64 array payloads for the JSON weight container.

An array is stored as ``{"b64", "dtype", "shape", "order"}``: the raw
little-endian bytes of its C-ordered copy, the NumPy dtype string, the shape
as a list and the memory order tag (always ``"C"``).
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict

import numpy as np

_ORDER = "C"


def ndarray_to_payload(arr: Any) -> Dict[str, Any]:
    """
    Encode a host array as a JSON-safe payload.

    Big-endian input is byte-swapped so files are identical across hosts.
    """
    a = np.ascontiguousarray(arr)
    if a.dtype.byteorder == ">":
        a = a.astype(a.dtype.newbyteorder("<"))
    return {
        "b64": base64.b64encode(a.tobytes(order=_ORDER)).decode("ascii"),
        "dtype": a.dtype.str,
        "shape": [int(d) for d in a.shape],
        "order": _ORDER,
    }


def payload_to_ndarray(payload: Dict[str, Any]) -> np.ndarray:
    """
    Decode a payload written by `ndarray_to_payload` into an owning array.

    Raises
    ------
    ValueError
        If the payload is malformed (bad base64, unknown order) or its byte
        count does not match the recorded shape and dtype.
    """
    order = payload.get("order", _ORDER)
    if order != _ORDER:
        raise ValueError(f"Unsupported array order {order!r}; expected '{_ORDER}'")

    try:
        raw = base64.b64decode(str(payload["b64"]).encode("ascii"), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e

    dtype = np.dtype(str(payload["dtype"]))
    shape = tuple(int(d) for d in payload["shape"])
    expected = int(np.prod(shape, dtype=np.int64))

    if len(raw) != expected * dtype.itemsize:
        raise ValueError(
            f"Payload holds {len(raw)} bytes but shape {shape} of {dtype} "
            f"needs {expected * dtype.itemsize}"
        )
    # frombuffer is read-only; copy to own the memory
    return np.frombuffer(raw, dtype=dtype).reshape(shape).copy()
