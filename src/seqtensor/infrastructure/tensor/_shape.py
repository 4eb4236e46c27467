"""
Shape and stride helpers shared by tensor views and operations.

Strides are measured in elements, not bytes.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple


def as_shape(shape: Iterable[int]) -> Tuple[int, ...]:
    t = tuple(int(d) for d in shape)
    if any(d < 0 for d in t):
        raise ValueError(f"Shape dimensions must be non-negative, got {t}")
    return t


def numel(shape: Sequence[int]) -> int:
    n = 1
    for d in shape:
        n *= int(d)
    return n


def contiguous_strides(shape: Sequence[int]) -> Tuple[int, ...]:
    """
    Return row-major strides (in elements) for `shape`.
    """
    strides = []
    acc = 1
    for d in reversed(shape):
        strides.append(acc)
        acc *= max(int(d), 1)
    return tuple(reversed(strides))


def max_extent(shape: Sequence[int], strides: Sequence[int], offset: int) -> int:
    """
    Return one past the largest element index addressed by a strided view.

    Returns `offset` for views with zero elements.
    """
    if numel(shape) == 0:
        return offset
    last = offset
    for d, s in zip(shape, strides):
        last += (int(d) - 1) * int(s)
    return last + 1


def infer_view_shape(new_shape: Sequence[int], total: int) -> Tuple[int, ...]:
    """
    Resolve a single ``-1`` entry in `new_shape` against `total` elements.

    Raises
    ------
    ValueError
        If more than one ``-1`` is given or the known dims do not divide
        `total`.
    """
    dims = [int(d) for d in new_shape]
    unknown = [i for i, d in enumerate(dims) if d == -1]
    if len(unknown) > 1:
        raise ValueError(f"Only one dimension may be -1, got {tuple(dims)}")
    if any(d < -1 for d in dims):
        raise ValueError(f"Invalid view shape {tuple(dims)}")

    if unknown:
        known = numel(d for d in dims if d != -1)
        if known == 0 or total % known != 0:
            raise ValueError(
                f"Cannot infer -1 in {tuple(dims)} for {total} elements"
            )
        dims[unknown[0]] = total // known
    return tuple(dims)


def broadcast_reduce_axes(
    src_shape: Sequence[int], dst_shape: Sequence[int]
) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    """
    Return the axes of `src_shape` that must be summed to reduce it to
    `dst_shape` under right-aligned broadcasting.

    Returns
    -------
    (lead_axes, keep_axes)
        `lead_axes` are leading axes absent from `dst_shape`; `keep_axes` are
        axes where `dst_shape` has size 1 and `src_shape` does not. Summing
        `keep_axes` must keep dims; summing `lead_axes` must drop them.
    """
    lead = len(src_shape) - len(dst_shape)
    if lead < 0:
        raise ValueError(f"Cannot reduce {tuple(src_shape)} to {tuple(dst_shape)}")
    lead_axes = tuple(range(lead))
    keep_axes = []
    for i, d in enumerate(dst_shape):
        s = src_shape[lead + i]
        if d == s:
            continue
        if d != 1:
            raise ValueError(
                f"Cannot reduce {tuple(src_shape)} to {tuple(dst_shape)}"
            )
        keep_axes.append(lead + i)
    return lead_axes, tuple(keep_axes)


def sum_to_shape(xp, arr, shape: Sequence[int]):
    """
    Sum a broadcast array `arr` back down to `shape`.
    """
    shape = tuple(shape)
    if tuple(arr.shape) == shape:
        return arr
    lead_axes, keep_axes = broadcast_reduce_axes(tuple(arr.shape), shape)
    out = arr
    if keep_axes:
        out = xp.sum(out, axis=keep_axes, keepdims=True)
    if lead_axes:
        out = xp.sum(out, axis=lead_axes)
    return out.reshape(shape)
