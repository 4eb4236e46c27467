"""
Weight initializer registry.

Initializers are registered by string name via a decorator and looked up when
parameters are created:

    @WeightInitializer.register_initializer("xavier")
    def xavier(tensor, rng): ...

    WeightInitializer("xavier")(tensor, rng)

Each initializer fills the tensor in-place from a host-side NumPy generator
and returns it, so the same seed yields the same weights on every device.
"""

from __future__ import annotations

import math
from typing import Any, Callable, ClassVar, Dict, Sequence, Tuple, TypeVar

import numpy as np

from ..tensor._tensor import Tensor

T = TypeVar("T", bound=Callable[..., Tensor])


def fan_in_and_fan_out(shape: Sequence[int]) -> Tuple[int, int]:
    """
    Compute fan-in and fan-out for a weight of `shape`.

    Matrices are laid out as ``(in_features, out_features)``.
    """
    shape = tuple(int(d) for d in shape)
    if len(shape) == 0:
        return 1, 1
    if len(shape) == 1:
        return shape[0], shape[0]
    fan_out = shape[-1]
    fan_in = 1
    for d in shape[:-1]:
        fan_in *= d
    return max(1, fan_in), max(1, fan_out)


class WeightInitializer:
    """
    Registry-backed weight initializer dispatcher.

    Notes
    -----
    - Initializers are stored by string name in a class-level registry.
    - The initializer callable receives ``(tensor, rng)``, mutates `tensor`
      in-place and returns it.
    """

    INITIALIZERS: ClassVar[Dict[str, Callable[..., Tensor]]] = {}

    def __init__(self, initializer_name: str) -> None:
        try:
            self._initializer: Callable[..., Tensor] = self.INITIALIZERS[
                initializer_name
            ]
        except KeyError as e:
            available = ", ".join(sorted(self.INITIALIZERS)) or "<none>"
            raise ValueError(
                f"Unsupported initializer name: {initializer_name!r}. "
                f"Available: {available}"
            ) from e
        self.name = initializer_name

    @classmethod
    def register_initializer(
        cls, name: str, *, overwrite: bool = False
    ) -> Callable[[T], T]:
        """
        Decorator to register a weight initializer under `name`.

        Parameters
        ----------
        name:
            Registry key used to retrieve the initializer later.
        overwrite:
            If False (default), raises if `name` is already registered.
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Initializer name must be a non-empty string")

        def decorator(func: T) -> T:
            if not overwrite and name in cls.INITIALIZERS:
                raise ValueError(f"Initializer already registered: {name!r}")
            cls.INITIALIZERS[name] = func
            return func

        return decorator

    @classmethod
    def available(cls) -> tuple[str, ...]:
        """Return registered initializer names (sorted)."""
        return tuple(sorted(cls.INITIALIZERS))

    def __call__(self, tensor: Tensor, rng: np.random.Generator, **kwargs: Any) -> Tensor:
        return self._initializer(tensor, rng, **kwargs)


@WeightInitializer.register_initializer("zeros")
def zeros(tensor: Tensor, rng: np.random.Generator) -> Tensor:
    tensor.fill(0.0)
    return tensor


@WeightInitializer.register_initializer("ones")
def ones(tensor: Tensor, rng: np.random.Generator) -> Tensor:
    tensor.fill(1.0)
    return tensor


@WeightInitializer.register_initializer("xavier")
def xavier(tensor: Tensor, rng: np.random.Generator) -> Tensor:
    """
    Xavier (Glorot) normal: ``std = sqrt(2 / (fan_in + fan_out))``.
    """
    fan_in, fan_out = fan_in_and_fan_out(tensor.shape)
    std = math.sqrt(2.0 / float(fan_in + fan_out))
    tensor.copy_from_numpy(rng.standard_normal(tensor.shape) * std)
    return tensor


@WeightInitializer.register_initializer("xavier_uniform")
def xavier_uniform(tensor: Tensor, rng: np.random.Generator) -> Tensor:
    """
    Xavier (Glorot) uniform: ``U(-b, b)`` with ``b = sqrt(6 / (fan_in + fan_out))``.
    """
    fan_in, fan_out = fan_in_and_fan_out(tensor.shape)
    bound = math.sqrt(6.0 / float(fan_in + fan_out))
    tensor.copy_from_numpy(rng.uniform(-bound, bound, size=tensor.shape))
    return tensor


@WeightInitializer.register_initializer("normal")
def normal(tensor: Tensor, rng: np.random.Generator, std: float = 0.02) -> Tensor:
    tensor.copy_from_numpy(rng.standard_normal(tensor.shape) * float(std))
    return tensor
