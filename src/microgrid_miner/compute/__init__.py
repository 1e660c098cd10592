"""Pluggable per-task computations."""

from __future__ import annotations

from collections.abc import Callable

from microgrid_miner.compute.twin_prime import twin_prime_computation
from microgrid_miner.protocol.models import Task

Computation = Callable[[Task], object | None]
"""Pure function from a task to its result payload; ``None`` means no usable result."""

COMPUTATIONS: dict[str, Computation] = {
    "twin-primes": twin_prime_computation,
}


def resolve_computation(name: str) -> Computation:
    """Resolve a computation by name once, before the worker pool starts."""

    try:
        return COMPUTATIONS[name]
    except KeyError:
        supported = ", ".join(sorted(COMPUTATIONS))
        raise ValueError(f"Unknown computation {name!r}. Supported: {supported}.") from None


__all__ = ["COMPUTATIONS", "Computation", "resolve_computation"]
