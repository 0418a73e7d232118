"""Combinators over kernel functions.

A kernel function has the signature ``kernel(cont, trace)`` and returns a
step; the resulting trace is eventually passed to ``cont``.
"""

from __future__ import annotations

from collections.abc import Callable

from ppinfer.core.runtime import Thunk, cps_iterate

__all__ = ["tap", "sequence", "repeat"]


def tap(fn: Callable) -> Callable:
    """Kernel that calls ``fn(trace)`` for its side effect and passes the trace on."""

    def kernel(cont, trace):
        fn(trace)
        return Thunk(cont, trace)

    return kernel


def sequence(*kernels: Callable) -> Callable:
    """Kernel running ``kernels`` one after the other.

    ``sequence(k1, k2, k3)`` is ``sequence(k1, sequence(k2, k3))``.
    """
    if not kernels:
        raise ValueError("sequence() requires at least one kernel")
    if len(kernels) == 1:
        return kernels[0]
    first, rest = kernels[0], sequence(*kernels[1:])

    def kernel(cont, trace):
        return first(lambda trace2: rest(cont, trace2), trace)

    return kernel


def repeat(n: int, kernel: Callable) -> Callable:
    """Kernel applying ``kernel`` ``n`` times; ``repeat(0, k)`` passes the trace through."""
    if n < 0:
        raise ValueError(f"repeat() count must be non-negative, got {n}")

    def repeated(cont, trace):
        return cps_iterate(n, trace, kernel, cont)

    return repeated
