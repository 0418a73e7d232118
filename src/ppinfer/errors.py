"""Exception hierarchy for ppinfer.

Rejections (zero-probability proposals, empty proposal sets) are handled
inside the kernels and never surface as exceptions. Everything raised from
here indicates either a configuration mistake or a broken invariant.
"""

from __future__ import annotations

__all__ = [
    "InferenceError",
    "KernelConfigError",
    "HandlerStackError",
    "InvalidTraceError",
    "TraceCompletedError",
    "StructureChangedError",
    "ZeroWeightError",
    "InitializationError",
    "FactorOutsideInferenceError",
]


class InferenceError(Exception):
    """Base class for all inference errors."""


class KernelConfigError(InferenceError, ValueError):
    """Unknown kernel name or malformed kernel option."""


class HandlerStackError(InferenceError, RuntimeError):
    """A handler tried to release control it does not hold."""


class InvalidTraceError(InferenceError):
    """A trace violates one of its structural invariants."""


class TraceCompletedError(InvalidTraceError):
    """A completed trace was resumed or completed a second time."""


class StructureChangedError(InferenceError):
    """A diffusion kernel changed the choice structure during annealing."""


class ZeroWeightError(InferenceError):
    """Every particle reached a weight of -inf."""


class InitializationError(InferenceError):
    """No trace with non-zero probability was found."""


class FactorOutsideInferenceError(InferenceError):
    """A factor statement was reached with no inference handler installed."""
