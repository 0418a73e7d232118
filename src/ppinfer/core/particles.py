"""Particle records for the particle filter."""

from __future__ import annotations

import dataclasses
from typing import Any

import chex

from ppinfer.core.runtime import clone_store

__all__ = [
    "Particle",
    "copy_particle",
]


@chex.dataclass
class Particle:
    """One independent execution of the program.

    Attributes
    ----------
    id : int
        Identity; a particle receives a new id at every random choice.
    continuation : Callable
        Continuation ``continuation(store)`` the particle resumes from.
    store : dict
        Private program store.
    weight : float
        Log importance weight.
    log_prior : float
        Sum of the prior scores of the sampled values.
    log_like : float
        Sum of the factor scores.
    log_post : float
        ``log_prior + log_like``.
    active : bool
        False once the particle has exited.
    value : Any
        Return value, once exited.
    trace : list
        Values sampled so far, in order.
    """

    id: int
    continuation: Any
    store: Any
    weight: float = 0.0
    log_prior: float = 0.0
    log_like: float = 0.0
    log_post: float = 0.0
    active: bool = True
    value: Any = None
    trace: list = dataclasses.field(default_factory=list)


def copy_particle(particle: Particle) -> Particle:
    """Copy of ``particle`` whose store and sampled values are not shared."""
    return particle.replace(store=clone_store(particle.store), trace=list(particle.trace))
