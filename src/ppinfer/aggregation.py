"""Aggregation of inference results into distributions.

``Histogram`` counts the values returned by a chain, ``MAP`` keeps the
highest-scoring one; both produce a ``Marginal``, an empirical distribution
over values that satisfies the ``Distribution`` contract.
"""

from __future__ import annotations

import math
from collections.abc import Hashable, Iterable

import jax
import jax.numpy as jnp

from ppinfer.models.distributions import Distribution

__all__ = [
    "Marginal",
    "Histogram",
    "MAP",
]


def _value_key(value):
    """Grouping key: the value itself when hashable, otherwise its repr."""
    if isinstance(value, Hashable):
        try:
            hash(value)
            return value
        except TypeError:
            pass
    return repr(value)


class Marginal(Distribution):
    """Empirical distribution over a finite set of values.

    Parameters
    ----------
    values : list
        Distinct support values.
    log_probs : list of float
        Normalized log-probabilities aligned with ``values``.

    Attributes
    ----------
    normalization_constant : float or None
        Log marginal likelihood estimate (particle filter).
    samples : list or None
        Retained ``{"value", "score", "time"}`` samples (MAP).
    trace : list or None
        Sampled values of one final particle (particle filter).
    particle_history : list or None
        Particle populations (particle filter).
    """

    def __init__(self, values: list, log_probs: list[float]):
        if len(values) != len(log_probs):
            raise ValueError("values and log_probs must have the same length")
        self._values = list(values)
        self._log_probs = [float(lp) for lp in log_probs]
        self._index = {_value_key(v): i for i, v in enumerate(self._values)}
        self.normalization_constant = None
        self.samples = None
        self.trace = None
        self.particle_history = None

    @classmethod
    def from_counts(cls, counts: Iterable[tuple[object, float]]) -> Marginal:
        """Build from ``(value, count)`` pairs; counts are normalized."""
        counts = list(counts)
        total = sum(c for _, c in counts)
        if total <= 0:
            raise ValueError("cannot build a distribution from zero total count")
        return cls([v for v, _ in counts], [math.log(c / total) for _, c in counts])

    def support(self, params=()) -> list:
        return list(self._values)

    def probability(self, value) -> float:
        i = self._index.get(_value_key(value))
        return 0.0 if i is None else math.exp(self._log_probs[i])

    def score(self, params, value):
        i = self._index.get(_value_key(value))
        return jnp.asarray(-jnp.inf if i is None else self._log_probs[i])

    def sample(self, key, params=()):
        i = int(jax.random.categorical(key, jnp.asarray(self._log_probs)))
        return self._values[i]

    def items(self) -> list[tuple[object, float]]:
        """``(value, probability)`` pairs, most probable first."""
        pairs = [(v, math.exp(lp)) for v, lp in zip(self._values, self._log_probs)]
        return sorted(pairs, key=lambda p: -p[1])

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        body = ", ".join(f"{v!r}: {p:.4f}" for v, p in self.items()[:5])
        more = ", ..." if len(self) > 5 else ""
        return f"Marginal({{{body}{more}}})"


class Histogram:
    """Counts values in insertion order."""

    def __init__(self):
        self._counts: dict = {}
        self._values: dict = {}

    def add(self, value, score=None, time=None) -> None:
        key = _value_key(value)
        if key not in self._counts:
            self._counts[key] = 0
            self._values[key] = value
        self._counts[key] += 1

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def to_distribution(self) -> Marginal:
        return Marginal.from_counts((self._values[k], c) for k, c in self._counts.items())


class MAP:
    """Keeps the highest-scoring value seen.

    Parameters
    ----------
    retain_samples : bool
        Also keep every ``(value, score, time)`` sample.
    """

    def __init__(self, retain_samples: bool = False):
        self.max_value = None
        self.max_score = -math.inf
        self.retain_samples = retain_samples
        self.samples: list[dict] = []

    def add(self, value, score, time=None) -> None:
        score = float(score)
        if self.retain_samples:
            self.samples.append({"value": value, "score": score, "time": time})
        if score > self.max_score:
            self.max_value = value
            self.max_score = score

    def to_distribution(self) -> Marginal:
        hist = Histogram()
        hist.add(self.max_value)
        dist = hist.to_distribution()
        if self.retain_samples:
            dist.samples = self.samples
        return dist
