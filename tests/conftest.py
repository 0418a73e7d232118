"""Shared fixtures and example programs."""

import math

import jax.numpy as jnp
import pytest

from ppinfer import Runtime, factor, sample
from ppinfer.algorithms.initialize import Initializer
from ppinfer.core.runtime import Done, Thunk
from ppinfer.models.distributions import Distribution, bernoulli, gaussian, random_integer


class Flip(Distribution):
    """Deterministic proposer for booleans: always proposes the other value."""

    def sample(self, key, params):
        _, previous = params
        return not previous

    def score(self, params, value):
        _, previous = params
        return jnp.where(value != previous, 0.0, -jnp.inf)


flip = Flip()


def coin_program(store, k, address):
    """x ~ Bernoulli(0.5); factor(x ? log 0.9 : log 0.1); return x."""

    def flipped(s, x):
        return factor(s, lambda s: k(s, x), address + "f", math.log(0.9 if x else 0.1))

    return sample(store, flipped, address + "x", bernoulli, (0.5,))


def flip_coin_program(store, k, address):
    """Same model as ``coin_program`` with a proposer that always flips."""

    def flipped(s, x):
        return factor(s, lambda s: k(s, x), address + "f", math.log(0.9 if x else 0.1))

    return sample(store, flipped, address + "x", bernoulli.with_proposer(flip), (0.5,))


def constant_program(store, k, address):
    """A single choice with one possible value."""
    return sample(store, k, address + "c", random_integer, (1,))


def chain_program(store, k, address):
    """a ~ N(0, 1); b ~ N(a, 1); c ~ Bernoulli(0.3); return (a, b, c)."""

    def got_a(s, a):
        def got_b(s, b):
            return sample(s, lambda s, c: k(s, (a, b, c)), address + "c", bernoulli, (0.3,))

        return sample(s, got_b, address + "b", gaussian, (a, 1.0))

    return sample(store, got_a, address + "a", gaussian, (0.0, 1.0))


def switch_program(store, k, address):
    """Structure switch: b ~ Bernoulli(0.3); b ? x ~ N(0, 1) : y ~ N(1, 2)."""

    def switched(s, b):
        if b:
            return sample(s, lambda s, x: k(s, b), address + "x", gaussian, (0.0, 1.0))
        return sample(s, lambda s, y: k(s, b), address + "y", gaussian, (1.0, 2.0))

    return sample(store, switched, address + "b", bernoulli, (0.3,))


def impossible_program(store, k, address):
    return factor(store, lambda s: k(s, None), address + "f", -math.inf)


@pytest.fixture
def runtime():
    return Runtime(seed=0)


def flip_switch_program(store, k, address):
    """``switch_program`` whose structure choice is always flipped by MH."""

    def switched(s, b):
        if b:
            return sample(s, lambda s, x: k(s, b), address + "x", gaussian, (0.0, 1.0))
        return sample(s, lambda s, y: k(s, b), address + "y", gaussian, (1.0, 2.0))

    return sample(store, switched, address + "b", bernoulli.with_proposer(flip), (0.3,))


class Replay(Initializer):
    """Initializer that takes the values of selected addresses from ``values``."""

    def __init__(self, runtime, program, values):
        super().__init__(runtime, Done, program, {}, "")
        self.values = values

    def sample(self, store, k, address, dist, params):
        if address not in self.values:
            return super().sample(store, k, address, dist, params)
        value = self.values[address]
        self.trace.add_choice(dist, params, value, address, store, k)
        return Thunk(k, store, value)


def make_trace(runtime, program, **values):
    """Complete trace of ``program`` with the given choice values."""
    return runtime.drive(Replay(runtime, program, values).run())
