"""Futures: deferred sub-computations of a program.

A future wraps a CPS function ``fn(store, k, address)``. Depending on the
policy stored in the program store it either runs immediately, or is kept
in the store until ``finish_all_futures`` runs the pending futures in LIFO
(``deterministic``) or random (``stochastic``) order. The stochastic order
is itself a random choice of the program, so inference explores it.
"""

from __future__ import annotations

from ppinfer.core.runtime import Thunk, sample
from ppinfer.models.distributions import random_integer

__all__ = [
    "POLICIES",
    "set_future_policy",
    "future",
    "finish_all_futures",
]

_FUTURES = "__futures"
_POLICY = "__future_policy"

POLICIES = ("immediate", "deterministic", "stochastic")


def _with(store, **entries):
    # Stores are snapshot at every choice, so they are never mutated in place.
    new = dict(store)
    for name, value in entries.items():
        new["__" + name] = value
    return new


def _pending(store) -> tuple:
    return store.get(_FUTURES, ())


def set_future_policy(store, k, address, policy: str):
    """Select the policy used by subsequent ``future`` calls."""
    if policy not in POLICIES:
        raise ValueError(f"unknown future policy {policy!r}; expected one of {POLICIES}")
    return Thunk(k, _with(store, future_policy=policy))


def future(store, k, address, fn):
    """Run ``fn`` now (immediate policy) or defer it."""
    if store.get(_POLICY, "immediate") == "immediate":
        return fn(store, k, address)

    def deferred(s, k2):
        return fn(s, k2, address)

    return Thunk(k, _with(store, futures=_pending(store) + (deferred,)))


def finish_all_futures(store, k, address):
    """Run every pending future, then continue with ``k(store)``."""
    pending = _pending(store)
    if not pending:
        return Thunk(k, store)

    def resume(s):
        return finish_all_futures(s, k, address)

    if store.get(_POLICY, "immediate") == "stochastic":

        def picked(s, i):
            futures = _pending(s)
            return futures[i](_with(s, futures=futures[:i] + futures[i + 1 :]), resume)

        return sample(store, picked, f"{address}_f{len(pending)}", random_integer, (len(pending),))

    return pending[-1](_with(store, futures=pending[:-1]), resume)
