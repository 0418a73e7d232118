"""Suspend/resume execution of probabilistic programs.

A program is a function ``program(store, k, address)`` written in
continuation-passing style. Instead of calling the inference algorithm
directly at a random choice or factor statement, the program *returns* a
step object (``Sample``, ``Factor``, ``Exit``). ``Runtime.drive`` is the
trampoline that hands every step to the currently active handler and keeps
going until a ``Done`` step is produced, so the Python call stack stays
flat no matter how long a chain runs.

Exactly one handler is active at any time: the top of the
``HandlerStack``. Inference algorithms push themselves when they start and
pop themselves when they hand their result on. An ``Interceptor`` sits on
top of another handler for the duration of a resumed computation and
records which handler it displaced, so nested delegation unwinds in exact
reverse order.
"""

from __future__ import annotations

import copy
import functools
import logging
import math
from collections.abc import Callable
from typing import Any

from ppinfer.core.random import KeyStream
from ppinfer.errors import FactorOutsideInferenceError, HandlerStackError

__all__ = [
    "Step",
    "Sample",
    "Factor",
    "Exit",
    "Thunk",
    "Done",
    "Handler",
    "Interceptor",
    "ForwardSampler",
    "HandlerStack",
    "Runtime",
    "sample",
    "factor",
    "sample_with_factor",
    "with_importance_dist",
    "cps_iterate",
    "value_of",
    "is_neg_inf",
    "clone_store",
]

logger = logging.getLogger(__name__)


def value_of(x: Any) -> float:
    """Extract a plain float from a (possibly differentiable) score."""
    return float(x)


def is_neg_inf(x: Any) -> bool:
    return value_of(x) == -math.inf


def clone_store(store):
    """Shallow copy of a program store."""
    return copy.copy(store)


# =============================================================================
# Steps
# =============================================================================


class Step:
    """A unit of work returned to the trampoline."""

    __slots__ = ()

    def dispatch(self, handler: Handler) -> Step:
        raise NotImplementedError


class Sample(Step):
    __slots__ = ("store", "k", "address", "dist", "params")

    def __init__(self, store, k, address, dist, params):
        self.store = store
        self.k = k
        self.address = address
        self.dist = dist
        self.params = params

    def dispatch(self, handler):
        return handler.sample(self.store, self.k, self.address, self.dist, self.params)


class Factor(Step):
    __slots__ = ("store", "k", "address", "score")

    def __init__(self, store, k, address, score):
        self.store = store
        self.k = k
        self.address = address
        self.score = score

    def dispatch(self, handler):
        return handler.factor(self.store, self.k, self.address, self.score)


class Exit(Step):
    """Program termination, early exit, or a kernel bailing out.

    ``bail`` is ``None`` for a regular exit and the accept flag when a
    kernel abandons its proposal without finishing the program.
    """

    __slots__ = ("store", "value", "early", "bail")

    def __init__(self, store, value, early: bool = False, bail: bool | None = None):
        self.store = store
        self.value = value
        self.early = early
        self.bail = bail

    def dispatch(self, handler):
        return handler.exit(self.store, self.value, self.early, self.bail)


class Thunk(Step):
    """Deferred call, used to resume continuations from the trampoline."""

    __slots__ = ("fn", "args")

    def __init__(self, fn: Callable[..., Step], *args):
        self.fn = fn
        self.args = args

    def dispatch(self, handler):
        return self.fn(*self.args)


class Done(Step):
    __slots__ = ("value",)

    def __init__(self, value):
        self.value = value

    def dispatch(self, handler):
        raise HandlerStackError("a finished computation cannot be dispatched")


# =============================================================================
# Handlers
# =============================================================================


class Handler:
    """Interface implemented by every inference algorithm."""

    def sample(self, store, k, address, dist, params) -> Step:
        raise NotImplementedError

    def factor(self, store, k, address, score) -> Step:
        raise NotImplementedError

    def exit(self, store, value, early: bool = False, bail: bool | None = None) -> Step:
        raise NotImplementedError


class Interceptor(Handler):
    """Handler that temporarily sits on top of another handler.

    Every call to ``intercept`` records the handler it displaces; ``release``
    restores exactly that handler. Sample and factor statements are
    forwarded to the most recently displaced handler.
    """

    def __init__(self):
        self._intercepted: list[Handler] = []

    def intercept(self, handlers: HandlerStack) -> None:
        self._intercepted.append(handlers.active)
        handlers.push(self)

    def release(self, handlers: HandlerStack) -> Handler:
        handlers.pop(self)
        return self._intercepted.pop()

    @property
    def delegate(self) -> Handler:
        if not self._intercepted:
            raise HandlerStackError(f"{type(self).__name__} is not intercepting any handler")
        return self._intercepted[-1]

    def sample(self, store, k, address, dist, params):
        return self.delegate.sample(store, k, address, dist, params)

    def factor(self, store, k, address, score):
        return self.delegate.factor(store, k, address, score)


class ForwardSampler(Handler):
    """Bottom-of-stack handler: runs programs forward from the prior."""

    def __init__(self, rng: KeyStream):
        self.rng = rng

    def sample(self, store, k, address, dist, params):
        return Thunk(k, store, dist.sample(self.rng.next_key(), params))

    def factor(self, store, k, address, score):
        raise FactorOutsideInferenceError(
            f"factor at {address!r} is only allowed inside inference"
        )

    def exit(self, store, value, early=False, bail=None):
        return Done(value)


class HandlerStack:
    """LIFO stack of handlers; the top is the active handler."""

    def __init__(self, base: Handler):
        self._stack: list[Handler] = [base]

    @property
    def active(self) -> Handler:
        return self._stack[-1]

    @property
    def depth(self) -> int:
        return len(self._stack)

    def push(self, handler: Handler) -> None:
        self._stack.append(handler)

    def pop(self, handler: Handler) -> None:
        if len(self._stack) == 1:
            raise HandlerStackError("the base handler cannot be removed")
        if self._stack[-1] is not handler:
            raise HandlerStackError(
                f"{type(handler).__name__} tried to release control held by "
                f"{type(self._stack[-1]).__name__}"
            )
        self._stack.pop()

    def unwind(self, depth: int) -> None:
        """Drop every handler above ``depth``."""
        if len(self._stack) > depth:
            logger.debug("Unwinding %d handler(s)", len(self._stack) - depth)
            del self._stack[depth:]

    def __contains__(self, handler: Handler) -> bool:
        return any(h is handler for h in self._stack)


class Runtime:
    """Execution context: the handler stack and the random stream.

    Parameters
    ----------
    seed : int
        Seed of the runtime's ``KeyStream``.
    """

    def __init__(self, seed: int = 0):
        self.rng = KeyStream(seed)
        self.handlers = HandlerStack(ForwardSampler(self.rng))

    def exit(self, store, value) -> Step:
        """Exit continuation passed to programs."""
        return Exit(store, value)

    def drive(self, step: Step):
        """Run the trampoline until a ``Done`` step is reached."""
        depth = self.handlers.depth
        try:
            while not isinstance(step, Done):
                step = step.dispatch(self.handlers.active)
        except BaseException:
            self.handlers.unwind(depth)
            raise
        return step.value

    def run(self, program, store=None, address: str = ""):
        """Run ``program`` forward under the active handler."""
        store = {} if store is None else clone_store(store)
        return self.drive(program(store, self.exit, address))

    def infer(self, method, program, store=None, address: str = "", **options):
        """Run an inference ``method`` (e.g. ``mcmc``) and return its result."""
        store = {} if store is None else clone_store(store)
        start = functools.partial(method, **options)
        return self.drive(Thunk(start, self, store, _finished, address, program))


def _finished(store, value):
    return Done(value)


# =============================================================================
# Program primitives
# =============================================================================


def sample(store, k, address, dist, params=()) -> Step:
    """Suspend at a random choice."""
    return Sample(store, k, address, dist, params)


def factor(store, k, address, score) -> Step:
    """Suspend at a likelihood-weighting statement."""
    if math.isnan(value_of(score)):
        raise ValueError(f"factor() score at {address!r} was NaN")
    return Factor(store, k, address, score)


def sample_with_factor(store, k, address, dist, params, score_fn) -> Step:
    """Sample a value, then factor by ``score_fn(store, k, address, value)``.

    ``score_fn`` is a CPS function that passes the score to its continuation.
    """

    def sampled(s, value):
        def scored(s, score):
            return factor(s, lambda s: k(s, value), address + "swf2", score)

        return score_fn(s, scored, address + "swf1", value)

    return sample(store, sampled, address, dist, params)


def with_importance_dist(store, k, address, dist, importance) -> Step:
    """Pass ``dist`` with an attached importance distribution to ``k``."""
    return Thunk(k, store, dist.with_importance(importance))


def cps_iterate(n: int, initial, fn, cont) -> Step:
    """Apply the CPS function ``fn(k, x)`` to its own output ``n`` times.

    Each iteration is resumed through the trampoline, so the call depth
    does not grow with ``n``.
    """

    def loop(i, x):
        if i >= n:
            return cont(x)
        return fn(lambda y: Thunk(loop, i + 1, y), x)

    return loop(0, initial)
