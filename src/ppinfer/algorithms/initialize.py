"""Rejection initialisation of the first MCMC trace."""

from __future__ import annotations

import logging

from ppinfer.core.runtime import Handler, Thunk, is_neg_inf
from ppinfer.core.trace import AcceptanceInfo, Trace
from ppinfer.errors import InitializationError

__all__ = ["Initializer", "initialize"]

logger = logging.getLogger(__name__)

WARN_EVERY = 1000


class Initializer(Handler):
    """Runs the program forward until it produces a trace of non-zero probability.

    Parameters
    ----------
    runtime : Runtime
        Runtime to run the program in.
    cont : Callable
        Continuation receiving the initial trace.
    program : Callable
        CPS program.
    store : dict
        Initial store.
    address : str
        Base address.
    max_attempts : int
        Number of runs after which initialisation gives up.
    """

    def __init__(self, runtime, cont, program, store, address, max_attempts: int = 10000):
        self.runtime = runtime
        self.cont = cont
        self.max_attempts = max_attempts
        self.attempts = 0
        self.trace = Trace(program, store, runtime.exit, address, runtime)
        runtime.handlers.push(self)

    def run(self):
        return self.trace.resume()

    def sample(self, store, k, address, dist, params):
        value = dist.sample(self.runtime.rng.next_key(), params)
        self.trace.add_choice(dist, params, value, address, store, k)
        if is_neg_inf(self.trace.score):
            return self.restart()
        return Thunk(k, store, value)

    def factor(self, store, k, address, score):
        self.trace.add_factor(score)
        if is_neg_inf(self.trace.score):
            return self.restart()
        return Thunk(k, store)

    def exit(self, store, value, early=False, bail=None):
        if is_neg_inf(self.trace.score):
            return self.restart()
        self.trace.complete(value)
        self.trace.info = AcceptanceInfo(accepted=0, total=0)
        logger.debug("Initialised after %d failed attempt(s)", self.attempts)
        self.runtime.handlers.pop(self)
        return Thunk(self.cont, self.trace)

    def restart(self):
        self.attempts += 1
        if self.attempts >= self.max_attempts:
            raise InitializationError(
                f"failed to find a trace with non-zero probability in {self.attempts} attempts"
            )
        if self.attempts % WARN_EVERY == 0:
            logger.warning("Initialization: %d attempts without a non-zero probability trace", self.attempts)
        self.trace = self.trace.fresh()
        return self.trace.resume()


def initialize(runtime, cont, program, store, address: str = "", max_attempts: int = 10000):
    """Find an initial trace by rejection and pass it to ``cont``."""
    return Initializer(runtime, cont, program, store, address, max_attempts).run()
