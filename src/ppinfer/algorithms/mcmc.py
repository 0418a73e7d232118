"""MCMC chain driver.

The chain is assembled from kernel combinators:

    repeat(burn, burn_kernel -> callbacks)
    -> repeat(samples, repeat(lag + 1, kernel -> callbacks) -> collect)

starting from a trace found by rejection initialisation. Collected values
are aggregated into a ``Histogram`` (or a ``MAP`` when only the best value
is wanted) whose ``Marginal`` is passed to the continuation.
"""

from __future__ import annotations

import logging
import time

from ppinfer.aggregation import MAP, Histogram
from ppinfer.algorithms.initialize import initialize
from ppinfer.config import MCMCConfig
from ppinfer.core.runtime import Thunk
from ppinfer.kernels import parse_kernel_options, repeat, sequence, tap

__all__ = [
    "mcmc",
    "ChainCallback",
    "LoggingCallback",
]

logger = logging.getLogger(__name__)


class ChainCallback:
    """Base class for chain callbacks; every hook is optional."""

    def setup(self, num_iterations: int) -> None:
        pass

    def initialize(self) -> None:
        pass

    def iteration(self, trace) -> None:
        pass

    def finish(self, trace) -> None:
        pass


class LoggingCallback(ChainCallback):
    """Logs the iteration count and acceptance ratio every ``every`` iterations."""

    def __init__(self, every: int = 100):
        self.every = every
        self.num_iterations = 0
        self.iterations = 0

    def setup(self, num_iterations):
        self.num_iterations = num_iterations
        self.iterations = 0

    def iteration(self, trace):
        self.iterations += 1
        if self.iterations % self.every == 0:
            logger.info(
                "Iteration: %d/%d | Acceptance ratio: %.4f",
                self.iterations,
                self.num_iterations,
                trace.info.ratio,
            )

    def finish(self, trace):
        logger.info(
            "Finished %d iterations | Acceptance ratio: %.4f",
            self.iterations,
            trace.info.ratio if trace.info is not None else 0.0,
        )


def _invoke(callbacks, hook: str, *args) -> None:
    for callback in callbacks:
        fn = getattr(callback, hook, None)
        if fn is not None:
            fn(*args)


def mcmc(runtime, store, k, address, program, config: MCMCConfig | None = None, callbacks=(), **options):
    """Run an MCMC chain over ``program``.

    Parameters
    ----------
    runtime : Runtime
        Runtime to run in.
    store : dict
        Program store; passed back unchanged to ``k``.
    k : Callable
        Continuation ``k(store, marginal)``.
    address : str
        Base address of the program.
    program : Callable
        CPS program ``program(store, k, address)``.
    config : MCMCConfig, optional
        Chain configuration; keyword ``options`` override its fields.
    callbacks : sequence
        Objects with any of ``setup``, ``initialize``, ``iteration``,
        ``finish``.

    Returns
    -------
    Step
        First step of the chain.
    """
    if config is None:
        config = MCMCConfig(**options)
    elif options:
        config = MCMCConfig(**{**config.model_dump(), **options})

    kernel = parse_kernel_options(config.kernel)
    burn_kernel = parse_kernel_options(config.burn_kernel) if config.burn_kernel is not None else kernel

    callbacks = list(callbacks)
    if config.verbose:
        callbacks.insert(0, LoggingCallback(config.log_every))
    _invoke(callbacks, "setup", config.num_iterations)

    if config.just_sample or config.only_map:
        aggregator = MAP(retain_samples=config.just_sample)
    else:
        aggregator = Histogram()

    start_time = time.perf_counter()

    def finish(trace):
        _invoke(callbacks, "finish", trace)
        if trace.info is not None:
            logger.info("MCMC acceptance ratio: %.4f (%d steps)", trace.info.ratio, trace.info.total)
        return Thunk(k, store, aggregator.to_distribution())

    def collect(cont, trace):
        elapsed = time.perf_counter() - start_time
        aggregator.add(trace.value, trace.score, elapsed)
        if elapsed > config.max_time:
            logger.info("MCMC stopped after %.2fs (max_time=%.2fs)", elapsed, config.max_time)
            return finish(trace)
        return Thunk(cont, trace)

    def run(initial_trace):
        callback = tap(lambda trace: _invoke(callbacks, "iteration", trace))
        chain = sequence(
            repeat(config.burn, sequence(burn_kernel, callback)),
            repeat(
                config.samples,
                sequence(repeat(config.lag + 1, sequence(kernel, callback)), collect),
            ),
        )
        return chain(finish, initial_trace)

    _invoke(callbacks, "initialize")
    return initialize(runtime, run, program, store, address, config.init_max_attempts)
