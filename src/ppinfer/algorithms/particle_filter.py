"""Particle filtering (sequential importance resampling).

``factor`` statements are the synchronisation points: particles are run
one at a time in index order until each has reached its next factor (or
exited), then the population is resampled and every weight is reset to
the average weight. The final population is summarised by an unweighted
count of return values; the last resampling step has equalised the
weights, so counts approximate posterior mass.
"""

from __future__ import annotations

import logging
import math

import jax.numpy as jnp
import numpy as np

from ppinfer.aggregation import Histogram
from ppinfer.config import ParticleFilterConfig
from ppinfer.core.particles import Particle, copy_particle
from ppinfer.core.resampling import resample
from ppinfer.core.runtime import Handler, Thunk, clone_store, value_of
from ppinfer.core.weights import compute_ess, log_mean_exp
from ppinfer.errors import ZeroWeightError

__all__ = ["ParticleFilter", "particle_filter"]

logger = logging.getLogger(__name__)


class ParticleFilter(Handler):
    """Particle filter over a CPS program.

    Parameters
    ----------
    runtime : Runtime
        Runtime to run in.
    store : dict
        Initial store; every particle starts from its own copy.
    k : Callable
        Continuation ``k(store, marginal)``.
    address : str
        Base address.
    program : Callable
        CPS program.
    config : ParticleFilterConfig
        Filter configuration.
    """

    def __init__(self, runtime, store, k, address, program, config: ParticleFilterConfig):
        self.runtime = runtime
        self.k = k
        self.config = config
        self.old_store = clone_store(store)
        self._next_id = 0

        def start(s):
            return program(s, runtime.exit, address)

        self.particles = [
            Particle(id=self._new_id(), continuation=start, store=clone_store(store))
            for _ in range(config.n_particles)
        ]
        self.index = 0
        self.history: list | None = [] if config.save_history else None

        self.best_log_post = -math.inf
        self.best_generation = -1
        self.generations = 0

        runtime.handlers.push(self)

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id - 1

    @property
    def current(self) -> Particle:
        return self.particles[self.index]

    def run(self):
        return self._resume_current()

    def _resume_current(self):
        p = self.current
        return Thunk(p.continuation, p.store)

    # -------------------------------------------------------------------------
    # Handler interface
    # -------------------------------------------------------------------------

    def sample(self, store, k, address, dist, params):
        importance = dist.importance or dist
        value = importance.sample(self.runtime.rng.next_key(), params)
        choice_score = value_of(dist.score(params, value))
        if importance is dist:
            importance_score = choice_score
        else:
            importance_score = value_of(importance.score(params, value))

        p = self.current
        p.weight += choice_score - importance_score
        p.log_prior += choice_score
        p.log_post += choice_score
        p.trace.append(value)
        p.id = self._new_id()
        return Thunk(k, store, value)

    def factor(self, store, k, address, score):
        score = value_of(score)
        p = self.current
        p.weight += score
        p.log_like += score
        p.log_post += score
        p.continuation = k
        p.store = store

        if self.index == self._last_active():
            self._resample()
            i = self._first_active()
            if i is None:
                return self.finish()
            self.index = i
        else:
            self.index = self._next_active()
        return self._resume_current()

    def exit(self, store, value, early=False, bail=None):
        p = self.current
        p.value = value
        p.active = False

        i = self._next_active()
        if i is None:
            return self.finish()
        if i < self.index:
            # Every active particle has advanced; wrap around.
            self._resample()
            i = self._first_active()
            if i is None:
                return self.finish()
        self.index = i
        return self._resume_current()

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _first_active(self, start: int = 0) -> int | None:
        for i in range(start, len(self.particles)):
            if self.particles[i].active:
                return i
        return None

    def _last_active(self) -> int | None:
        for i in range(len(self.particles) - 1, -1, -1):
            if self.particles[i].active:
                return i
        return None

    def _next_active(self) -> int | None:
        i = self._first_active(self.index + 1)
        return self._first_active() if i is None else i

    # -------------------------------------------------------------------------
    # Resampling
    # -------------------------------------------------------------------------

    def _log_weights(self) -> np.ndarray:
        return np.asarray([p.weight for p in self.particles], dtype=np.float64)

    def _resample(self) -> None:
        log_weights = self._log_weights()
        avg_w = log_mean_exp(log_weights)

        if avg_w == -math.inf:
            if self.config.strict:
                raise ZeroWeightError("every particle has weight -inf")
            logger.warning("All particle weights are -inf; skipping resampling")
        else:
            # Centred on the average so single precision keeps the differences.
            centred = jnp.asarray(log_weights - avg_w, dtype=jnp.float32)
            ess = float(compute_ess(centred))
            indices = resample(self.runtime.rng.next_key(), centred, self.config.resampling_method)
            if self.history is not None:
                self.history.append(self.particles)
            self.particles = [copy_particle(self.particles[i]) for i in np.asarray(indices)]
            if self.history is not None:
                self.history.append([copy_particle(p) for p in self.particles])
            logger.debug(
                "Resampled %d particles (generation %d, ESS %.1f)",
                len(self.particles),
                self.generations,
                ess,
            )

        for p in self.particles:
            p.weight = avg_w
            if p.log_post > self.best_log_post:
                self.best_log_post = p.log_post
                self.best_generation = self.generations
        self.generations += 1

    # -------------------------------------------------------------------------
    # Result
    # -------------------------------------------------------------------------

    def finish(self):
        hist = Histogram()
        for p in self.particles:
            hist.add(p.value)
        dist = hist.to_distribution()

        dist.normalization_constant = log_mean_exp(self._log_weights())
        chosen = self.particles[self.runtime.rng.randint(len(self.particles))]
        dist.trace = list(chosen.trace)
        dist.particle_history = self.history if self.history is not None else [self.particles]

        logger.debug(
            "Best particle in generation %d of %d (log posterior %.4f)",
            self.best_generation,
            self.generations,
            self.best_log_post,
        )
        self.runtime.handlers.pop(self)
        return Thunk(self.k, self.old_store, dist)


def particle_filter(runtime, store, k, address, program, config: ParticleFilterConfig | None = None, **options):
    """Run a particle filter over ``program`` and pass its ``Marginal`` to ``k``.

    Keyword ``options`` override the fields of ``config``.
    """
    if config is None:
        config = ParticleFilterConfig(**options)
    elif options:
        config = ParticleFilterConfig(**{**config.model_dump(), **options})
    return ParticleFilter(runtime, store, k, address, program, config).run()
