"""Reference distributions.

Every distribution implements ``sample(key, params)`` and
``score(params, value)``; scores are JAX scalars so they can be
differentiated. A distribution may carry a ``proposer`` (a distribution
over new values given ``(params, previous_value)``) used by MH, and an
``importance`` distribution used by the particle filter.
"""

from __future__ import annotations

import copy

import jax
import jax.numpy as jnp
import jax.scipy.stats as jstats

__all__ = [
    "Distribution",
    "Bernoulli",
    "RandomInteger",
    "Discrete",
    "Gaussian",
    "Uniform",
    "GaussianDrift",
    "bernoulli",
    "random_integer",
    "discrete",
    "gaussian",
    "uniform",
]


class Distribution:
    """Base class for elementary random primitives."""

    is_continuous = False
    proposer: Distribution | None = None
    importance: Distribution | None = None

    def sample(self, key, params):
        raise NotImplementedError

    def score(self, params, value):
        raise NotImplementedError

    def with_proposer(self, proposer: Distribution) -> Distribution:
        """Copy of this distribution that MH proposes from ``proposer``."""
        d = copy.copy(self)
        d.proposer = proposer
        return d

    def with_importance(self, importance: Distribution) -> Distribution:
        """Copy of this distribution that particle filters sample from ``importance``."""
        d = copy.copy(self)
        d.importance = importance
        return d

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Bernoulli(Distribution):
    """``params = (p,)``; values are ``True``/``False``."""

    def sample(self, key, params):
        (p,) = params
        return bool(jax.random.bernoulli(key, p))

    def score(self, params, value):
        (p,) = params
        p = jnp.asarray(p, dtype=jnp.float32)
        return jnp.where(value, jnp.log(p), jnp.log1p(-p))


class RandomInteger(Distribution):
    """``params = (n,)``; uniform over ``0..n-1``."""

    def sample(self, key, params):
        (n,) = params
        return int(jax.random.randint(key, (), 0, n))

    def score(self, params, value):
        (n,) = params
        in_support = isinstance(value, int) and 0 <= value < n
        return jnp.where(in_support, -jnp.log(float(n)), -jnp.inf)


class Discrete(Distribution):
    """``params = (weights,)``; index ``i`` has probability ``weights[i] / sum``."""

    def sample(self, key, params):
        (weights,) = params
        weights = jnp.asarray(weights, dtype=jnp.float32)
        return int(jax.random.categorical(key, jnp.log(weights)))

    def score(self, params, value):
        (weights,) = params
        weights = jnp.asarray(weights, dtype=jnp.float32)
        if not (isinstance(value, int) and 0 <= value < weights.shape[0]):
            return jnp.asarray(-jnp.inf)
        return jnp.log(weights[value]) - jnp.log(jnp.sum(weights))


class Gaussian(Distribution):
    """``params = (mu, sigma)``."""

    is_continuous = True

    def sample(self, key, params):
        mu, sigma = params
        return float(mu + sigma * jax.random.normal(key))

    def score(self, params, value):
        mu, sigma = params
        return jstats.norm.logpdf(value, mu, sigma)


class Uniform(Distribution):
    """``params = (a, b)``."""

    is_continuous = True

    def sample(self, key, params):
        a, b = params
        return float(jax.random.uniform(key, minval=a, maxval=b))

    def score(self, params, value):
        a, b = params
        return jstats.uniform.logpdf(value, a, b - a)


class GaussianDrift(Distribution):
    """Symmetric random-walk proposer: ``N(previous_value, width)``."""

    is_continuous = True

    def __init__(self, width: float = 0.1):
        self.width = width

    def sample(self, key, params):
        _, previous = params
        return float(previous + self.width * jax.random.normal(key))

    def score(self, params, value):
        _, previous = params
        return jstats.norm.logpdf(value, previous, self.width)

    def __repr__(self) -> str:
        return f"GaussianDrift(width={self.width})"


bernoulli = Bernoulli()
random_integer = RandomInteger()
discrete = Discrete()
gaussian = Gaussian()
uniform = Uniform()
