"""Stateful random streams built on JAX PRNG keys.

Inference over suspend/resume programs draws one variate at a time, so
keys and uniforms are split off in blocks and handed out individually.
Two streams created from the same seed produce identical sequences.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import PRNGKeyArray

__all__ = ["KeyStream"]


class KeyStream:
    """Sequential source of PRNG keys, uniforms and integer draws.

    Parameters
    ----------
    seed : int or PRNGKeyArray
        Integer seed or an existing JAX key.
    block_size : int
        Number of keys (and uniforms) generated per refill.
    """

    def __init__(self, seed: int | PRNGKeyArray = 0, block_size: int = 1024):
        if isinstance(seed, int):
            seed = jax.random.PRNGKey(seed)
        self._key = seed
        self._block_size = block_size
        self._keys = np.empty((0, 2), dtype=np.uint32)
        self._key_pos = 0
        self._uniforms = np.empty((0,), dtype=np.float32)
        self._uniform_pos = 0

    def _split(self) -> PRNGKeyArray:
        self._key, subkey = jax.random.split(self._key)
        return subkey

    def next_key(self) -> PRNGKeyArray:
        """Return a fresh key."""
        if self._key_pos >= len(self._keys):
            self._keys = np.asarray(jax.random.split(self._split(), self._block_size))
            self._key_pos = 0
        key = self._keys[self._key_pos]
        self._key_pos += 1
        return jnp.asarray(key)

    def uniform(self) -> float:
        """Return a uniform variate in [0, 1)."""
        if self._uniform_pos >= len(self._uniforms):
            self._uniforms = np.asarray(
                jax.random.uniform(self._split(), shape=(self._block_size,))
            )
            self._uniform_pos = 0
        u = float(self._uniforms[self._uniform_pos])
        self._uniform_pos += 1
        return u

    def randint(self, n: int) -> int:
        """Return an integer uniformly drawn from ``range(n)``."""
        if n <= 0:
            raise ValueError(f"randint requires n > 0, got {n}")
        return min(int(self.uniform() * n), n - 1)

    def categorical(self, weights) -> int:
        """Draw an index with probability proportional to ``weights``."""
        weights = np.asarray(weights, dtype=np.float64)
        total = weights.sum()
        if not total > 0:
            raise ValueError("categorical requires a positive total weight")
        u = self.uniform() * total
        idx = int(np.searchsorted(np.cumsum(weights), u, side="right"))
        return min(idx, len(weights) - 1)
