"""Configuration models for kernels and inference algorithms.

All models are frozen pydantic models; invalid values are rejected when
the model is built, before any program is run.
"""

from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

__all__ = [
    "KernelSpec",
    "MHOptions",
    "LARJOptions",
    "MCMCConfig",
    "ParticleFilterConfig",
]

# A kernel name, or a single-entry mapping from kernel name to its options,
# e.g. "MH" or {"MH": {"discrete_only": True}}.
KernelSpec = str | dict[str, dict[str, Any]]


class _Options(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class MHOptions(_Options):
    """Options of the single-site Metropolis-Hastings kernel."""

    proposal_boundary: int = Field(default=0, ge=0)
    exit_factor: int = Field(default=0, ge=0)
    permissive: bool = False
    discrete_only: bool = False
    continuous_only: bool = False

    @model_validator(mode="after")
    def validate_filters(self) -> MHOptions:
        """Only one proposal filter may be active."""
        if self.discrete_only and self.continuous_only:
            raise ValueError("discrete_only and continuous_only are mutually exclusive")
        return self


class LARJOptions(_Options):
    """Options of the locally annealed reversible-jump kernel."""

    jump_kernel: KernelSpec = Field(default_factory=lambda: {"MH": {"discrete_only": True}})
    diffusion_kernel: KernelSpec = Field(
        default_factory=lambda: {"MH": {"continuous_only": True}}
    )
    annealing_steps: int = 0
    jump_freq: float | None = Field(default=None, ge=0.0, le=1.0)
    proposal_boundary: int = Field(default=0, ge=0)
    exit_factor: int = Field(default=0, ge=0)

    @field_validator("annealing_steps")
    @classmethod
    def validate_annealing_steps(cls, v: int) -> int:
        """0 disables annealing; otherwise at least 2 steps span alpha in [0, 1]."""
        if v < 0:
            raise ValueError(f"annealing_steps must be non-negative, got {v}")
        if v == 1:
            raise ValueError("annealing_steps must be 0 (disabled) or at least 2")
        return v


class MCMCConfig(_Options):
    """Configuration of an MCMC chain."""

    samples: int = Field(default=100, ge=0)
    burn: int = Field(default=0, ge=0)
    lag: int = Field(default=0, ge=0)
    kernel: KernelSpec = "MH"
    burn_kernel: KernelSpec | None = None
    max_time: float = Field(default=math.inf, gt=0.0)
    verbose: bool = False
    log_every: int = Field(default=100, ge=1)
    only_map: bool = False
    just_sample: bool = False
    init_max_attempts: int = Field(default=10000, ge=1)

    @property
    def num_iterations(self) -> int:
        return self.burn + (self.lag + 1) * self.samples


class ParticleFilterConfig(_Options):
    """Configuration of the particle filter."""

    n_particles: int = Field(default=100, ge=1)
    strict: bool = True
    save_history: bool = False
    resampling_method: Literal["residual", "multinomial", "systematic", "stratified"] = "residual"
