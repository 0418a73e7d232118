"""Locally annealed reversible jump (LARJ).

A LARJ step either diffuses within the current model structure or jumps
to a new structure. A jump is proposed by a discrete kernel; before it is
accepted, the continuous choices of the old and new structures are
annealed together on an ``InterpolationTrace`` whose score moves linearly
from the old structure's to the new structure's. The annealing weight
enters the acceptance ratio, which raises acceptance rates for jumps
between structures whose continuous parameters do not line up.

The jump kernel runs on a trace that installs LARJ on top of it whenever
it is resumed, so LARJ receives the jump kernel's exit and takes over the
proposal instead of letting the jump kernel accept or reject on its own.
"""

from __future__ import annotations

import logging
import math

from ppinfer.config import LARJOptions
from ppinfer.core.runtime import Interceptor, Thunk, is_neg_inf, value_of
from ppinfer.errors import InferenceError, StructureChangedError, TraceCompletedError
from ppinfer.kernels.registry import parse_kernel_options

__all__ = ["InterpolationTrace", "LARJKernel", "larj_kernel"]

logger = logging.getLogger(__name__)


# =============================================================================
# Interpolation trace
# =============================================================================


def merge_choices(choices1, choices2) -> list:
    """Order-preserving merge of two choice lists by address.

    Shared addresses appear once (taken from ``choices1``). Choices found only
    in ``choices2`` are placed before the next shared address that follows
    them in ``choices2``.
    """
    addresses1 = {c.address for c in choices1}
    position2 = {c.address: i for i, c in enumerate(choices2)}
    merged = []
    j = 0
    for choice in choices1:
        anchor = position2.get(choice.address)
        if anchor is not None and anchor >= j:
            merged.extend(c for c in choices2[j:anchor] if c.address not in addresses1)
            j = anchor + 1
        merged.append(choice)
    merged.extend(c for c in choices2[j:] if c.address not in addresses1)
    return merged


class InterpolationTrace(Interceptor):
    """Two traces viewed as one, with score ``(1 - alpha) * s1 + alpha * s2``.

    The interpolation trace offers the part of the ``Trace`` interface used
    by MH, so diffusion kernels can run on it unchanged. Truncating it
    truncates whichever side(s) hold the chosen address; those become
    *pending* and are replayed one after the other when resumed. While
    replaying, the interpolation trace intercepts the kernel and only
    forwards the exit of the last pending side.

    Parameters
    ----------
    trace1 : Trace
        Old-structure trace.
    trace2 : Trace
        New-structure trace.
    alpha : float
        Mixing coefficient in ``[0, 1]``.
    """

    def __init__(self, trace1, trace2, alpha: float = 0.0, pending=(), origins=(), source=None):
        super().__init__()
        self.trace1 = trace1
        self.trace2 = trace2
        self.alpha = alpha
        self.runtime = trace1.runtime
        self.info = None
        self.focus = None
        self.pending = tuple(pending)
        self._origins = tuple(origins)
        self._source = source
        self._position = 0

    @property
    def choices(self) -> list:
        return merge_choices(self.trace1.choices, self.trace2.choices)

    @property
    def length(self) -> int:
        return len(self.choices)

    def __len__(self) -> int:
        return self.length

    @property
    def score(self):
        if self.alpha == 0:
            return self.trace1.score
        if self.alpha == 1:
            return self.trace2.score
        return (1 - self.alpha) * self.trace1.score + self.alpha * self.trace2.score

    @property
    def current(self):
        """Side currently being replayed, or ``None``."""
        if self._position < len(self.pending):
            return self.pending[self._position]
        return None

    @property
    def num_factors(self) -> int:
        side = self.current if self.current is not None else self.trace2
        return side.num_factors

    @property
    def value(self):
        return self.trace2.value

    @property
    def is_complete(self) -> bool:
        return self.trace1.is_complete and self.trace2.is_complete

    def structure(self) -> tuple[frozenset, frozenset]:
        return frozenset(self.trace1.addresses()), frozenset(self.trace2.addresses())

    def choice_at_index(self, index: int):
        return self.choices[index]

    def index_of(self, address: str) -> int:
        for i, choice in enumerate(self.choices):
            if choice.address == address:
                return i
        raise KeyError(address)

    def find_choice(self, address: str):
        """Choice at ``address``; restricted to one side while it is replayed."""
        if self.focus is not None:
            return self.focus.find_choice(address)
        choice = self.trace1.find_choice(address)
        if choice is None:
            choice = self.trace2.find_choice(address)
        return choice

    # -------------------------------------------------------------------------
    # Truncation and replay
    # -------------------------------------------------------------------------

    def upto_and_including(self, index: int) -> InterpolationTrace:
        address = self.choices[index].address
        sides = [self.trace1, self.trace2]
        pending, origins = [], []
        for i, side in enumerate(sides):
            if side.find_choice(address) is not None:
                sides[i] = side.upto_and_including(side.index_of(address))
                pending.append(sides[i])
                origins.append(side)
        return InterpolationTrace(sides[0], sides[1], self.alpha, pending, origins, source=self)

    def set_choice_value(self, address: str, value) -> None:
        for side in (self.trace1, self.trace2):
            if side.find_choice(address) is not None:
                side.set_choice_value(address, value)

    def add_choice(self, dist, params, value, address, store, k) -> None:
        self.current.add_choice(dist, params, value, address, store, k)

    def add_factor(self, score) -> None:
        self.current.add_factor(score)

    def save_continuation(self, store, k) -> None:
        self.current.save_continuation(store, k)

    def complete(self, value) -> None:
        if self.current is None:
            raise TraceCompletedError("interpolation trace has no side left to complete")
        self.current.complete(value)

    def resume_from_last_choice(self):
        if not self.pending:
            raise InferenceError("interpolation trace has nothing to replay")
        self._position = 0
        self._focus_source()
        self.intercept(self.runtime.handlers)
        return self.pending[0].resume_from_last_choice()

    def _focus_source(self) -> None:
        if self._source is not None:
            self._source.focus = self._origins[self._position]

    def exit(self, store, value, early=False, bail=None):
        if bail is None and not early and self._position < len(self.pending) - 1:
            self.pending[self._position].complete(value)
            self._position += 1
            self._focus_source()
            return self.pending[self._position].resume_from_last_choice()
        if self._source is not None:
            self._source.focus = None
            self._source = None
        kernel = self.release(self.runtime.handlers)
        return kernel.exit(store, value, early, bail)

    def __repr__(self) -> str:
        return (
            f"InterpolationTrace(alpha={self.alpha:.3f}, "
            f"choices=({len(self.trace1)}, {len(self.trace2)}), score={value_of(self.score):.4f})"
        )


# =============================================================================
# LARJ kernel
# =============================================================================


class LARJKernel(Interceptor):
    """Reversible-jump kernel with annealing.

    Parameters
    ----------
    cont : Callable
        Continuation receiving the resulting trace.
    old_trace : Trace
        Trace to propose from.
    options : LARJOptions, optional
        Kernel options.
    jump_kernel, diffusion_kernel : Callable, optional
        Already parsed sub-kernels; parsed from ``options`` when omitted.

    Attributes
    ----------
    acceptance_prob : float or None
        Acceptance probability of the last jump that reached a decision.
    proposed_trace : Trace or None
        New-structure trace proposed by the last jump.
    """

    def __init__(
        self,
        cont,
        old_trace,
        options: LARJOptions | None = None,
        jump_kernel=None,
        diffusion_kernel=None,
    ):
        super().__init__()
        options = options or LARJOptions()
        self.cont = cont
        self.old_trace = old_trace
        self.runtime = old_trace.runtime

        self.jump_kernel = jump_kernel or parse_kernel_options(options.jump_kernel)
        self.diffusion_kernel = diffusion_kernel or parse_kernel_options(options.diffusion_kernel)
        self.annealing_steps = options.annealing_steps
        self.jump_freq = options.jump_freq
        self.proposal_boundary = options.proposal_boundary

        self._sub_options = {}
        if options.proposal_boundary:
            self._sub_options["proposal_boundary"] = options.proposal_boundary
        if options.exit_factor:
            self._sub_options["exit_factor"] = options.exit_factor

        self.acceptance_prob: float | None = None
        self.proposed_trace = None
        self._proposal = None
        self._forward = 0.0
        self._jump_correction = 0.0
        self._anneal_weight = 0.0

        self.runtime.handlers.push(self)

    def _count(self, trace, continuous: bool | None = None) -> int:
        return sum(
            1
            for c in trace.choices[self.proposal_boundary :]
            if continuous is None or c.dist.is_continuous == continuous
        )

    def run(self):
        n_total = self._count(self.old_trace)
        if n_total == 0:
            return self._finish(self.old_trace, True)
        if self.jump_freq is not None:
            jump_prob = self.jump_freq
        else:
            jump_prob = self._count(self.old_trace, continuous=False) / n_total

        if self.runtime.rng.uniform() < jump_prob:
            logger.debug("LARJ jump")
            return self.jump_kernel(
                self._jump_returned, self.old_trace.intercepted_by(self), **self._sub_options
            )

        logger.debug("LARJ diffusion")
        self.runtime.handlers.pop(self)
        return self.diffusion_kernel(self.cont, self.old_trace, **self._sub_options)

    def _jump_returned(self, trace):
        # The jump kernel finished without handing over a proposal.
        return self._finish(self.old_trace, False)

    def exit(self, store, value, early=False, bail=None):
        kernel = self.release(self.runtime.handlers)
        if bail is not None:
            return kernel.exit(store, value, early, bail)

        new_trace = kernel.trace
        if not early:
            new_trace.complete(value)
        self._proposal = kernel
        self._forward = kernel.transition_prob(kernel.old_trace, new_trace)
        bw = kernel.transition_prob(new_trace, kernel.old_trace)
        kernel.detach()

        new_trace = new_trace.intercepted_by()
        self.proposed_trace = new_trace
        if is_neg_inf(new_trace.score):
            return self._finish(self.old_trace, False)
        self._jump_correction = bw - self._forward

        if (
            self.annealing_steps >= 2
            and not early
            and (self._count(self.old_trace, True) > 0 or self._count(new_trace, True) > 0)
        ):
            self._anneal_weight = 0.0
            interp = InterpolationTrace(self.old_trace.intercepted_by(), new_trace)
            return self._anneal(0, interp)
        return self._decide(new_trace)

    def _anneal(self, step: int, interp: InterpolationTrace):
        if step == self.annealing_steps:
            # The reverse jump starts from the annealed new trace and lands
            # on the annealed old one.
            bw = self._proposal.transition_prob(interp.trace2, interp.trace1)
            self._jump_correction = bw - self._forward
            return self._decide(interp.trace2)

        interp.alpha = step / (self.annealing_steps - 1)
        structure = interp.structure()
        before = value_of(interp.score)

        def annealed(trace):
            if trace.structure() != structure:
                raise StructureChangedError(
                    f"diffusion kernel changed the model structure at annealing step {step}"
                )
            self._anneal_weight += before - value_of(trace.score)
            return self._anneal(step + 1, trace)

        return self.diffusion_kernel(annealed, interp, **self._sub_options)

    def _decide(self, new_trace):
        log_p = (
            value_of(new_trace.score)
            - value_of(self.old_trace.score)
            + self._jump_correction
            + self._anneal_weight
        )
        if math.isnan(log_p):
            raise InferenceError("LARJ acceptance ratio is NaN")
        self.acceptance_prob = math.exp(min(0.0, log_p))
        accept = self.runtime.rng.uniform() < self.acceptance_prob
        logger.debug("LARJ jump %s (p=%.4f)", "accepted" if accept else "rejected", self.acceptance_prob)
        return self._finish(new_trace if accept else self.old_trace, accept)

    def _finish(self, trace, accepted: bool):
        if self.old_trace.info is not None:
            trace.info = self.old_trace.info.record(accepted)
        self.runtime.handlers.pop(self)
        return Thunk(self.cont, trace)


def larj_kernel(
    cont, trace, options: LARJOptions | None = None, jump_kernel=None, diffusion_kernel=None
):
    """Run one LARJ step on ``trace`` and pass the result to ``cont``."""
    return LARJKernel(cont, trace, options, jump_kernel, diffusion_kernel).run()
