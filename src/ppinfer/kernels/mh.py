"""Single-site Metropolis-Hastings.

One proposal picks a random choice, draws a new value for it, replays the
program from that point (reusing downstream values that still exist) and
accepts or rejects the result with the usual MH ratio:

    min(1, exp(new - old + backward - forward))

where the transition probabilities account for the proposal at the chosen
site and for every downstream choice that had to be sampled afresh.

The kernel never calls its own ``exit``: every termination (regular exit,
early exit and bail-out) is returned as an ``Exit`` step and dispatched to
whichever handler is active, so that a kernel intercepting this one (LARJ,
an interpolation trace) sees it first.
"""

from __future__ import annotations

import logging
import math

from ppinfer.config import MHOptions
from ppinfer.core.runtime import Exit, Handler, Thunk, is_neg_inf, value_of
from ppinfer.errors import InferenceError, InvalidTraceError

__all__ = ["MHKernel", "mh_kernel"]

logger = logging.getLogger(__name__)


class MHKernel(Handler):
    """Metropolis-Hastings kernel over a single trace.

    Parameters
    ----------
    cont : Callable
        Continuation receiving the resulting trace.
    old_trace : Trace
        Trace to propose from.
    options : MHOptions, optional
        Kernel options.

    Notes
    -----
    The kernel pushes itself onto the runtime's handler stack on
    construction and pops itself in ``finish`` (or ``detach``).
    """

    def __init__(self, cont, old_trace, options: MHOptions | None = None):
        options = options or MHOptions()
        if not options.permissive and is_neg_inf(old_trace.score):
            raise InvalidTraceError("MH started from a trace with zero probability")

        self.cont = cont
        self.old_trace = old_trace
        self.trace = None
        self.reused: set[str] = set()
        self.regen_from = -1
        self.regen_address: str | None = None

        self.proposal_boundary = options.proposal_boundary
        self.exit_factor = options.exit_factor
        self.discrete_only = options.discrete_only
        self.continuous_only = options.continuous_only

        self.runtime = old_trace.runtime
        self.runtime.handlers.push(self)

    # -------------------------------------------------------------------------
    # Proposal
    # -------------------------------------------------------------------------

    def run(self):
        rng = self.runtime.rng
        self.regen_from = self.sample_regen_choice(self.old_trace)
        if self.regen_from < 0:
            return self.bail(True)

        regen = self.old_trace.choice_at_index(self.regen_from)
        self.regen_address = regen.address
        proposer = regen.dist.proposer
        if proposer is not None:
            value = proposer.sample(rng.next_key(), (regen.params, regen.value))
            continuous = proposer.is_continuous
        else:
            value = regen.dist.sample(rng.next_key(), regen.params)
            continuous = regen.dist.is_continuous

        # Re-proposing the current discrete value is a self-loop.
        if not continuous and value == regen.value:
            return self.bail(True)

        self.trace = self.old_trace.upto_and_including(self.regen_from)
        self.trace.set_choice_value(regen.address, value)
        if is_neg_inf(self.trace.score):
            return self.bail(False)

        logger.debug("MH proposing %r at %r", value, regen.address)
        return self.trace.resume_from_last_choice()

    def sample(self, store, k, address, dist, params):
        prev = self.old_trace.find_choice(address)
        if prev is not None:
            value = prev.value
            self.reused.add(address)
        else:
            value = dist.sample(self.runtime.rng.next_key(), params)

        self.trace.add_choice(dist, params, value, address, store, k)
        if is_neg_inf(self.trace.score):
            return self.bail(False)
        return Thunk(k, store, value)

    def factor(self, store, k, address, score):
        self.trace.add_factor(score)
        if is_neg_inf(self.trace.score):
            return self.bail(False)
        if self.trace.num_factors == self.exit_factor:
            self.trace.save_continuation(store, k)
            return self.early_exit(store)
        return Thunk(k, store)

    def bail(self, accept: bool):
        return Exit(None, None, bail=accept)

    def early_exit(self, store):
        return Exit(store, None, early=True)

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    def exit(self, store, value, early=False, bail=None):
        if bail is not None:
            return self.finish(self.old_trace, bail)
        if not early:
            self.trace.complete(value)
        elif self.trace.is_complete:
            raise InvalidTraceError("early exit from a completed trace")
        prob = self.acceptance_prob(self.trace, self.old_trace)
        accept = self.runtime.rng.uniform() < prob
        return self.finish(self.trace if accept else self.old_trace, accept)

    def finish(self, trace, accepted: bool):
        if self.old_trace.info is not None:
            trace.info = self.old_trace.info.record(accepted)
        logger.debug("MH %s (regen index %d)", "accepted" if accepted else "rejected", self.regen_from)
        self.runtime.handlers.pop(self)
        return Thunk(self.cont, trace)

    def detach(self) -> None:
        """Give up control without continuing; used by enclosing kernels."""
        self.runtime.handlers.pop(self)

    # -------------------------------------------------------------------------
    # Proposal sites
    # -------------------------------------------------------------------------

    def _eligible(self, choice) -> bool:
        if self.discrete_only:
            return not choice.dist.is_continuous
        if self.continuous_only:
            return choice.dist.is_continuous
        return True

    def regen_indices(self, trace) -> list[int]:
        return [
            i
            for i in range(self.proposal_boundary, len(trace.choices))
            if self._eligible(trace.choices[i])
        ]

    def num_regen_choices(self, trace) -> int:
        return len(self.regen_indices(trace))

    def sample_regen_choice(self, trace) -> int:
        indices = self.regen_indices(trace)
        if not indices:
            return -1
        return indices[self.runtime.rng.randint(len(indices))]

    # -------------------------------------------------------------------------
    # Acceptance
    # -------------------------------------------------------------------------

    def acceptance_prob(self, trace, old_trace) -> float:
        fw = self.transition_prob(old_trace, trace)
        bw = self.transition_prob(trace, old_trace)
        log_p = value_of(trace.score) - value_of(old_trace.score) + bw - fw
        if math.isnan(log_p):
            raise InferenceError("MH acceptance ratio is NaN")
        return math.exp(min(0.0, log_p))

    def transition_prob(self, from_trace, to_trace) -> float:
        """Log-probability of proposing ``to_trace`` from ``from_trace``."""
        index = to_trace.index_of(self.regen_address)
        regen = to_trace.choice_at_index(index)
        proposer = regen.dist.proposer
        if proposer is not None:
            prev = from_trace.find_choice(self.regen_address)
            score = value_of(proposer.score((regen.params, prev.value), regen.value))
        else:
            score = value_of(regen.dist.score(regen.params, regen.value))

        for choice in to_trace.choices[index + 1 :]:
            if choice.address not in self.reused:
                score += value_of(choice.dist.score(choice.params, choice.value))

        score -= math.log(self.num_regen_choices(from_trace))
        if math.isnan(score):
            raise InferenceError("MH transition probability is NaN")
        return score


def mh_kernel(cont, trace, options: MHOptions | None = None):
    """Run one MH step on ``trace`` and pass the result to ``cont``."""
    return MHKernel(cont, trace, options).run()
