"""Execution traces.

A ``Trace`` records the random choices made by one (possibly partial)
execution of a program together with the accumulated score. MCMC kernels
replay traces from an arbitrary choice by truncating them and resuming the
program through the continuation saved with that choice.
"""

from __future__ import annotations

from typing import Any

import chex

from ppinfer.core.runtime import Thunk, clone_store, value_of
from ppinfer.errors import InvalidTraceError, TraceCompletedError

__all__ = [
    "Choice",
    "AcceptanceInfo",
    "Trace",
]

_UNSET = object()


@chex.dataclass(frozen=True)
class Choice:
    """One random choice.

    Attributes
    ----------
    address : str
        Address of the choice, unique within a trace.
    dist : Distribution
        Distribution the value was drawn from.
    params : tuple
        Distribution parameters.
    value : Any
        Chosen value.
    store : dict
        Program store as it was when the choice was made.
    k : Callable
        Continuation ``k(store, value)`` of the sample statement.
    score : Any
        Trace score *before* this choice was scored.
    num_factors : int
        Number of factors encountered before this choice.
    index : int
        Position of the choice in its trace.
    """

    address: str
    dist: Any
    params: Any
    value: Any
    store: Any
    k: Any
    score: Any
    num_factors: int
    index: int


@chex.dataclass(frozen=True)
class AcceptanceInfo:
    """Running acceptance counter carried along a chain."""

    accepted: int = 0
    total: int = 0

    def record(self, accepted: bool) -> AcceptanceInfo:
        return AcceptanceInfo(accepted=self.accepted + int(accepted), total=self.total + 1)

    @property
    def ratio(self) -> float:
        return self.accepted / self.total if self.total else 0.0


class Trace:
    """Record of one execution of ``program``.

    Parameters
    ----------
    program : Callable
        CPS program ``program(store, k, address)``.
    initial_store : dict
        Store the program starts from.
    exit_k : Callable
        Exit continuation handed to the program.
    base_address : str
        Address the program is started at.
    runtime : Runtime
        Runtime whose handler stack and random stream kernels use.
    """

    def __init__(self, program, initial_store, exit_k, base_address, runtime):
        self.program = program
        self.initial_store = initial_store
        self.exit_k = exit_k
        self.base_address = base_address
        self.runtime = runtime

        self.choices: list[Choice] = []
        self.address_map: dict[str, Choice] = {}
        self.score = 0.0
        self.num_factors = 0
        self.info: AcceptanceInfo | None = None
        self.interceptors: tuple = ()

        self.store = None
        self.k = None
        self._value = _UNSET

    @property
    def length(self) -> int:
        return len(self.choices)

    def __len__(self) -> int:
        return len(self.choices)

    @property
    def value(self):
        return None if self._value is _UNSET else self._value

    def fresh(self) -> Trace:
        """New empty trace for the same program."""
        t = Trace(self.program, self.initial_store, self.exit_k, self.base_address, self.runtime)
        t.interceptors = self.interceptors
        return t

    def choice_at_index(self, index: int) -> Choice:
        return self.choices[index]

    def find_choice(self, address: str) -> Choice | None:
        return self.address_map.get(address)

    def index_of(self, address: str) -> int:
        return self.address_map[address].index

    def addresses(self) -> tuple[str, ...]:
        return tuple(c.address for c in self.choices)

    # -------------------------------------------------------------------------
    # Growth
    # -------------------------------------------------------------------------

    def add_choice(self, dist, params, value, address, store, k) -> None:
        """Append a choice and add its score."""
        choice = Choice(
            address=address,
            dist=dist,
            params=params,
            value=value,
            store=clone_store(store),
            k=k,
            score=self.score,
            num_factors=self.num_factors,
            index=len(self.choices),
        )
        self.choices.append(choice)
        self.address_map[address] = choice
        self.score = self.score + dist.score(params, value)

    def add_factor(self, score) -> None:
        self.num_factors += 1
        self.score = self.score + score

    def set_choice_value(self, address: str, value) -> None:
        """Replace the value of the choice at ``address``.

        The score is recomputed from the score recorded before the choice;
        choices after it keep their old contribution until replayed.
        """
        choice = self.find_choice(address)
        if choice is None:
            raise InvalidTraceError(f"no choice at address {address!r}")
        new_choice = choice.replace(value=value, store=clone_store(choice.store))
        self.choices[choice.index] = new_choice
        self.address_map[address] = new_choice
        self.score = choice.score + choice.dist.score(choice.params, value)

    # -------------------------------------------------------------------------
    # Truncation
    # -------------------------------------------------------------------------

    def upto(self, i: int) -> Trace:
        """Trace holding choices ``[0, i)``, scored as before choice ``i``."""
        if not 0 <= i < len(self.choices):
            raise IndexError(f"upto({i}) on a trace of length {len(self.choices)}")
        t = self.fresh()
        t.choices = self.choices[:i]
        t.address_map = {c.address: c for c in t.choices}
        t.score = self.choices[i].score
        t.num_factors = self.choices[i].num_factors
        return t

    def upto_and_including(self, i: int) -> Trace:
        t = self.upto(i)
        c = self.choices[i]
        t.add_choice(c.dist, c.params, c.value, c.address, c.store, c.k)
        return t

    # -------------------------------------------------------------------------
    # Suspension and completion
    # -------------------------------------------------------------------------

    def save_continuation(self, store, k) -> None:
        self.store = store
        self.k = k

    def resume(self):
        """Step that continues the program.

        Resumes from the saved continuation, or runs the program from its
        beginning when nothing has been saved.
        """
        if self.is_complete:
            raise TraceCompletedError("cannot resume a completed trace")
        self._install_interceptors()
        if self.k is not None:
            return Thunk(self.k, self.store)
        return Thunk(self.program, clone_store(self.initial_store), self.exit_k, self.base_address)

    def resume_from_last_choice(self):
        """Step that re-enters the program right after the last choice."""
        if self.is_complete:
            raise TraceCompletedError("cannot resume a completed trace")
        last = self.choices[-1]
        self._install_interceptors()
        return Thunk(last.k, clone_store(last.store), last.value)

    def _install_interceptors(self) -> None:
        for handler in self.interceptors:
            handler.intercept(self.runtime.handlers)

    def complete(self, value) -> None:
        if self.is_complete:
            raise TraceCompletedError("trace has already been completed")
        self._value = value
        self.store = self.k = None

    @property
    def is_complete(self) -> bool:
        return self._value is not _UNSET

    # -------------------------------------------------------------------------
    # Copies
    # -------------------------------------------------------------------------

    def copy(self) -> Trace:
        t = self.fresh()
        t.choices = list(self.choices)
        t.address_map = dict(self.address_map)
        t.score = self.score
        t.num_factors = self.num_factors
        t.info = self.info
        t.store = clone_store(self.store)
        t.k = self.k
        t._value = self._value
        return t

    def intercepted_by(self, *handlers) -> Trace:
        """Copy of this trace that installs ``handlers`` whenever resumed."""
        if handlers == self.interceptors:
            return self
        t = self.copy()
        t.interceptors = handlers
        return t

    def check_consistency(self) -> None:
        """Raise ``InvalidTraceError`` if an invariant does not hold."""
        if self.is_complete and (self.k is not None or self.store is not None):
            raise InvalidTraceError("completed trace still holds a continuation")
        if (self.k is None) != (self.store is None):
            raise InvalidTraceError("continuation and store must be saved together")
        if len(self.address_map) != len(self.choices):
            raise InvalidTraceError(
                f"{len(self.address_map)} addresses indexed for {len(self.choices)} choices"
            )
        for i, choice in enumerate(self.choices):
            if choice.index != i:
                raise InvalidTraceError(f"choice {choice.address!r} has index {choice.index}, expected {i}")
            if self.address_map.get(choice.address) is not choice:
                raise InvalidTraceError(f"address {choice.address!r} is not indexed")

    def __repr__(self) -> str:
        state = "complete" if self.is_complete else "suspended"
        return f"Trace({state}, choices={len(self.choices)}, score={value_of(self.score):.4f})"
