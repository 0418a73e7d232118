"""Tests for futures."""

import itertools

import pytest

from conftest import make_trace
from ppinfer import finish_all_futures, future, set_future_policy


def _record(name):
    def fn(store, k, address):
        return k({**store, "log": store.get("log", ()) + (name,)})

    return fn


def futures_program(policy):
    """Schedules futures a, b, c under ``policy`` and returns the run order."""

    def program(store, k, address):
        def done(s):
            return k(s, s.get("log", ()))

        def scheduled(s):
            def after_a(s):
                def after_b(s):
                    def after_c(s):
                        return finish_all_futures(s, done, address)

                    return future(s, after_c, address + "c", _record("c"))

                return future(s, after_b, address + "b", _record("b"))

            return future(s, after_a, address + "a", _record("a"))

        return set_future_policy(store, scheduled, address, policy)

    return program


class TestFuturePolicies:
    """Tests for the scheduling policies."""

    def test_immediate(self, runtime):
        """Immediate futures run where they are created."""
        assert runtime.run(futures_program("immediate")) == ("a", "b", "c")

    def test_deterministic_is_lifo(self, runtime):
        """Deterministic futures run last-in first-out."""
        assert runtime.run(futures_program("deterministic")) == ("c", "b", "a")

    def test_stochastic_order(self, runtime):
        """Stochastic futures run in every possible order."""
        orders = {runtime.run(futures_program("stochastic")) for _ in range(200)}

        assert orders == set(itertools.permutations("abc"))

    def test_stochastic_order_is_a_choice(self, runtime):
        """The order is drawn by random choices that inference can revisit."""
        trace = make_trace(runtime, futures_program("stochastic"))

        assert trace.addresses() == ("_f3", "_f2", "_f1")
        assert trace.find_choice("_f1").value == 0

    def test_unknown_policy(self, runtime):
        """Only known policies can be selected."""
        with pytest.raises(ValueError, match="unknown future policy"):
            runtime.run(futures_program("eager"))

    def test_no_pending_futures(self, runtime):
        """Finishing without pending futures continues immediately."""

        def program(store, k, address):
            return finish_all_futures(store, lambda s: k(s, "done"), address)

        assert runtime.run(program) == "done"

    def test_store_not_mutated(self, runtime):
        """Scheduling a future leaves the caller's store untouched."""
        store = {}

        def program(s, k, address):
            def scheduled(s2):
                return future(s2, lambda s3: k(s3, s3), address, _record("a"))

            return set_future_policy(s, scheduled, address, "deterministic")

        result = runtime.run(program, store)

        assert store == {}
        assert len(result["__futures"]) == 1
