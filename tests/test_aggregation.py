"""Tests for result aggregation."""

import math

import jax
import pytest

from ppinfer.aggregation import MAP, Histogram, Marginal


class TestHistogram:
    """Tests for Histogram."""

    def test_counts(self):
        """Probabilities are relative frequencies."""
        hist = Histogram()
        for value in [1, 2, 2, 3, 3, 3]:
            hist.add(value)

        dist = hist.to_distribution()

        assert hist.total == 6
        assert dist.probability(3) == pytest.approx(0.5)
        assert dist.probability(1) == pytest.approx(1 / 6)
        assert dist.support() == [1, 2, 3]

    def test_unhashable_values(self):
        """Unhashable values are grouped by their repr."""
        hist = Histogram()
        hist.add([1, 2])
        hist.add([1, 2])
        hist.add({"a": 1})

        dist = hist.to_distribution()

        assert len(dist) == 2
        assert dist.probability([1, 2]) == pytest.approx(2 / 3)

    def test_empty(self):
        """An empty histogram has no distribution."""
        with pytest.raises(ValueError):
            Histogram().to_distribution()


class TestMarginal:
    """Tests for Marginal."""

    def test_score(self):
        """Scores are log-probabilities; unseen values score -inf."""
        dist = Marginal.from_counts([("x", 1), ("y", 3)])

        assert float(dist.score((), "y")) == pytest.approx(math.log(0.75))
        assert float(dist.score((), "z")) == -math.inf
        assert dist.probability("z") == 0.0

    def test_items_sorted(self):
        """items() lists the most probable value first."""
        dist = Marginal.from_counts([("x", 1), ("y", 3)])

        assert [v for v, _ in dist.items()] == ["y", "x"]

    def test_sample_in_support(self):
        """Samples come from the support."""
        dist = Marginal.from_counts([("x", 1), ("y", 3)])

        for key in jax.random.split(jax.random.PRNGKey(0), 10):
            assert dist.sample(key) in {"x", "y"}

    def test_mismatched_lengths(self):
        """Values and log-probabilities must align."""
        with pytest.raises(ValueError):
            Marginal(["x"], [0.0, 0.0])

    def test_repr(self):
        """The repr lists the most probable values."""
        dist = Marginal.from_counts([("x", 1), ("y", 3)])

        assert repr(dist).startswith("Marginal({'y': 0.7500")


class TestMAP:
    """Tests for MAP."""

    def test_keeps_best(self):
        """Only the highest-scoring value is kept."""
        agg = MAP()
        agg.add("a", -3.0)
        agg.add("b", -1.0)
        agg.add("c", -2.0)

        dist = agg.to_distribution()

        assert dist.support() == ["b"]
        assert dist.samples is None

    def test_retain_samples(self):
        """Retained samples keep value, score and time."""
        agg = MAP(retain_samples=True)
        agg.add("a", -3.0, 0.1)
        agg.add("b", -1.0, 0.2)

        dist = agg.to_distribution()

        assert dist.samples == [
            {"value": "a", "score": -3.0, "time": 0.1},
            {"value": "b", "score": -1.0, "time": 0.2},
        ]
