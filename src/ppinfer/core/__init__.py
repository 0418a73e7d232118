"""Runtime, traces, randomness and particle utilities."""
