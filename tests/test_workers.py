"""Tests for bounded fan-out."""

import threading
import time

import pytest

from build_registry.workers import run_bounded


class TestRunBounded:
    """Test ordering, limits and error propagation."""

    def test_results_in_input_order(self):
        results = run_bounded([3, 1, 2], lambda n: n * 10, limit=3)
        assert results == [(3, 30), (1, 10), (2, 20)]

    def test_empty(self):
        assert run_bounded([], lambda n: n) == []

    def test_never_exceeds_limit(self):
        lock = threading.Lock()
        state = {"running": 0, "peak": 0}

        def work(_):
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.01)
            with lock:
                state["running"] -= 1

        run_bounded(range(20), work, limit=3)
        assert state["peak"] <= 3

    def test_error_propagates(self):
        def work(n):
            if n == 2:
                raise ValueError("boom")
            return n

        with pytest.raises(ValueError, match="boom"):
            run_bounded(range(5), work, limit=2)
