"""Tests for the single-assignment Future."""

import threading
import time

import pytest

from kone.builds.future import Future


class TestFuture:
    """Tests for Future class."""

    def test_returns_value(self):
        """Should return the producer's value."""
        future = Future(lambda: 42)

        assert future.get() == 42
        assert future.done

    def test_not_done_before_get(self):
        """Should not run the producer until get() is called."""
        calls = []
        future = Future(lambda: calls.append(1))

        assert not future.done
        assert calls == []

    def test_producer_runs_once(self):
        """Should run the producer once across repeated gets."""
        calls = []

        def producer():
            calls.append(1)
            return object()

        future = Future(producer)
        first = future.get()

        assert future.get() is first
        assert len(calls) == 1

    def test_concurrent_gets_share_result(self):
        """Should block other callers until the producer finishes."""
        calls = []
        sentinel = object()

        def producer():
            calls.append(1)
            time.sleep(0.1)
            return sentinel

        future = Future(producer)
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(future.get()))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert len(results) == 8
        assert all(r is sentinel for r in results)

    def test_error_replayed(self):
        """Should re-raise the same error on every get without retrying."""
        calls = []

        def producer():
            calls.append(1)
            raise ValueError("boom")

        future = Future(producer)

        with pytest.raises(ValueError) as first:
            future.get()
        with pytest.raises(ValueError) as second:
            future.get()

        assert first.value is second.value
        assert len(calls) == 1
        assert future.done
