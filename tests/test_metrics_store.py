"""Unit tests for the run metrics buffer and its summary."""

import threading

import pytest

from src.config import Engine
from src.metrics.application import RunMetricsStore, percentile
from src.metrics.domain import RunRecord, retries_for


def _run(n: int, **overrides) -> RunRecord:
    fields = dict(
        trace_id=f"trace-{n}",
        engine=Engine.DIRECT,
        use_rag=True,
        primary_model="model-primary",
        fallback_model="model-fallback",
        used_model="model-primary",
        total_ms=100 * (n + 1),
        validation_ok=True,
    )
    fields.update(overrides)
    return RunRecord(**fields)


class TestPercentile:
    """Nearest-rank percentile."""

    def test_reference_values(self):
        assert percentile([100, 200, 300, 400], 50) == 200
        assert percentile([100, 200, 300, 400], 95) == 400

    def test_unsorted_input(self):
        assert percentile([400, 100, 300, 200], 50) == 200

    def test_empty_is_zero(self):
        assert percentile([], 50) == 0
        assert percentile([], 95) == 0

    def test_single_value(self):
        assert percentile([42], 50) == 42
        assert percentile([42], 95) == 42

    def test_no_interpolation(self):
        """Results are always members of the input."""
        values = [10, 20, 30]
        for p in (1, 25, 50, 75, 99, 100):
            assert percentile(values, p) in values


class TestRetries:

    def test_direct_counts_extra_attempts(self):
        assert retries_for(Engine.DIRECT, 3) == 2
        assert retries_for(Engine.DIRECT, 1) == 0

    def test_floored_at_zero(self):
        assert retries_for(Engine.DIRECT, 0) == 0
        assert retries_for(Engine.DIRECT, None) == 0

    def test_delegated_never_counts(self):
        assert retries_for(Engine.DELEGATED, 2) == 0


class TestBuffer:
    """Bounded most-recent-first buffer."""

    def test_most_recent_first(self, metrics_store):
        for n in range(3):
            metrics_store.record(_run(n))
        assert [r.trace_id for r in metrics_store.list()] == ["trace-2", "trace-1", "trace-0"]

    def test_eviction_keeps_capacity(self):
        """capacity + 5 inserts keep exactly capacity records, oldest five gone."""
        capacity = 10
        store = RunMetricsStore(capacity=capacity)
        for n in range(capacity + 5):
            store.record(_run(n))

        runs = store.list(capacity)
        assert len(runs) == capacity
        assert [r.trace_id for r in runs] == [f"trace-{n}" for n in range(capacity + 4, 4, -1)]
        assert all(r.trace_id not in {f"trace-{n}" for n in range(5)} for r in runs)

    def test_limit_clamped(self, metrics_store):
        for n in range(5):
            metrics_store.record(_run(n))
        assert len(metrics_store.list(0)) == 1
        assert len(metrics_store.list(-3)) == 1
        assert len(metrics_store.list(2)) == 2
        assert len(metrics_store.list(10_000)) == 5

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RunMetricsStore(capacity=0)

    def test_clear(self, metrics_store):
        metrics_store.record(_run(0))
        metrics_store.clear()
        assert len(metrics_store) == 0
        assert metrics_store.summarize()["total"] == 0

    def test_concurrent_records(self):
        """Appends from many threads are never lost below capacity."""
        store = RunMetricsStore(capacity=1000)

        def writer(offset):
            for n in range(100):
                store.record(_run(offset + n))

        threads = [threading.Thread(target=writer, args=(i * 100,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store) == 800


class TestSummary:
    """Aggregate view over the buffer."""

    def test_empty_summary(self, metrics_store):
        summary = metrics_store.summarize()
        assert summary["total"] == 0
        assert summary["validationRate"] == 0
        assert summary["retries"] == 0
        assert summary["byModel"] == {}
        assert all(value == 0 for value in summary["latency"].values())

    def test_summary_values(self, metrics_store):
        metrics_store.record(_run(0, total_ms=100, rag_ms=10, retries=1, attempts=2))
        metrics_store.record(_run(1, total_ms=200, rag_ms=20, validation_ok=False))
        metrics_store.record(_run(2, total_ms=300, use_rag=False, used_model="model-fallback"))
        metrics_store.record(_run(
            3, total_ms=400, use_rag=False, engine=Engine.DELEGATED,
            used_model="DSPy", pipeline_ms=390
        ))
        metrics_store.record(_run(4, total_ms=50, used_model=None, validation_ok=False, retries=2))

        summary = metrics_store.summarize()
        assert summary["total"] == 5
        assert summary["validationRate"] == pytest.approx(3 / 5)
        assert summary["retries"] == 3
        assert summary["byModel"] == {
            "model-primary": 2,
            "model-fallback": 1,
            "DSPy": 1,
            "unknown": 1,
        }

        latency = summary["latency"]
        assert latency["p50"] == 200
        assert latency["p95"] == 400
        assert latency["ragP50"] == 10
        assert latency["ragP95"] == 20
        assert latency["noRagP50"] == 300
        assert latency["noRagP95"] == 400
        assert latency["delegatedP50"] == 400
        assert latency["directP50"] == 100
        assert latency["directP95"] == 300

    def test_summarize_is_idempotent(self, metrics_store):
        for n in range(7):
            metrics_store.record(_run(n, validation_ok=n % 2 == 0, retries=n % 3))
        assert metrics_store.summarize() == metrics_store.summarize()
        assert len(metrics_store) == 7
