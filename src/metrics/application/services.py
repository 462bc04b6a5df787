"""
Metrics Application Services
============================

Bounded, most-recent-first buffer of run records and the summary computed
from it.
"""

import math
import threading
from collections import deque
from typing import Dict, Iterable, List, Optional

from src.config import Engine
from src.metrics.domain import RunRecord

DEFAULT_CAPACITY = 200


def percentile(values: Iterable[float], p: float) -> float:
    """
    Nearest-rank percentile.

    Sorts ascending and picks index ``ceil(p/100 * n) - 1`` clamped to
    ``[0, n-1]``. No interpolation; 0 for an empty input.
    """
    ordered = sorted(values)
    if not ordered:
        return 0
    index = math.ceil((p / 100) * len(ordered)) - 1
    return ordered[max(0, min(index, len(ordered) - 1))]


class RunMetricsStore:
    """
    In-memory ring of the most recent runs.

    ``record`` is atomic with respect to other ``record`` calls. Readers take
    a snapshot under the same lock, so a concurrent append is either fully
    visible or not at all.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._runs: deque = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._runs)

    def record(self, run: RunRecord) -> None:
        """Insert at the front; the oldest run falls off once full."""
        with self._lock:
            self._runs.appendleft(run)

    def list(self, limit: Optional[int] = None) -> List[RunRecord]:
        """Most recent runs first, ``limit`` clamped to ``[1, capacity]``."""
        limit = self._capacity if limit is None else max(1, min(int(limit), self._capacity))
        return self._snapshot()[:limit]

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()

    def _snapshot(self) -> List[RunRecord]:
        with self._lock:
            return list(self._runs)

    def summarize(self) -> Dict:
        """
        Summary over the whole current buffer.

        Returns:
            Dict with total, validationRate, retries, latency percentiles
            (all / rag / noRag / delegated / direct) and byModel counts.
        """
        runs = self._snapshot()

        total = len(runs)
        ok = sum(1 for run in runs if run.validation_ok)

        total_ms = [run.total_ms for run in runs]
        rag_ms = [run.rag_ms for run in runs if run.use_rag and run.rag_ms is not None]
        no_rag_ms = [run.total_ms for run in runs if not run.use_rag]
        delegated_ms = [run.total_ms for run in runs if run.engine == Engine.DELEGATED]
        direct_ms = [run.total_ms for run in runs if (run.engine or Engine.DIRECT) == Engine.DIRECT]

        by_model: Dict[str, int] = {}
        for run in runs:
            model = run.used_model or "unknown"
            by_model[model] = by_model.get(model, 0) + 1

        return {
            "total": total,
            "validationRate": ok / total if total else 0,
            "retries": sum(run.retries or 0 for run in runs),
            "latency": {
                "p50": percentile(total_ms, 50),
                "p95": percentile(total_ms, 95),
                "ragP50": percentile(rag_ms, 50),
                "ragP95": percentile(rag_ms, 95),
                "noRagP50": percentile(no_rag_ms, 50),
                "noRagP95": percentile(no_rag_ms, 95),
                "delegatedP50": percentile(delegated_ms, 50),
                "delegatedP95": percentile(delegated_ms, 95),
                "directP50": percentile(direct_ms, 50),
                "directP95": percentile(direct_ms, 95),
            },
            "byModel": by_model,
        }
