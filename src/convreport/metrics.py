"""Lightweight metrics emitted as structured log lines."""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Generator
from contextlib import contextmanager

import structlog

logger = structlog.get_logger()


class MetricsCollector:
    """Counters and stage timings for one namespace.

    Every metric is logged as a ``metric`` event so the log pipeline can turn
    it into a time series. Cumulative counters are kept for the final summary.
    """

    def __init__(self, namespace: str, *, clock: Callable[[], float] = time.monotonic):
        self.namespace = namespace
        self._clock = clock
        self.counters: Counter[str] = Counter()
        self.timings_ms: dict[str, float] = {}

    def put(self, name: str, value: float, unit: str) -> None:
        logger.info("metric", namespace=self.namespace, metric=name, value=value, unit=unit)

    def increment(self, name: str, value: int = 1) -> None:
        self.counters[name] += value
        self.put(name, value, "Count")

    @contextmanager
    def timer(self, operation: str) -> Generator[None, None, None]:
        started = self._clock()
        try:
            yield
        finally:
            elapsed_ms = round((self._clock() - started) * 1000, 2)
            self.timings_ms[operation] = elapsed_ms
            self.put(f"{operation}Duration", elapsed_ms, "Milliseconds")

    def summary(self) -> dict[str, int]:
        return dict(self.counters)
