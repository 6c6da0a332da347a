"""In-process metrics for the follow-up engine.

The sweep counts what it did (reminders sent and failed, submissions
marked no_response, tasks completed and failed) and times each run.
``broker_queue_depths`` reports how much work is waiting in Celery's
Redis lists.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import redis

# Celery queues served by the worker
QUEUE_NAMES = ("followups", "scheduler")

_MetricKey = tuple[str, tuple[tuple[str, str], ...]]


def _key(name: str, labels: Optional[dict[str, str]]) -> _MetricKey:
    return name, tuple(sorted((labels or {}).items()))


def _render(key: _MetricKey) -> str:
    name, labels = key
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


def _percentile(ordered: list[float], fraction: float) -> float:
    return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]


class MetricsCollector:
    """Thread-safe counters, gauges and histograms.

    Reminder dispatch runs on a worker pool, so all state sits behind one
    reentrant lock. Histograms keep the latest ``max_samples`` values.
    """

    def __init__(self, max_samples: int = 1000):
        self._lock = threading.RLock()
        self._counters: dict[_MetricKey, float] = {}
        self._gauges: dict[_MetricKey, float] = {}
        self._histograms: dict[_MetricKey, list[float]] = {}
        self.max_samples = max_samples

    def increment(
        self, name: str, value: float = 1.0, labels: Optional[dict[str, str]] = None
    ) -> None:
        key = _key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def set_gauge(self, name: str, value: float, labels: Optional[dict[str, str]] = None) -> None:
        with self._lock:
            self._gauges[_key(name, labels)] = value

    def record_histogram(
        self, name: str, value: float, labels: Optional[dict[str, str]] = None
    ) -> None:
        key = _key(name, labels)
        with self._lock:
            samples = self._histograms.setdefault(key, [])
            samples.append(value)
            del samples[: -self.max_samples]

    @contextmanager
    def timer(self, name: str, labels: Optional[dict[str, str]] = None) -> Iterator[None]:
        """Record the wall time of the block in seconds, even when it raises."""
        started = time.monotonic()
        try:
            yield
        finally:
            self.record_histogram(name, time.monotonic() - started, labels)

    def get(self, name: str, labels: Optional[dict[str, str]] = None) -> float:
        """Counter or gauge value, 0 when never recorded."""
        key = _key(name, labels)
        with self._lock:
            if key in self._counters:
                return self._counters[key]
            return self._gauges.get(key, 0)

    def get_histogram_stats(
        self, name: str, labels: Optional[dict[str, str]] = None
    ) -> dict[str, float]:
        return self._stats(_key(name, labels))

    def _stats(self, key: _MetricKey) -> dict[str, float]:
        with self._lock:
            ordered = sorted(self._histograms.get(key, []))

        if not ordered:
            return {"count": 0, "min": 0, "max": 0, "avg": 0}
        return {
            "count": len(ordered),
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / len(ordered),
            "p50": _percentile(ordered, 0.5),
            "p95": _percentile(ordered, 0.95),
        }

    def get_all(self) -> dict[str, Any]:
        """Snapshot of every metric, keyed ``name{label=value,...}``."""
        with self._lock:
            return {
                "counters": {_render(k): v for k, v in self._counters.items()},
                "gauges": {_render(k): v for k, v in self._gauges.items()},
                "histograms": {_render(k): self._stats(k) for k in self._histograms},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


def broker_queue_depths(redis_url: str, queues: tuple[str, ...] = QUEUE_NAMES) -> dict[str, Optional[int]]:
    """Number of messages waiting in each worker queue.

    Celery keeps a Redis list per queue. A queue whose depth cannot be read
    reports None, so an unreachable broker never fails the metrics call.
    """
    depths: dict[str, Optional[int]] = {}
    client = redis.Redis.from_url(redis_url, socket_connect_timeout=1, socket_timeout=1)
    try:
        for queue in queues:
            try:
                depths[queue] = int(client.llen(queue))
            except redis.RedisError:
                depths[queue] = None
    finally:
        client.close()
    return depths


_collector = MetricsCollector()


def get_collector() -> MetricsCollector:
    """Get the process-wide collector."""
    return _collector
