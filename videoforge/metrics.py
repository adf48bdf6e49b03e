"""
In-memory metrics for the render pipeline.

Tracks:
  - Traffic: stage and provider call counters ('stage.scenes.ok', 'poll.processing')
  - Errors:  failure counters by provider plus the last few error messages
  - Latency: provider call duration samples (last 100 per call name)
  - Saturation: gauges such as active pollers

Data is ephemeral (resets on restart). Persistent job history lives in
the video_projects table.
"""

import time
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, List

MAX_SAMPLES = 100
MAX_ERRORS = 50


class MetricsCollector:
    """Thread-safe counters, gauges and latency samples."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._latency_samples: Dict[str, List[float]] = defaultdict(list)
        self._gauges: Dict[str, float] = defaultdict(float)
        self._recent_errors: List[dict] = []
        self._started_at = time.time()

    def inc_counter(self, name: str, amount: int = 1):
        with self._lock:
            self._counters[name] += amount

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def add_gauge(self, name: str, delta: float):
        with self._lock:
            self._gauges[name] += delta

    def set_gauge(self, name: str, value: float):
        with self._lock:
            self._gauges[name] = value

    def record_latency(self, name: str, duration_ms: float):
        with self._lock:
            samples = self._latency_samples[name]
            samples.append(duration_ms)
            if len(samples) > MAX_SAMPLES:
                self._latency_samples[name] = samples[-MAX_SAMPLES:]

    @contextmanager
    def timed(self, name: str):
        """Record the wall-clock duration of the wrapped block under `name`."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_latency(name, (time.perf_counter() - start) * 1000)

    def record_error(self, provider: str, error_type: str, message: str, project_id: str = ""):
        """Count an error and keep it for root-cause analysis."""
        with self._lock:
            self._counters[f"errors.{provider}"] += 1
            self._recent_errors.append({
                "timestamp": time.time(),
                "provider": provider,
                "error_type": error_type,
                "message": message[:300],
                "project_id": project_id,
            })
            if len(self._recent_errors) > MAX_ERRORS:
                self._recent_errors.pop(0)

    def get_snapshot(self) -> dict:
        """Return a complete metrics snapshot for the /metrics endpoint."""
        now = time.time()

        with self._lock:
            latency_stats = {}
            for name, samples in self._latency_samples.items():
                if not samples:
                    continue
                sorted_s = sorted(samples)
                n = len(sorted_s)
                latency_stats[name] = {
                    "p50": sorted_s[n // 2],
                    "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                    "avg": sum(sorted_s) / n,
                    "count": n,
                }

            error_patterns: Dict[str, int] = defaultdict(int)
            for err in self._recent_errors:
                error_patterns[f"{err['provider']}:{err['error_type']}"] += 1

            return {
                "timestamp": now,
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "latency": latency_stats,
                "recent_errors": list(self._recent_errors[-10:]),
                "error_patterns": dict(error_patterns),
                "uptime_seconds": now - self._started_at,
            }
