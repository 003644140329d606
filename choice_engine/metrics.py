# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""In-memory metrics for the choice engine.

Collected only when ENABLE_METRICS is set; callers fetch the process-wide
collector with get_metrics_collector() and skip recording when it is None.

Tracked:
- HTTP responses by status code, and errors by type
- Latency per operation (annotation batches, action dispatch, requests)
- Choice annotation events (CHOICE_EVENTS)
- Retry coordinator events (RETRY_EVENTS) and dispatch failures by category
"""

import math
import threading
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Optional

CHOICE_EVENTS = ("annotated", "category_support_applied", "mastery_applied", "quest_linked")
RETRY_EVENTS = ("attempted", "succeeded", "failed", "rejected")


@dataclass
class LatencyStats:
    """Count, sum and extremes of one latency series in milliseconds."""
    count: int = 0
    total: float = 0.0
    min: float = math.inf
    max: float = 0.0

    def record(self, value: float) -> None:
        self.count += 1
        self.total += value
        if value < self.min:
            self.min = value
        if value > self.max:
            self.max = value

    def to_dict(self) -> Dict[str, float]:
        if not self.count:
            return {"count": 0, "avg_ms": 0.0, "min_ms": 0.0, "max_ms": 0.0}
        return {
            "count": self.count,
            "avg_ms": round(self.total / self.count, 2),
            "min_ms": round(self.min, 2),
            "max_ms": round(self.max, 2),
        }


def _zeroed(events) -> Counter:
    return Counter(dict.fromkeys(events, 0))


class MetricsCollector:
    """Thread-safe counters and latency series."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        """Drop everything recorded so far."""
        with self._lock:
            self._statuses: Counter = Counter()
            self._errors: Counter = Counter()
            self._latencies: Dict[str, LatencyStats] = {}
            self._choices = _zeroed(CHOICE_EVENTS)
            self._retries = _zeroed(RETRY_EVENTS)
            self._failure_categories: Counter = Counter()
            self._started = time.monotonic()

    def record_request(self, status_code: int) -> None:
        with self._lock:
            self._statuses[status_code] += 1

    def record_error(self, error_type: str) -> None:
        with self._lock:
            self._errors[error_type] += 1

    def record_latency(self, operation: str, duration_ms: float) -> None:
        with self._lock:
            self._latencies.setdefault(operation, LatencyStats()).record(duration_ms)

    def record_choice_event(self, event: str) -> None:
        with self._lock:
            self._choices[event] += 1

    def record_retry_event(self, event: str) -> None:
        with self._lock:
            self._retries[event] += 1

    def record_failure_category(self, category: str) -> None:
        with self._lock:
            self._failure_categories[category] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of every metric as plain JSON-serializable data."""
        with self._lock:
            total = self._statuses.total()
            ok = sum(n for code, n in self._statuses.items() if 200 <= code < 400)
            return {
                "uptime_seconds": round(time.monotonic() - self._started, 2),
                "requests": {
                    "total": total,
                    "success": ok,
                    "errors": total - ok,
                    "by_status_code": dict(self._statuses),
                },
                "errors": {"by_type": dict(self._errors)},
                "latencies": {name: stats.to_dict() for name, stats in self._latencies.items()},
                "choices": dict(self._choices),
                "retries": {**self._retries, "failures_by_category": dict(self._failure_categories)},
            }


_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> Optional[MetricsCollector]:
    """Process-wide collector, or None when metrics are disabled."""
    return _collector


def init_metrics_collector() -> MetricsCollector:
    """Create the process-wide collector; repeated calls return the same one."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector


def disable_metrics_collector() -> None:
    global _collector
    _collector = None


class MetricsTimer:
    """Record the duration of a block as a latency sample.

    The collector is looked up once on construction; nothing is recorded
    when metrics are disabled.

    Usage:
        with MetricsTimer("annotate_choices"):
            ...
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.collector = get_metrics_collector()
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.collector is not None:
            self.collector.record_latency(self.operation, (time.perf_counter() - self._started) * 1000)
        return False
