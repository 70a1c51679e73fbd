from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque


@dataclass
class RequestStats:
    latencies_ms: Deque[float]
    errors: int = 0
    timeouts: int = 0
    total: int = 0
    status_counts: dict[int, int] = field(default_factory=dict)


class MetricsRegistry:
    """In-memory metrics registry.

    - Per-path rolling latency window for p95 calculation
    - Error, timeout and status code counters
    """

    def __init__(self, window_size: int = 200) -> None:
        self._window_size = window_size
        self._lock = threading.Lock()
        self._per_path: dict[str, RequestStats] = defaultdict(
            lambda: RequestStats(latencies_ms=deque(maxlen=self._window_size))
        )

    def record(
        self,
        path: str,
        latency_ms: float,
        *,
        status_code: int | None = None,
        is_error: bool = False,
        is_timeout: bool = False,
    ) -> None:
        with self._lock:
            stats = self._per_path[path]
            stats.latencies_ms.append(latency_ms)
            stats.total += 1
            if status_code is not None:
                stats.status_counts[status_code] = stats.status_counts.get(status_code, 0) + 1
            if is_error:
                stats.errors += 1
            if is_timeout:
                stats.timeouts += 1

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            result: dict[str, dict[str, object]] = {}
            for path, stats in self._per_path.items():
                p95 = calculate_p95(list(stats.latencies_ms))
                result[path] = {
                    "p95_ms": round(p95, 2),
                    "count": stats.total,
                    "errors": stats.errors,
                    "timeouts": stats.timeouts,
                    "status": {str(code): n for code, n in sorted(stats.status_counts.items())},
                }
            return result

    def reset(self) -> None:
        with self._lock:
            self._per_path.clear()


def calculate_p95(values: list[float]) -> float:
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    k = int(0.95 * (len(sorted_vals) - 1))
    return sorted_vals[k]


registry = MetricsRegistry()
