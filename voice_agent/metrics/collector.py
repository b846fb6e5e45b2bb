"""
Performance metrics collection for the completion server.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional, Any
import structlog

logger = structlog.get_logger()


@dataclass
class LatencyMetrics:
    """Latency metrics for a specific component."""
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float
    samples: int


class MetricsCollector:
    """
    Collects per-provider latencies and errors, and counts completions and
    degraded replies, for the lifetime of the server process.
    """

    def __init__(self, max_errors: int = 100, max_latency_samples: int = 1000):
        self.started_at = time.time()
        self.max_errors = max_errors
        self.max_latency_samples = max_latency_samples
        self._lock = threading.Lock()
        # Only the most recent samples per provider are kept
        self._provider_latencies: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=self.max_latency_samples)
        )
        self._provider_errors: Dict[str, int] = defaultdict(int)
        self._recent_errors: List[Dict[str, Any]] = []
        self.total_completions = 0
        self.degraded_replies = 0

    def record_provider_latency(self, provider: str, latency_ms: float) -> None:
        """Record the latency of a successful provider call."""
        with self._lock:
            self._provider_latencies[provider].append(latency_ms)

    def record_provider_error(self, provider: str, error: str,
                              metadata: Optional[Dict] = None) -> None:
        """Record a failed provider call."""
        with self._lock:
            self._provider_errors[provider] += 1
            self._recent_errors.append({
                "timestamp": datetime.now().isoformat(),
                "provider": provider,
                "error": error,
                "metadata": metadata or {},
            })
            del self._recent_errors[:-self.max_errors]

    def record_completion(self) -> None:
        """Record a completed chat turn."""
        with self._lock:
            self.total_completions += 1

    def record_degraded_reply(self) -> None:
        """Record a turn answered without any provider."""
        with self._lock:
            self.degraded_replies += 1

    def _calculate_latency_stats(self, latencies: Iterable[float]) -> LatencyMetrics:
        """Calculate statistical metrics for a list of latencies."""
        sorted_latencies = sorted(latencies)
        if not sorted_latencies:
            return LatencyMetrics(0, 0, 0, 0, 0, 0, 0)

        count = len(sorted_latencies)

        def percentile(p: float) -> float:
            index = int(p * count)
            if index >= count:
                index = count - 1
            return sorted_latencies[index]

        return LatencyMetrics(
            min=sorted_latencies[0],
            max=sorted_latencies[-1],
            avg=sum(sorted_latencies) / count,
            p50=percentile(0.5),
            p95=percentile(0.95),
            p99=percentile(0.99),
            samples=count
        )

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of metrics collected so far."""
        with self._lock:
            providers = sorted(set(self._provider_latencies) | set(self._provider_errors))
            total_errors = sum(self._provider_errors.values())
            return {
                "uptime_seconds": time.time() - self.started_at,
                "total_completions": self.total_completions,
                "degraded_replies": self.degraded_replies,
                "total_provider_errors": total_errors,
                "providers": {
                    name: {
                        "latency_ms": asdict(
                            self._calculate_latency_stats(self._provider_latencies.get(name, []))
                        ),
                        "errors": self._provider_errors.get(name, 0),
                    }
                    for name in providers
                },
                "recent_errors": list(self._recent_errors[-10:]),
            }
