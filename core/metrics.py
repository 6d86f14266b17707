"""
Observability and Metrics for the Retrieval Engine

Counts what the engine does so operators can see cache churn, provider
health and data-integrity problems without digging through logs:
- Vector cache loads (entries loaded / skipped, load duration)
- Embedding provider calls (success, failure, latency)
- Searches and RAG queries
- Data-integrity warnings (dimension mismatch, empty vectors)
- Phase timings (embedding, search, weighting, assembly)

Usage:
    from core.metrics import get_metrics_collector, PhaseTimer

    metrics = get_metrics_collector()
    metrics.record_embedding_call(latency_ms=120.5, success=True)

    with PhaseTimer("assembly", metrics):
        context = assembler.assemble(results, max_tokens=2000)

    print(metrics.snapshot().to_dict())
"""

import logging
import threading
import time
import statistics
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from collections import defaultdict

logger = logging.getLogger(__name__)

# Latency samples kept for percentile calculation
MAX_LATENCY_SAMPLES = 1000


# =============================================================================
# Data Models
# =============================================================================

@dataclass
class CacheLoadMetric:
    """Metrics for one vector cache population."""
    owner_id: str
    entries_loaded: int
    entries_skipped: int
    duration_ms: float
    success: bool
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "owner_id": self.owner_id,
            "entries_loaded": self.entries_loaded,
            "entries_skipped": self.entries_skipped,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class MetricsSnapshot:
    """Point-in-time view of all counters."""
    generated_at: datetime
    counters: Dict[str, int]
    embedding_latency: Dict[str, float]
    phase_timings: Dict[str, float]
    integrity_warnings: Dict[str, int]
    recent_cache_loads: List[Dict]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "generated_at": self.generated_at.isoformat(),
            "counters": self.counters,
            "embedding_latency": self.embedding_latency,
            "phase_timings": self.phase_timings,
            "integrity_warnings": self.integrity_warnings,
            "recent_cache_loads": self.recent_cache_loads
        }


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collection.

    All record_* methods are cheap and safe to call from any task or thread.
    """

    def __init__(self, max_cache_loads: int = 50):
        """
        Initialize metrics collector.

        Args:
            max_cache_loads: Number of recent cache loads to keep
        """
        self.max_cache_loads = max_cache_loads

        self._lock = threading.RLock()
        self._counters: Dict[str, int] = defaultdict(int)
        self._embedding_latencies: List[float] = []
        self._phase_timings: Dict[str, float] = defaultdict(float)
        self._integrity_warnings: Dict[str, int] = defaultdict(int)
        self._cache_loads: List[CacheLoadMetric] = []

    def increment(self, name: str, count: int = 1):
        """Increment a named counter."""
        with self._lock:
            self._counters[name] += count

    def record_cache_load(
        self,
        owner_id: str,
        entries_loaded: int,
        entries_skipped: int,
        duration_ms: float,
        success: bool = True
    ):
        """Record one cache population."""
        metric = CacheLoadMetric(
            owner_id=owner_id,
            entries_loaded=entries_loaded,
            entries_skipped=entries_skipped,
            duration_ms=duration_ms,
            success=success
        )
        with self._lock:
            self._counters["cache_loads"] += 1
            self._counters["cache_entries_loaded"] += entries_loaded
            self._counters["cache_entries_skipped"] += entries_skipped
            if not success:
                self._counters["cache_load_failures"] += 1
            self._cache_loads.append(metric)
            if len(self._cache_loads) > self.max_cache_loads:
                self._cache_loads = self._cache_loads[-self.max_cache_loads:]

    def record_embedding_call(self, latency_ms: float, success: bool, error_type: Optional[str] = None):
        """Record an embedding provider call."""
        with self._lock:
            self._counters["embedding_calls"] += 1
            if success:
                self._embedding_latencies.append(latency_ms)
                if len(self._embedding_latencies) > MAX_LATENCY_SAMPLES:
                    self._embedding_latencies = self._embedding_latencies[-MAX_LATENCY_SAMPLES:]
            else:
                self._counters["embedding_failures"] += 1
                if error_type:
                    self._counters[f"embedding_error:{error_type}"] += 1

    def record_integrity_warning(self, kind: str):
        """Record a data-integrity problem (e.g. 'dimension_mismatch')."""
        with self._lock:
            self._integrity_warnings[kind] += 1

    def record_phase_timing(self, phase: str, duration_seconds: float):
        """Accumulate time spent in a named phase."""
        with self._lock:
            self._phase_timings[phase] += duration_seconds

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def _latency_stats(self) -> Dict[str, float]:
        latencies = self._embedding_latencies
        if not latencies:
            return {"avg_ms": 0.0, "p50_ms": 0.0, "p95_ms": 0.0, "max_ms": 0.0}

        ordered = sorted(latencies)
        p95_index = min(len(ordered) - 1, int(len(ordered) * 0.95))
        return {
            "avg_ms": statistics.mean(ordered),
            "p50_ms": statistics.median(ordered),
            "p95_ms": ordered[p95_index],
            "max_ms": ordered[-1],
        }

    def snapshot(self) -> MetricsSnapshot:
        """Get a consistent copy of all metrics."""
        with self._lock:
            return MetricsSnapshot(
                generated_at=datetime.now(),
                counters=dict(self._counters),
                embedding_latency=self._latency_stats(),
                phase_timings=dict(self._phase_timings),
                integrity_warnings=dict(self._integrity_warnings),
                recent_cache_loads=[m.to_dict() for m in self._cache_loads]
            )


# =============================================================================
# Global Instance
# =============================================================================

_metrics_instance: Optional[MetricsCollector] = None
_metrics_lock = threading.Lock()


def get_metrics_collector(**kwargs) -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Components accept an explicit collector; this is the default they fall
    back to when none is injected.
    """
    global _metrics_instance

    with _metrics_lock:
        if _metrics_instance is None:
            _metrics_instance = MetricsCollector(**kwargs)

        return _metrics_instance


def reset_metrics_collector():
    """Reset the global metrics collector instance."""
    global _metrics_instance
    with _metrics_lock:
        _metrics_instance = None


# =============================================================================
# Context Managers
# =============================================================================

class PhaseTimer:
    """
    Context manager for timing a retrieval phase.

    Usage:
        with PhaseTimer("similarity_search", collector):
            results = engine.search(vector, filters)
    """

    def __init__(
        self,
        phase_name: str,
        collector: Optional[MetricsCollector] = None
    ):
        self.phase_name = phase_name
        self.collector = collector or get_metrics_collector()
        self.start_time = None
        self.duration_seconds = 0.0

    def __enter__(self) -> 'PhaseTimer':
        """Start timing."""
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Record duration."""
        self.duration_seconds = time.perf_counter() - self.start_time
        self.collector.record_phase_timing(self.phase_name, self.duration_seconds)
        return False
