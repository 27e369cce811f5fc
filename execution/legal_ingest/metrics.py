"""
Metrics Collection for Document Ingestion

Tracks ingestion outcomes, per-stage failures, compensations and latency for
the admin metrics endpoint.
"""

import time
import logging
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Optional
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class IngestionMetrics:
    """Metrics for a single ingestion run."""
    run_id: str
    filename: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    document_id: Optional[str] = None
    stage: Optional[str] = None
    chunks_inserted: int = 0
    text_length: int = 0
    error_code: Optional[str] = None
    compensations: list = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error_code is None


@dataclass
class SystemMetrics:
    """Aggregated ingestion metrics."""
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    resumed_runs: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    chunks_created: int = 0
    characters_ingested: int = 0
    retryable_failures: int = 0

    failures_by_stage: dict = field(default_factory=lambda: defaultdict(int))
    errors_by_code: dict = field(default_factory=lambda: defaultdict(int))
    compensations: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        if self.total_runs == 0:
            return 0
        return self.total_latency_ms / self.total_runs

    @property
    def p95_latency_ms(self) -> float:
        """Calculate 95th percentile latency."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * 0.95)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def error_rate(self) -> float:
        if self.total_runs == 0:
            return 0
        return self.failed_runs / self.total_runs

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "ingestion": {
                "total": self.total_runs,
                "successful": self.successful_runs,
                "failed": self.failed_runs,
                "resumed": self.resumed_runs,
                "retryable_failures": self.retryable_failures,
                "error_rate": f"{self.error_rate:.2%}",
                "chunks": self.chunks_created,
                "characters": self.characters_ingested,
            },
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "min": round(self.min_latency_ms, 2) if self.min_latency_ms != float('inf') else 0,
                "max": round(self.max_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
            },
            "failures_by_stage": dict(self.failures_by_stage),
            "errors": dict(self.errors_by_code),
            "compensations": dict(self.compensations),
        }


class MetricsCollector:
    """
    Collects and aggregates ingestion metrics.

    Usage:
        collector = get_metrics_collector()

        with collector.track_ingestion(filename) as tracker:
            result = run_pipeline()
            tracker.set_result(result.document_id, result.chunks_inserted, result.text_length)

        metrics = collector.get_metrics_dict()
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern for global metrics collection."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.metrics = SystemMetrics()
        self._history: list[IngestionMetrics] = []
        self._max_history = 1000
        self._start_time = datetime.now()
        self._initialized = True

    def reset(self):
        """Reset all metrics (for testing)."""
        self.metrics = SystemMetrics()
        self._history = []
        self._start_time = datetime.now()

    class IngestionTracker:
        """Context manager for tracking one ingestion run."""

        def __init__(self, collector: 'MetricsCollector', filename: str, resumed: bool = False):
            self.collector = collector
            self.resumed = resumed
            self.run = IngestionMetrics(
                run_id=f"ing_{int(time.time() * 1000)}",
                filename=filename[:200],
                start_time=time.time(),
            )

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.run.end_time = time.time()
            self.run.latency_ms = (self.run.end_time - self.run.start_time) * 1000

            retryable = False
            if exc_type:
                self.run.error_code = getattr(exc_val, "code", exc_type.__name__)
                self.run.stage = getattr(exc_val, "stage", None) or self.run.stage
                self.run.document_id = getattr(exc_val, "document_id", None) or self.run.document_id
                self.run.compensations = list(getattr(exc_val, "compensations", []) or [])
                retryable = bool(getattr(exc_val, "retryable", False))

            self.collector._record_run(self.run, resumed=self.resumed, retryable=retryable)
            return False  # Don't suppress exceptions

        def set_stage(self, stage: str):
            self.run.stage = stage

        def set_result(self, document_id: str, chunks_inserted: int, text_length: int):
            self.run.document_id = document_id
            self.run.chunks_inserted = chunks_inserted
            self.run.text_length = text_length

    def track_ingestion(self, filename: str, resumed: bool = False) -> IngestionTracker:
        """Create an ingestion tracker context manager."""
        return self.IngestionTracker(self, filename, resumed=resumed)

    def _record_run(self, run: IngestionMetrics, resumed: bool = False, retryable: bool = False):
        """Record a completed (or failed) ingestion run."""
        m = self.metrics
        m.total_runs += 1
        if resumed:
            m.resumed_runs += 1

        if run.succeeded:
            m.successful_runs += 1
            m.chunks_created += run.chunks_inserted
            m.characters_ingested += run.text_length
        else:
            m.failed_runs += 1
            m.errors_by_code[run.error_code] += 1
            m.failures_by_stage[run.stage or "none"] += 1
            if retryable:
                m.retryable_failures += 1
            logger.debug(f"Ingestion {run.run_id} failed at {run.stage}: {run.error_code}")

        for action in run.compensations:
            m.compensations[action] += 1

        m.total_latency_ms += run.latency_ms
        m.min_latency_ms = min(m.min_latency_ms, run.latency_ms)
        m.max_latency_ms = max(m.max_latency_ms, run.latency_ms)
        m.latencies.append(run.latency_ms)
        if len(m.latencies) > self._max_history:
            m.latencies = m.latencies[-self._max_history:]

        self._history.append(run)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

    def get_metrics(self) -> SystemMetrics:
        return self.metrics

    def get_metrics_dict(self) -> dict:
        data = self.metrics.to_dict()
        data["uptime_seconds"] = int(self.get_uptime().total_seconds())
        return data

    def get_recent_runs(self, limit: int = 10) -> list[IngestionMetrics]:
        """Get most recent ingestion runs."""
        return self._history[-limit:]

    def get_uptime(self) -> timedelta:
        return datetime.now() - self._start_time


# Global metrics collector instance
_collector = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
