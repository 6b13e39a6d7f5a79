"""Prometheus metrics for netarena.

The coordinator and each worker expose metrics on their own HTTP port.

Usage:
    from netarena.metrics import get_metrics, start_metrics_server

    # Start metrics server on worker initialization
    start_metrics_server(port=9100)

    # Get metrics instance and record values
    metrics = get_metrics()
    metrics.work_assigned.labels(work_type='train').inc()
"""

import threading
from typing import Optional
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    start_http_server,
    REGISTRY,
)


class NetArenaMetrics:
    """Container for all netarena metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics.

        Args:
            registry: Optional custom registry. Uses default if None.
        """
        self.registry = registry or REGISTRY

        # =================================================================
        # Coordinator Metrics
        # =================================================================
        self.work_assigned = Counter(
            'netarena_work_assigned_total',
            'Work assignments handed out',
            ['work_type'],
            registry=self.registry,
        )

        self.network_uploads = Counter(
            'netarena_network_uploads_total',
            'Network upload attempts by outcome',
            ['outcome'],
            registry=self.registry,
        )

        self.network_bytes = Histogram(
            'netarena_network_bytes',
            'Decompressed size of uploaded networks',
            buckets=[1e5, 1e6, 1e7, 5e7, 1e8, 5e8],
            registry=self.registry,
        )

        self.training_games = Counter(
            'netarena_training_games_total',
            'Training games uploaded',
            registry=self.registry,
        )

        self.match_results = Counter(
            'netarena_match_results_total',
            'Match game results by outcome (relative to the candidate)',
            ['outcome'],
            registry=self.registry,
        )

        self.request_errors = Counter(
            'netarena_request_errors_total',
            'Coordinator requests answered with an error',
            ['endpoint', 'error'],
            registry=self.registry,
        )

        self.open_matches = Gauge(
            'netarena_open_matches',
            'Open matches of the active training run',
            registry=self.registry,
        )

        # =================================================================
        # Worker Metrics
        # =================================================================
        self.worker_cycles = Counter(
            'netarena_worker_cycles_total',
            'Completed work cycles',
            ['worker_id', 'work_type'],
            registry=self.registry,
        )

        self.worker_failures = Counter(
            'netarena_worker_failures_total',
            'Work cycles that ended in backoff',
            ['worker_id', 'error'],
            registry=self.registry,
        )

        self.backoff_seconds = Counter(
            'netarena_backoff_seconds_total',
            'Seconds spent in backoff',
            ['worker_id'],
            registry=self.registry,
        )

        self.engine_runs = Counter(
            'netarena_engine_runs_total',
            'Engine processes launched',
            ['worker_id'],
            registry=self.registry,
        )

        self.engine_exit_codes = Counter(
            'netarena_engine_exit_codes_total',
            'Engine process exit codes',
            ['worker_id', 'code'],
            registry=self.registry,
        )

        self.cycle_duration = Histogram(
            'netarena_cycle_duration_seconds',
            'Duration of a work cycle',
            ['worker_id', 'work_type'],
            buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800],
            registry=self.registry,
        )


# Global metrics instance
_metrics: Optional[NetArenaMetrics] = None
_metrics_lock = threading.Lock()
_server_started = False
_server_port: Optional[int] = None


def get_metrics() -> NetArenaMetrics:
    """Get the global metrics instance.

    Returns:
        NetArenaMetrics instance (creates one if needed).
    """
    global _metrics
    with _metrics_lock:
        if _metrics is None:
            _metrics = NetArenaMetrics()
        return _metrics


def start_metrics_server(port: int = 9100) -> Optional[int]:
    """Start the Prometheus metrics HTTP server.

    Args:
        port: Port to serve metrics on.

    Returns:
        The actual port the server is running on, or None if failed to start.
        Returns the existing port if server was already running.
    """
    global _server_started, _server_port
    with _metrics_lock:
        if _server_started:
            return _server_port

        for candidate in range(port, port + 10):
            try:
                start_http_server(candidate)
            except OSError as e:
                print(f"Failed to start metrics server on port {candidate}: {e}")
                continue
            _server_started = True
            _server_port = candidate
            print(f"Prometheus metrics server started on port {candidate}")
            return candidate
        return None


def reset_metrics(registry: Optional[CollectorRegistry] = None) -> NetArenaMetrics:
    """Replace the global metrics instance (for testing).

    Args:
        registry: Registry for the new instance. A fresh private registry
            is used when None, so repeated resets never collide.

    Returns:
        The new NetArenaMetrics instance.
    """
    global _metrics
    with _metrics_lock:
        _metrics = NetArenaMetrics(registry or CollectorRegistry())
        return _metrics
