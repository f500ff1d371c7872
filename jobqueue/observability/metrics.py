"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from jobqueue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_PROCESSED,
    METRIC_JOBS_PUSHED,
    METRIC_JOBS_RECLAIMED,
    METRIC_JOBS_RESERVED,
    METRIC_QUEUE_DEPTH,
    METRIC_SCHEDULED_DURATION,
    METRIC_SCHEDULED_RUNS,
    METRIC_STORE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for workers, reapers and the scheduler.

    Collects metrics for:
    - Queue depth by state
    - Job pushes and outcomes
    - Job execution duration
    - Reservations and reclaims
    - Store connectivity errors
    - Scheduled task runs
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs on a queue by state",
            ["queue", "state"],
            registry=self._registry,
        )

        self.jobs_pushed = Counter(
            METRIC_JOBS_PUSHED,
            "Total number of jobs pushed",
            ["queue", "job_type"],
            registry=self._registry,
        )

        self.jobs_processed = Counter(
            METRIC_JOBS_PROCESSED,
            "Total number of job executions by outcome",
            ["queue", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.jobs_reserved = Counter(
            METRIC_JOBS_RESERVED,
            "Total number of reservations acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.jobs_reclaimed = Counter(
            METRIC_JOBS_RECLAIMED,
            "Total number of expired reservations returned to pending",
            ["queue"],
            registry=self._registry,
        )

        self.store_errors = Counter(
            METRIC_STORE_ERRORS,
            "Total number of queue store connectivity failures",
            ["component"],
            registry=self._registry,
        )

        self.scheduled_runs = Counter(
            METRIC_SCHEDULED_RUNS,
            "Total number of scheduled task invocations by outcome",
            ["task", "outcome"],
            registry=self._registry,
        )

        self.scheduled_duration = Histogram(
            METRIC_SCHEDULED_DURATION,
            "Scheduled task duration in seconds",
            ["task"],
            buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
            registry=self._registry,
        )

    def record_job_pushed(self, queue: str, job_type: str) -> None:
        """Record a job push."""
        self.jobs_pushed.labels(queue=queue, job_type=job_type).inc()

    def record_job_processed(
        self,
        queue: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a job execution outcome."""
        self.jobs_processed.labels(queue=queue, status=status).inc()
        self.job_duration.labels(queue=queue, status=status).observe(duration_seconds)

    def record_job_reserved(self, worker_id: str) -> None:
        """Record a reservation."""
        self.jobs_reserved.labels(worker_id=worker_id).inc()

    def record_jobs_reclaimed(self, queue: str, count: int) -> None:
        """Record reclaimed reservations."""
        self.jobs_reclaimed.labels(queue=queue).inc(count)

    def record_store_error(self, component: str) -> None:
        """Record a store connectivity failure."""
        self.store_errors.labels(component=component).inc()

    def record_scheduled_run(
        self,
        task: str,
        outcome: str,
        duration_seconds: float | None = None,
    ) -> None:
        """Record a scheduled task invocation."""
        self.scheduled_runs.labels(task=task, outcome=outcome).inc()
        if duration_seconds is not None:
            self.scheduled_duration.labels(task=task).observe(duration_seconds)

    def update_queue_depth(
        self,
        queue: str,
        pending: int,
        delayed: int,
        reserved: int,
        failed: int,
    ) -> None:
        """Update queue depth gauges for a queue."""
        self.queue_depth.labels(queue=queue, state="pending").set(pending)
        self.queue_depth.labels(queue=queue, state="delayed").set(delayed)
        self.queue_depth.labels(queue=queue, state="reserved").set(reserved)
        self.queue_depth.labels(queue=queue, state="failed").set(failed)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics


def start_metrics_server(port: int) -> None:
    """
    Expose the default registry over HTTP for processes without an API.

    Args:
        port: Port to listen on.
    """
    setup_metrics()
    start_http_server(port)
