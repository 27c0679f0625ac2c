"""Prometheus metrics for triage observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- triage_webhooks_total: Counter of webhook deliveries by outcome
- triage_runs_started_total: Counter of triage runs launched
- triage_runs_completed_total: Counter of finished runs by result
- triage_run_duration_seconds: Histogram of run duration
- triage_tool_calls_total: Counter of tool invocations by tool name
"""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


# Model latency dominates; runs take seconds to a few minutes
DEFAULT_DURATION_BUCKETS = (
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
)

RUN_RESULTS = (
    "success",
    "invalid_response",
    "loop_exhausted",
    "agent_error",
    "unexpected",
)


class TriageMetrics:
    """Container for all triage Prometheus metrics.

    Supports custom registries for testing.

    Example:
        >>> metrics = TriageMetrics(registry=CollectorRegistry())
        >>> metrics.record_run_started("org/repo")
        >>> metrics.record_run_completed("org/repo", "success", 12.5)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize triage metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.webhooks_total = Counter(
            "triage_webhooks_total",
            "Webhook deliveries received, by outcome",
            labelnames=["outcome"],
            registry=self.registry,
        )

        self.runs_started_total = Counter(
            "triage_runs_started_total",
            "Triage runs launched",
            labelnames=["repository"],
            registry=self.registry,
        )

        self.runs_completed_total = Counter(
            "triage_runs_completed_total",
            "Triage runs finished, by result",
            labelnames=["repository", "result"],
            registry=self.registry,
        )

        self.run_duration_seconds = Histogram(
            "triage_run_duration_seconds",
            "Time spent in a triage run in seconds",
            labelnames=["repository"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.tool_calls_total = Counter(
            "triage_tool_calls_total",
            "Tool invocations requested by the model",
            labelnames=["tool"],
            registry=self.registry,
        )

    def record_webhook(self, outcome: str) -> None:
        """Record a webhook delivery ("processing", "ignored" or "rejected")."""
        self.webhooks_total.labels(outcome=outcome).inc()

    def record_run_started(self, repository: str) -> None:
        self.runs_started_total.labels(repository=repository).inc()

    def record_run_completed(
        self,
        repository: str,
        result: str,
        duration_seconds: float,
    ) -> None:
        """Record the end of a triage run.

        Args:
            repository: The repository in format "{owner}/{repo}".
            result: One of RUN_RESULTS.
            duration_seconds: Wall time of the run.
        """
        self.runs_completed_total.labels(repository=repository, result=result).inc()
        self.run_duration_seconds.labels(repository=repository).observe(
            duration_seconds
        )

    def record_tool_call(self, tool: str) -> None:
        self.tool_calls_total.labels(tool=tool).inc()


_default_metrics: Optional[TriageMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> TriageMetrics:
    """Get or create the triage metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        TriageMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return TriageMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = TriageMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint."""
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)
