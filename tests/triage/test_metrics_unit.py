"""Unit tests for triage Prometheus metrics."""

from prometheus_client import CollectorRegistry

from src.triage.metrics import TriageMetrics, generate_metrics_output, get_metrics


class TestTriageMetrics:
    def test_webhook_outcomes_are_counted_separately(self):
        metrics = TriageMetrics(registry=CollectorRegistry())

        metrics.record_webhook("processing")
        metrics.record_webhook("processing")
        metrics.record_webhook("ignored")

        sample = metrics.registry.get_sample_value
        assert sample("triage_webhooks_total", {"outcome": "processing"}) == 2.0
        assert sample("triage_webhooks_total", {"outcome": "ignored"}) == 1.0
        assert sample("triage_webhooks_total", {"outcome": "rejected"}) is None

    def test_run_completion_records_result_and_duration(self):
        metrics = TriageMetrics(registry=CollectorRegistry())

        metrics.record_run_completed("acme/widgets", "loop_exhausted", 12.5)

        sample = metrics.registry.get_sample_value
        assert (
            sample(
                "triage_runs_completed_total",
                {"repository": "acme/widgets", "result": "loop_exhausted"},
            )
            == 1.0
        )
        assert (
            sample("triage_run_duration_seconds_sum", {"repository": "acme/widgets"})
            == 12.5
        )

    def test_output_is_prometheus_text(self):
        registry = CollectorRegistry()
        metrics = TriageMetrics(registry=registry)
        metrics.record_tool_call("add_labels")

        output = generate_metrics_output(registry).decode("utf-8")

        assert "# TYPE triage_tool_calls_total counter" in output
        assert 'triage_tool_calls_total{tool="add_labels"} 1.0' in output

    def test_custom_registry_gets_fresh_instance(self):
        first = get_metrics(CollectorRegistry())
        second = get_metrics(CollectorRegistry())
        assert first is not second
