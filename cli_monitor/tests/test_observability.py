import importlib
import sys
import unittest
from unittest.mock import MagicMock, patch

from cli_monitor import config
from cli_monitor.observability import otel

_OTEL_MODULES = (
    "opentelemetry",
    "opentelemetry.exporter",
    "opentelemetry.exporter.otlp",
    "opentelemetry.exporter.otlp.proto",
    "opentelemetry.exporter.otlp.proto.http",
    "opentelemetry.exporter.otlp.proto.http.metric_exporter",
    "opentelemetry.exporter.otlp.proto.http.trace_exporter",
    "opentelemetry.instrumentation",
    "opentelemetry.instrumentation.fastapi",
    "opentelemetry.sdk",
    "opentelemetry.sdk.metrics",
    "opentelemetry.sdk.metrics.export",
    "opentelemetry.sdk.resources",
    "opentelemetry.sdk.trace",
    "opentelemetry.sdk.trace.export",
)


def _fake_modules() -> tuple[dict[str, MagicMock], dict[str, MagicMock], dict[str, MagicMock]]:
    modules = {name: MagicMock(name=name) for name in _OTEL_MODULES}
    instruments: dict[str, MagicMock] = {}
    meter = modules["opentelemetry"].metrics.get_meter.return_value
    meter.create_counter.side_effect = lambda name, **_: instruments.setdefault(name, MagicMock(name=name))
    meter.create_histogram.side_effect = lambda name, **_: instruments.setdefault(name, MagicMock(name=name))

    prom_instruments: dict[str, MagicMock] = {}
    prometheus = MagicMock(name="prometheus_client")
    prometheus.Counter.side_effect = lambda name, *_: prom_instruments.setdefault(name, MagicMock(name=name))
    prometheus.Histogram.side_effect = lambda name, *_: prom_instruments.setdefault(name, MagicMock(name=name))
    modules["prometheus_client"] = prometheus
    return modules, instruments, prom_instruments


class ObservabilityTests(unittest.TestCase):
    def setUp(self) -> None:
        importlib.reload(otel)
        self.addCleanup(importlib.reload, otel)

    def test_disabled_by_default_records_nothing(self) -> None:
        with patch.object(config, "OTEL_ENABLED", False):
            otel.initialize(None)

        with otel.start_span("cli_monitor.process_file", {"file.path": "/x.jsonl"}) as span:
            self.assertIsNone(span)
        otel.record_ingestion("ok", 1.0, bytes_consumed=10)
        otel.record_parser_failure("jsonl")
        otel.shutdown(None)

    def test_enabled_metrics_reach_otel_and_prometheus(self) -> None:
        modules, instruments, prom_instruments = _fake_modules()
        app = MagicMock(name="app")

        with patch.dict(sys.modules, modules), patch.object(config, "OTEL_ENABLED", True), patch.object(
            config, "PROM_PORT", 9464
        ):
            otel.initialize(app)

            otel.record_ingestion("ok", 12.5, bytes_consumed=100)
            otel.record_ingestion("missing", 0.5)
            otel.record_parser_failure("jsonl")

        modules["prometheus_client"].start_http_server.assert_called_once_with(9464)
        instrumentor = modules["opentelemetry.instrumentation.fastapi"].FastAPIInstrumentor.return_value
        instrumentor.instrument_app.assert_called_once_with(app)

        ingestions = instruments["cli_monitor_file_ingestions_total"]
        self.assertEqual(ingestions.add.call_count, 2)
        ingestions.add.assert_any_call(1, {"result": "ok"})
        ingestions.add.assert_any_call(1, {"result": "missing"})
        instruments["cli_monitor_file_ingestion_latency_ms"].record.assert_any_call(12.5, {"result": "ok"})
        instruments["cli_monitor_bytes_consumed_total"].add.assert_called_once_with(100)
        instruments["cli_monitor_parser_failures_total"].add.assert_called_once_with(1, {"parser": "jsonl"})

        prom_ingestions = prom_instruments["cli_monitor_file_ingestions_total"]
        prom_ingestions.labels.assert_any_call(result="ok")
        self.assertEqual(prom_ingestions.labels.return_value.inc.call_count, 2)
        prom_instruments["cli_monitor_bytes_consumed_total"].inc.assert_called_once_with(100)
        prom_failures = prom_instruments["cli_monitor_parser_failures_total"]
        prom_failures.labels.assert_called_once_with(parser="jsonl")
        prom_failures.labels.return_value.inc.assert_called_once_with()

    def test_spans_carry_attributes_and_shutdown_flushes_providers(self) -> None:
        modules, instruments, _ = _fake_modules()

        with patch.dict(sys.modules, modules), patch.object(config, "OTEL_ENABLED", True), patch.object(
            config, "PROM_PORT", 0
        ):
            otel.initialize(None)

        tracer = modules["opentelemetry"].trace.get_tracer.return_value
        with otel.start_span("cli_monitor.process_file", {"file.path": "/x.jsonl", "skip": None}) as span:
            self.assertIsNotNone(span)
        tracer.start_as_current_span.assert_called_once_with("cli_monitor.process_file")
        span.set_attribute.assert_called_once_with("file.path", "/x.jsonl")
        modules["prometheus_client"].start_http_server.assert_not_called()

        otel.shutdown(None)
        modules["opentelemetry.sdk.metrics"].MeterProvider.return_value.shutdown.assert_called_once_with()
        modules["opentelemetry.sdk.trace"].TracerProvider.return_value.shutdown.assert_called_once_with()

        otel.record_ingestion("ok", 1.0)
        instruments["cli_monitor_file_ingestions_total"].add.assert_not_called()

    def test_otlp_endpoint_is_normalised_per_signal(self) -> None:
        self.assertEqual(
            otel._normalize_otlp_endpoint("http://collector:4318", "/v1/traces"),
            "http://collector:4318/v1/traces",
        )
        self.assertEqual(
            otel._normalize_otlp_endpoint("http://collector:4318/v1/", "/v1/metrics"),
            "http://collector:4318/v1/metrics",
        )
        self.assertEqual(otel._normalize_otlp_endpoint("  ", "/v1/traces"), "")


if __name__ == "__main__":
    unittest.main()
