"""Tests for Client setup and teardown."""
import logging
from unittest.mock import MagicMock

import pytest
from opentelemetry import metrics, propagate, trace
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ALWAYS_OFF

from uptrace_client.client import Client, CloseError
from uptrace_client.config import new_config
from uptrace_client.options import (
    with_dsn,
    with_metrics_disabled,
    with_pretty_print_span_exporter,
    with_resource,
    with_service_name,
    with_text_map_propagator,
    with_trace_sampler,
    with_tracer_provider,
    with_tracing_disabled,
)

DSN = "https://token@api.uptrace.dev/1"


def _client(*opts):
    return Client(new_config(with_metrics_disabled(), *opts))


def test_tracing_disabled_sets_up_nothing():
    client = _client(with_tracing_disabled(), with_pretty_print_span_exporter(), with_dsn(DSN))
    assert client.tracer_provider is None
    assert client.span_processors == ()
    assert isinstance(trace.get_tracer_provider(), trace.ProxyTracerProvider)


def test_tracing_disabled_client_is_safe_to_use_and_close():
    client = _client(with_tracing_disabled())
    client.report_error(ValueError("boom"))
    with pytest.raises(KeyError):
        with client.report_panic():
            raise KeyError("k")
    client.close()
    client.close()
    assert client.closed


def test_default_config_is_read_from_environment(monkeypatch, uptrace_export):
    monkeypatch.setenv("UPTRACE_DSN", DSN)
    client = Client(new_config(with_metrics_disabled()))
    assert client.config.dsn == DSN
    assert len(uptrace_export) == 1
    client.close()


def test_client_without_config_uses_environment(monkeypatch):
    monkeypatch.setenv("UPTRACE_DSN", "")
    client = Client()
    assert client.config == new_config()
    client.close()


def test_empty_dsn_disables_tracing(caplog):
    with caplog.at_level(logging.WARNING, logger="uptrace_client.client"):
        client = _client()
    assert client.tracer_provider is None
    assert client.span_processors == ()
    assert "Tracing is disabled" in caplog.text
    client.report_error(ValueError("boom"))
    client.close()


def test_invalid_dsn_disables_tracing(caplog):
    with caplog.at_level(logging.WARNING, logger="uptrace_client.client"):
        client = _client(with_dsn("ftp://token@host/1"))
    assert client.tracer_provider is None
    assert "unsupported scheme" in caplog.text


def test_processor_failure_is_not_fatal(monkeypatch, caplog):
    def broken(cfg):
        raise RuntimeError("exporter unavailable")

    monkeypatch.setattr("uptrace_client.client.new_batch_span_processor", broken)
    with caplog.at_level(logging.ERROR, logger="uptrace_client.client"):
        client = _client(with_dsn(DSN))
    assert client.tracer_provider is None
    assert "Tracing setup failed" in caplog.text
    client.report_error(ValueError("still fine"))
    client.close()


def test_cleanup_failure_after_setup_error_is_not_fatal(monkeypatch, caplog):
    sp = MagicMock(spec=SpanProcessor)
    sp.shutdown.side_effect = RuntimeError("already broken")

    def broken_console():
        raise RuntimeError("no console")

    monkeypatch.setattr("uptrace_client.client.new_batch_span_processor", lambda cfg: sp)
    monkeypatch.setattr("uptrace_client.client.new_console_span_processor", broken_console)
    with caplog.at_level(logging.WARNING, logger="uptrace_client.client"):
        client = _client(with_dsn(DSN), with_pretty_print_span_exporter())

    assert client.tracer_provider is None
    assert client.span_processors == ()
    sp.shutdown.assert_called_once()
    assert "Failed to shut down" in caplog.text
    client.close()


def test_setup_registers_processor_and_global_provider(uptrace_export, span_exporter):
    client = _client(with_dsn(DSN), with_service_name("checkout"))

    assert isinstance(client.tracer_provider, TracerProvider)
    assert client.span_processors == tuple(uptrace_export)
    assert trace.get_tracer_provider() is client.tracer_provider
    assert client.tracer_provider.resource.attributes["service.name"] == "checkout"

    with client.tracer("app").start_as_current_span("work"):
        pass
    assert [s.name for s in span_exporter.get_finished_spans()] == ["work"]
    client.close()


def test_sampler_override(uptrace_export, span_exporter):
    client = _client(with_dsn(DSN), with_trace_sampler(ALWAYS_OFF))
    with client.tracer("app").start_as_current_span("dropped"):
        pass
    assert span_exporter.get_finished_spans() == ()
    client.close()


def test_explicit_resource_is_used(uptrace_export):
    from opentelemetry.sdk.resources import Resource

    res = Resource({"service.name": "explicit"})
    client = _client(with_dsn(DSN), with_resource(res))
    assert client.tracer_provider.resource is res
    client.close()


def test_default_propagator_is_set(provider):
    client = _client(with_tracer_provider(provider))
    textmap = propagate.get_global_textmap()
    assert isinstance(textmap, CompositePropagator)
    assert {"traceparent", "baggage"} <= textmap.fields
    client.close()


def test_propagator_override(provider):
    custom = CompositePropagator([])
    client = _client(with_tracer_provider(provider), with_text_map_propagator(custom))
    assert propagate.get_global_textmap() is custom
    client.close()


def test_second_client_does_not_replace_global_propagator(provider):
    first_propagator, second_propagator = CompositePropagator([]), CompositePropagator([])
    first = _client(with_tracer_provider(provider), with_text_map_propagator(first_propagator))
    second = _client(with_tracer_provider(TracerProvider()), with_text_map_propagator(second_propagator))

    assert trace.get_tracer_provider() is provider
    assert propagate.get_global_textmap() is first_propagator
    first.close()
    second.close()


def test_close_releases_owned_provider_once(monkeypatch):
    sp = MagicMock(spec=SpanProcessor)
    monkeypatch.setattr("uptrace_client.client.new_batch_span_processor", lambda cfg: sp)

    client = _client(with_dsn(DSN))
    client.close()
    client.close()

    assert sp.shutdown.call_count == 1
    assert client.span_processors == ()


def test_close_leaves_caller_provider_running(provider, span_exporter):
    client = _client(with_tracer_provider(provider), with_pretty_print_span_exporter())
    assert len(client.span_processors) == 1
    assert isinstance(client.span_processors[0], SimpleSpanProcessor)

    client.close()

    with provider.get_tracer("app").start_as_current_span("after-close"):
        pass
    assert [s.name for s in span_exporter.get_finished_spans()] == ["after-close"]


def test_caller_provider_with_dsn_gets_uptrace_processor(provider, uptrace_export):
    client = _client(with_tracer_provider(provider), with_dsn(DSN))
    assert client.span_processors == tuple(uptrace_export)
    client.close()


def test_close_reports_teardown_failure(provider):
    sp = MagicMock(spec=SpanProcessor)
    sp.shutdown.side_effect = RuntimeError("stuck")

    client = _client(with_tracer_provider(provider))
    client._span_processors = [sp]

    with pytest.raises(CloseError, match="stuck"):
        client.close()
    client.close()
    assert sp.shutdown.call_count == 1


def test_close_reports_flush_timeout(provider):
    sp = MagicMock(spec=SpanProcessor)
    sp.force_flush.return_value = False

    client = _client(with_tracer_provider(provider))
    client._span_processors = [sp]

    with pytest.raises(CloseError, match="flush timed out"):
        client.close()
    sp.shutdown.assert_called_once()


def test_client_is_a_context_manager(monkeypatch):
    sp = MagicMock(spec=SpanProcessor)
    monkeypatch.setattr("uptrace_client.client.new_batch_span_processor", lambda cfg: sp)

    with _client(with_dsn(DSN)) as client:
        assert not client.closed
    assert client.closed
    sp.shutdown.assert_called_once()


def test_second_client_keeps_its_pipeline_private(caplog):
    first_exporter, second_exporter = MagicMock(), MagicMock()
    first_provider, second_provider = TracerProvider(), TracerProvider()
    first_provider.add_span_processor(SimpleSpanProcessor(first_exporter))
    second_provider.add_span_processor(SimpleSpanProcessor(second_exporter))

    first = _client(with_tracer_provider(first_provider))
    with caplog.at_level(logging.WARNING, logger="uptrace_client.client"):
        second = _client(with_tracer_provider(second_provider))

    assert trace.get_tracer_provider() is first_provider
    assert "already installed" in caplog.text

    with second.tracer("app").start_as_current_span("second-only"):
        pass
    second_exporter.export.assert_called_once()
    first_exporter.export.assert_not_called()

    first.close()
    second.close()


def test_tracer_without_tracing_uses_global_api():
    client = _client(with_tracing_disabled())
    tracer = client.tracer("app")
    with tracer.start_as_current_span("noop") as span:
        assert not span.is_recording()


def test_force_flush(uptrace_export):
    client = _client(with_dsn(DSN))
    assert client.force_flush() is True
    client.close()


def test_trace_url(provider):
    client = _client(with_tracer_provider(provider), with_dsn(DSN))
    span = provider.get_tracer("app").start_span("op")
    trace_id = span.get_span_context().trace_id
    assert client.trace_url(span) == f"https://app.uptrace.dev/traces/{trace_id:032x}"
    span.end()
    client.close()


def test_trace_url_without_dsn(provider):
    client = _client(with_tracer_provider(provider))
    assert client.trace_url() == ""


# --- Metrics ---


@pytest.fixture
def metric_reader(monkeypatch):
    reader = InMemoryMetricReader()
    monkeypatch.setattr("uptrace_client.client.new_metric_reader", lambda cfg: reader)
    return reader


def test_metrics_setup(metric_reader):
    client = Client(new_config(with_dsn(DSN), with_tracing_disabled()))
    assert isinstance(client.meter_provider, MeterProvider)
    assert metrics.get_meter_provider() is client.meter_provider

    client.meter("app").create_counter("requests").add(3)
    data = metric_reader.get_metrics_data()
    names = [
        m.name
        for rm in data.resource_metrics
        for sm in rm.scope_metrics
        for m in sm.metrics
    ]
    assert names == ["requests"]
    client.close()
    assert client.meter_provider is None


def test_metrics_disabled(metric_reader):
    client = Client(new_config(with_dsn(DSN), with_tracing_disabled(), with_metrics_disabled()))
    assert client.meter_provider is None
    assert not isinstance(metrics.get_meter_provider(), MeterProvider)


def test_metrics_without_dsn_are_disabled(caplog):
    with caplog.at_level(logging.WARNING, logger="uptrace_client.client"):
        client = Client(new_config(with_tracing_disabled()))
    assert client.meter_provider is None
    assert "Metrics are disabled" in caplog.text
