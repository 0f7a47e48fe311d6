"""Shared fixtures for uptrace_client tests."""

import pytest
from opentelemetry import propagate
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from uptrace_client import telemetry


@pytest.fixture(autouse=True)
def reset_otel(monkeypatch):
    """Isolate each test from the environment and from OTel's global singletons."""
    monkeypatch.delenv("UPTRACE_DSN", raising=False)
    monkeypatch.delenv("OTEL_RESOURCE_ATTRIBUTES", raising=False)
    monkeypatch.delenv("OTEL_SERVICE_NAME", raising=False)
    textmap = propagate.get_global_textmap()
    yield
    telemetry.shutdown()
    propagate.set_global_textmap(textmap)

    import opentelemetry.trace as trace_api
    trace_api._TRACER_PROVIDER = None
    trace_api._TRACER_PROVIDER_SET_ONCE._done = False

    import opentelemetry.metrics._internal as metrics_internal
    metrics_internal._METER_PROVIDER = None
    metrics_internal._METER_PROVIDER_SET_ONCE._done = False


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def provider(span_exporter):
    """Caller-owned tracer provider that keeps finished spans in memory."""
    p = TracerProvider()
    p.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield p
    p.shutdown()


@pytest.fixture
def uptrace_export(monkeypatch, span_exporter):
    """Route the Uptrace span processor to the in-memory exporter."""
    created = []

    def fake_processor(cfg):
        sp = SimpleSpanProcessor(span_exporter)
        created.append(sp)
        return sp

    monkeypatch.setattr("uptrace_client.client.new_batch_span_processor", fake_processor)
    return created
