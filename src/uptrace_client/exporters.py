"""OTLP/HTTP exporters for Uptrace.

Spans   → POST {otlp_endpoint}/v1/traces   (batched)
Metrics → POST {otlp_endpoint}/v1/metrics  (periodic, delta temporality)

Every request carries the DSN in the ``uptrace-dsn`` header and is gzipped.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry.exporter.otlp.proto.http import Compression
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import (
    Counter,
    Histogram,
    ObservableCounter,
    ObservableGauge,
    ObservableUpDownCounter,
    UpDownCounter,
)
from opentelemetry.sdk.metrics.export import AggregationTemporality, PeriodicExportingMetricReader
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)

from .dsn import DSN

if TYPE_CHECKING:
    from .config import Config

log = logging.getLogger("uptrace_client.exporters")

DSN_HEADER = "uptrace-dsn"

# Uptrace stores counters and histograms as deltas.
PREFERRED_TEMPORALITY = {
    Counter: AggregationTemporality.DELTA,
    UpDownCounter: AggregationTemporality.CUMULATIVE,
    Histogram: AggregationTemporality.DELTA,
    ObservableCounter: AggregationTemporality.DELTA,
    ObservableUpDownCounter: AggregationTemporality.CUMULATIVE,
    ObservableGauge: AggregationTemporality.CUMULATIVE,
}


def new_span_exporter(dsn: DSN) -> OTLPSpanExporter:
    return OTLPSpanExporter(
        endpoint=f"{dsn.otlp_endpoint}/v1/traces",
        headers={DSN_HEADER: dsn.original},
        compression=Compression.Gzip,
    )


def new_batch_span_processor(cfg: Config) -> BatchSpanProcessor:
    """Create the batching processor that ships spans to Uptrace.

    Raises InvalidDSNError when ``cfg.dsn`` is empty or malformed. Queue and
    batch sizes follow the OTEL_BSP_* environment variables.
    """
    dsn = DSN.parse(cfg.dsn)
    log.debug("Exporting spans to %s", dsn.otlp_endpoint)
    return BatchSpanProcessor(new_span_exporter(dsn))


def new_console_span_processor() -> SimpleSpanProcessor:
    """Processor that pretty-prints every finished span to stdout."""
    return SimpleSpanProcessor(ConsoleSpanExporter())


def new_metric_reader(cfg: Config) -> PeriodicExportingMetricReader:
    """Create the periodic reader that ships metrics to Uptrace.

    Raises InvalidDSNError when ``cfg.dsn`` is empty or malformed. The export
    interval follows OTEL_METRIC_EXPORT_INTERVAL.
    """
    dsn = DSN.parse(cfg.dsn)
    log.debug("Exporting metrics to %s", dsn.otlp_endpoint)
    exporter = OTLPMetricExporter(
        endpoint=f"{dsn.otlp_endpoint}/v1/metrics",
        headers={DSN_HEADER: dsn.original},
        compression=Compression.Gzip,
        preferred_temporality=PREFERRED_TEMPORALITY,
    )
    return PeriodicExportingMetricReader(exporter)
