"""Uptrace client for Python."""

import logging

from .client import DUMMY_SPAN_NAME, Client, CloseError, PanicGuard
from .config import (
    Config,
    build_resource,
    new_config,
    new_generic_config,
    new_metrics_config,
    new_tracing_config,
)
from .dsn import DSN, InvalidDSNError
from .options import (
    GenericOption,
    MetricsOption,
    Option,
    OptionError,
    TracingOption,
    with_dsn,
    with_metrics_disabled,
    with_pretty_print_span_exporter,
    with_resource,
    with_resource_attributes,
    with_service_name,
    with_service_version,
    with_text_map_propagator,
    with_trace_sampler,
    with_tracer_provider,
    with_tracing_disabled,
)
from .telemetry import (
    configure_opentelemetry,
    force_flush,
    get_client,
    is_configured,
    report_error,
    report_panic,
    shutdown,
    trace_url,
    tracer,
)


def configure_logging(level: int = logging.INFO, format: str | None = None) -> None:
    """Configure logging for the Uptrace client.

    Args:
        level: Logging level (e.g., logging.DEBUG, logging.INFO)
        format: Log format string. Defaults to a simple format.
    """
    if format is None:
        format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logging.basicConfig(level=level, format=format)
    logging.getLogger("uptrace_client").setLevel(level)


__all__ = [
    # Client
    "Client",
    "CloseError",
    "PanicGuard",
    "DUMMY_SPAN_NAME",
    # Configuration
    "Config",
    "DSN",
    "InvalidDSNError",
    "build_resource",
    "new_config",
    "new_generic_config",
    "new_tracing_config",
    "new_metrics_config",
    # Options
    "Option",
    "GenericOption",
    "TracingOption",
    "MetricsOption",
    "OptionError",
    "with_dsn",
    "with_service_name",
    "with_service_version",
    "with_resource_attributes",
    "with_resource",
    "with_tracing_disabled",
    "with_tracer_provider",
    "with_trace_sampler",
    "with_text_map_propagator",
    "with_pretty_print_span_exporter",
    "with_metrics_disabled",
    # Default client
    "configure_opentelemetry",
    "get_client",
    "is_configured",
    "shutdown",
    "force_flush",
    "tracer",
    "trace_url",
    "report_error",
    "report_panic",
    # Utility
    "configure_logging",
]
