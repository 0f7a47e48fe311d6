"""Configuration options for the Uptrace client.

Options come in three categories. Generic options apply to every pipeline,
tracing options only make sense where tracing is configured and metrics
options only where metrics are. Entry points in :mod:`uptrace_client.config`
accept the categories that match their pipeline and reject the rest.
"""
from __future__ import annotations

from types import SimpleNamespace
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Mapping

if TYPE_CHECKING:
    from opentelemetry.propagators.textmap import TextMapPropagator
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.sampling import Sampler
    from opentelemetry.util.types import AttributeValue

ConfigBuilder = SimpleNamespace
"""Mutable bag of Config fields that options write to during resolution."""


class OptionError(TypeError):
    """Raised when an option is passed to an entry point that does not accept it."""


class Option:
    """A single configuration mutation, tagged with the feature it configures."""

    category: ClassVar[str] = "option"

    __slots__ = ("_name", "_fn")

    def __init__(self, name: str, fn: Callable[[ConfigBuilder], None]) -> None:
        self._name = name
        self._fn = fn

    @property
    def name(self) -> str:
        return self._name

    def apply(self, cfg: ConfigBuilder) -> None:
        self._fn(cfg)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._name}>"


class GenericOption(Option):
    """Option valid for both tracing and metrics configuration."""

    category = "generic"
    __slots__ = ()


class TracingOption(Option):
    """Option that only affects the tracing pipeline."""

    category = "tracing"
    __slots__ = ()


class MetricsOption(Option):
    """Option that only affects the metrics pipeline."""

    category = "metrics"
    __slots__ = ()


# --- Generic options ---


def with_dsn(dsn: str) -> GenericOption:
    """Configure the DSN used to connect to Uptrace, for example
    ``https://<token>@api.uptrace.dev/<project_id>``.

    The default is the ``UPTRACE_DSN`` environment variable.
    """

    def apply(cfg: ConfigBuilder) -> None:
        cfg.dsn = dsn

    return GenericOption("with_dsn", apply)


def with_service_name(service_name: str) -> GenericOption:
    """Configure the ``service.name`` resource attribute."""

    def apply(cfg: ConfigBuilder) -> None:
        cfg.service_name = service_name

    return GenericOption("with_service_name", apply)


def with_service_version(service_version: str) -> GenericOption:
    """Configure the ``service.version`` resource attribute, for example ``1.0.0``."""

    def apply(cfg: ConfigBuilder) -> None:
        cfg.service_version = service_version

    return GenericOption("with_service_version", apply)


def with_resource_attributes(attributes: Mapping[str, AttributeValue]) -> GenericOption:
    """Configure attributes describing the entity that produces telemetry,
    for example ``host.name`` or ``deployment.environment``.

    ``OTEL_RESOURCE_ATTRIBUTES`` is still honoured; these attributes win over it.
    """
    attrs = dict(attributes)

    def apply(cfg: ConfigBuilder) -> None:
        cfg.resource_attributes = dict(attrs)

    return GenericOption("with_resource_attributes", apply)


def with_resource(resource: Resource) -> GenericOption:
    """Use a prebuilt resource verbatim.

    Replaces any resource attributes, service name and service version.
    """

    def apply(cfg: ConfigBuilder) -> None:
        cfg.resource = resource

    return GenericOption("with_resource", apply)


# --- Tracing options ---


def with_tracing_disabled() -> TracingOption:
    """Skip tracing configuration altogether."""

    def apply(cfg: ConfigBuilder) -> None:
        cfg.tracing_disabled = True

    return TracingOption("with_tracing_disabled", apply)


def with_tracer_provider(provider: TracerProvider) -> TracingOption:
    """Use an existing tracer provider instead of creating one.

    The provider stays owned by the caller: closing the client releases only
    the span processors the client registered on it.
    """

    def apply(cfg: ConfigBuilder) -> None:
        cfg.tracer_provider = provider

    return TracingOption("with_tracer_provider", apply)


def with_trace_sampler(sampler: Sampler) -> TracingOption:
    """Configure the span sampler."""

    def apply(cfg: ConfigBuilder) -> None:
        cfg.trace_sampler = sampler

    return TracingOption("with_trace_sampler", apply)


def with_text_map_propagator(propagator: TextMapPropagator) -> TracingOption:
    """Set the global text map propagator.

    The default is W3C TraceContext combined with W3C Baggage.
    """

    def apply(cfg: ConfigBuilder) -> None:
        cfg.text_map_propagator = propagator

    return TracingOption("with_text_map_propagator", apply)


def with_pretty_print_span_exporter() -> TracingOption:
    """Also print finished spans to stdout. Useful for debugging."""

    def apply(cfg: ConfigBuilder) -> None:
        cfg.pretty_print = True

    return TracingOption("with_pretty_print_span_exporter", apply)


# --- Metrics options ---


def with_metrics_disabled() -> MetricsOption:
    """Skip metrics configuration altogether."""

    def apply(cfg: ConfigBuilder) -> None:
        cfg.metrics_disabled = True

    return MetricsOption("with_metrics_disabled", apply)


def check_options(opts: tuple[Any, ...], allowed: tuple[type[Option], ...], entry_point: str) -> None:
    """Raise OptionError if any of ``opts`` is not an instance of ``allowed``."""
    for opt in opts:
        if isinstance(opt, allowed):
            continue
        accepted = ", ".join(cls.category for cls in allowed)
        if isinstance(opt, Option):
            raise OptionError(
                f"{entry_point}() does not accept {opt.category} option {opt.name}; "
                f"accepted categories: {accepted}"
            )
        raise OptionError(f"{entry_point}() expects options, got {type(opt).__name__}")
