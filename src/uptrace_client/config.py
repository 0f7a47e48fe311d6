"""Resolved configuration for the Uptrace client."""
from __future__ import annotations

import logging
import os
import socket
from dataclasses import MISSING, dataclass, field, fields
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from opentelemetry.sdk.resources import (
    HOST_NAME,
    SERVICE_NAME,
    SERVICE_VERSION,
    OTELResourceDetector,
    Resource,
)

from .options import (
    ConfigBuilder,
    GenericOption,
    MetricsOption,
    Option,
    TracingOption,
    check_options,
)

if TYPE_CHECKING:
    from opentelemetry.propagators.textmap import TextMapPropagator
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.sampling import Sampler
    from opentelemetry.util.types import AttributeValue

log = logging.getLogger("uptrace_client.config")

ENV_DSN = "UPTRACE_DSN"


@dataclass(frozen=True)
class Config:
    """Fully resolved client settings. Build it with :func:`new_config`."""

    dsn: str = ""
    """Uptrace DSN. Defaults to env UPTRACE_DSN."""

    service_name: str = ""
    """``service.name`` resource attribute. Empty means unset."""

    service_version: str = ""
    """``service.version`` resource attribute. Empty means unset."""

    resource_attributes: Mapping[str, AttributeValue] = field(default_factory=dict, hash=False)
    """Extra resource attributes, merged over OTEL_RESOURCE_ATTRIBUTES. Read-only."""

    resource: Resource | None = None
    """Prebuilt resource. When set, the attribute fields above are ignored."""

    tracing_disabled: bool = False
    text_map_propagator: TextMapPropagator | None = None
    trace_sampler: Sampler | None = None
    tracer_provider: TracerProvider | None = None
    pretty_print: bool = False

    metrics_disabled: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.resource_attributes, MappingProxyType):
            object.__setattr__(self, "resource_attributes", MappingProxyType(dict(self.resource_attributes)))

    def new_resource(self) -> Resource:
        """Return the resource spans and metrics are reported with."""
        if self.resource is not None:
            return self.resource
        return build_resource(self.resource_attributes, self.service_name, self.service_version)


def build_resource(
    attributes: Mapping[str, AttributeValue],
    service_name: str = "",
    service_version: str = "",
) -> Resource:
    """Build a resource from explicit attributes, the environment and the host.

    Explicit attributes win over OTEL_RESOURCE_ATTRIBUTES / OTEL_SERVICE_NAME,
    which win over detected host attributes. Detection failures fall back to a
    resource built from the environment alone.
    """
    attrs: dict[str, Any] = dict(attributes)
    if service_name:
        attrs[SERVICE_NAME] = service_name
    if service_version:
        attrs[SERVICE_VERSION] = service_version

    try:
        host = Resource({HOST_NAME: socket.gethostname()})
        return host.merge(Resource.create(attrs))
    except Exception:
        log.warning("Resource detection failed; using environment attributes only", exc_info=True)
        return OTELResourceDetector().detect()


def _defaults() -> ConfigBuilder:
    cfg = ConfigBuilder()
    for f in fields(Config):
        if f.default_factory is not MISSING:
            setattr(cfg, f.name, f.default_factory())
        else:
            setattr(cfg, f.name, f.default)

    if ENV_DSN in os.environ:
        cfg.dsn = os.environ[ENV_DSN]
    return cfg


def _resolve(opts: tuple[Any, ...], allowed: tuple[type[Option], ...], entry_point: str) -> Config:
    check_options(opts, allowed, entry_point)

    cfg = _defaults()
    for opt in opts:
        opt.apply(cfg)
    return Config(**vars(cfg))


def new_config(*opts: Option) -> Config:
    """Resolve options of any category over the environment defaults.

    Options are applied in order; a later option overrides an earlier one
    that sets the same field.
    """
    return _resolve(opts, (Option,), "new_config")


def new_generic_config(*opts: GenericOption) -> Config:
    """Resolve generic options only."""
    return _resolve(opts, (GenericOption,), "new_generic_config")


def new_tracing_config(*opts: GenericOption | TracingOption) -> Config:
    """Resolve generic and tracing options; metrics options are rejected."""
    return _resolve(opts, (GenericOption, TracingOption), "new_tracing_config")


def new_metrics_config(*opts: GenericOption | MetricsOption) -> Config:
    """Resolve generic and metrics options; tracing options are rejected."""
    return _resolve(opts, (GenericOption, MetricsOption), "new_metrics_config")
