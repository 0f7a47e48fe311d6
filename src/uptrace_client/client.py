"""Uptrace client.

Client sets up the tracing and metrics pipelines described by a Config,
releases them on close(), and reports errors and exceptions that happen
outside of any started span by attaching them to a short-lived
``__dummy__`` span.
"""
from __future__ import annotations

import logging
import threading
from contextlib import ContextDecorator
from typing import Any

from opentelemetry import metrics, propagate, trace
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.context import Context
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from opentelemetry.util.types import Attributes

from .config import Config, new_config
from .dsn import DSN, InvalidDSNError
from .exporters import new_batch_span_processor, new_console_span_processor, new_metric_reader

log = logging.getLogger("uptrace_client.client")

DUMMY_SPAN_NAME = "__dummy__"
INSTRUMENTATION_NAME = "uptrace_client"

_install_lock = threading.Lock()


class CloseError(RuntimeError):
    """Raised by Client.close() when a pipeline could not be released cleanly."""


class Client:
    """Uptrace client.

    Construction configures the pipelines right away. Telemetry failures never
    propagate out of the constructor: they are logged and leave the failed
    pipeline disabled for this client.

    The first client that sets up a pipeline installs its providers as the
    process-wide OpenTelemetry defaults. OpenTelemetry only allows that once
    per process, so later clients log a warning and keep their pipelines
    private: spans started through :meth:`tracer` and the reporter still reach
    their own exporters, and never anyone else's.
    """

    def __init__(self, config: Config | None = None) -> None:
        self._config = config if config is not None else new_config()
        self._lock = threading.Lock()
        self._closed = False

        self._resource: Resource | None = None
        self._provider: TracerProvider | None = None
        self._owns_provider = False
        self._span_processors: list[SpanProcessor] = []
        self._meter_provider: MeterProvider | None = None
        self._tracer: trace.Tracer = trace.NoOpTracer()

        self._dsn: DSN | None = None
        if self._config.dsn:
            try:
                self._dsn = DSN.parse(self._config.dsn)
            except InvalidDSNError:
                self._dsn = None  # reported by pipeline setup below

        self._setup_tracing()
        self._setup_metrics()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def tracer_provider(self) -> TracerProvider | None:
        return self._provider

    @property
    def meter_provider(self) -> MeterProvider | None:
        return self._meter_provider

    @property
    def span_processors(self) -> tuple[SpanProcessor, ...]:
        """Span processors registered by this client and not yet released."""
        return tuple(self._span_processors)

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Setup ---

    def _get_resource(self) -> Resource:
        if self._resource is None:
            self._resource = self._config.new_resource()
        return self._resource

    def _setup_tracing(self) -> None:
        cfg = self._config
        if cfg.tracing_disabled:
            log.debug("Tracing is disabled")
            return

        provider = cfg.tracer_provider
        owns_provider = provider is None
        processors: list[SpanProcessor] = []
        try:
            if provider is None:
                provider = TracerProvider(resource=self._get_resource(), sampler=cfg.trace_sampler)
            # A caller-supplied provider may export elsewhere and have no DSN.
            if owns_provider or cfg.dsn:
                processors.append(new_batch_span_processor(cfg))
            if cfg.pretty_print:
                processors.append(new_console_span_processor())
        except InvalidDSNError as exc:
            log.warning("Tracing is disabled: %s", exc)
            _discard(provider if owns_provider else None, processors)
            return
        except Exception:
            log.exception("Tracing setup failed; tracing is disabled")
            _discard(provider if owns_provider else None, processors)
            return

        for sp in processors:
            provider.add_span_processor(sp)

        self._provider = provider
        self._owns_provider = owns_provider
        self._span_processors = processors
        self._tracer = provider.get_tracer(INSTRUMENTATION_NAME)

        # Only the client that owns the global provider sets the global propagator.
        if _install_tracer_provider(provider):
            propagate.set_global_textmap(
                cfg.text_map_propagator
                or CompositePropagator([TraceContextTextMapPropagator(), W3CBaggagePropagator()])
            )

    def _setup_metrics(self) -> None:
        cfg = self._config
        if cfg.metrics_disabled:
            log.debug("Metrics are disabled")
            return

        try:
            reader = new_metric_reader(cfg)
            meter_provider = MeterProvider(resource=self._get_resource(), metric_readers=[reader])
        except InvalidDSNError as exc:
            log.warning("Metrics are disabled: %s", exc)
            return
        except Exception:
            log.exception("Metrics setup failed; metrics are disabled")
            return

        self._meter_provider = meter_provider
        _install_meter_provider(meter_provider)

    # --- Lifecycle ---

    def close(self) -> None:
        """Flush and release the pipelines set up by this client.

        Only the first call does any work. Raises CloseError when a pipeline
        failed to flush or shut down; the remaining ones are released anyway.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            processors, self._span_processors = self._span_processors, []
            meter_provider, self._meter_provider = self._meter_provider, None

        errors: list[str] = []
        if processors:
            if self._owns_provider:
                errors.extend(_release(self._provider))
            else:
                for sp in processors:
                    errors.extend(_release(sp))
        if meter_provider is not None:
            errors.extend(_release(meter_provider))

        log.debug("Client closed")
        if errors:
            raise CloseError("; ".join(errors))

    def force_flush(self, timeout_millis: int = 30_000) -> bool:
        """Export everything buffered so far. Returns False on timeout."""
        ok = True
        for sp in self.span_processors:
            ok = sp.force_flush(timeout_millis) and ok
        meter_provider = self._meter_provider
        if meter_provider is not None:
            try:
                ok = meter_provider.force_flush(timeout_millis) and ok
            except Exception:
                log.warning("Metrics flush failed", exc_info=True)
                ok = False
        return ok

    # --- Tracers & meters ---

    def tracer(self, name: str, version: str | None = None) -> trace.Tracer:
        """Return a named tracer whose spans are exported by this client."""
        if self._provider is not None:
            return self._provider.get_tracer(name, version)
        return trace.get_tracer(name, version)

    def meter(self, name: str, version: str | None = None) -> metrics.Meter:
        """Return a named meter whose measurements are exported by this client."""
        if self._meter_provider is not None:
            return self._meter_provider.get_meter(name, version)
        return metrics.get_meter(name, version or "")

    def trace_url(self, span: trace.Span | None = None) -> str:
        """Return the Uptrace UI link for the trace of ``span`` (default: current span)."""
        if self._dsn is None:
            return ""
        if span is None:
            span = trace.get_current_span()
        trace_id = span.get_span_context().trace_id
        return f"{self._dsn.site_url}/traces/{trace_id:032x}"

    # --- Out-of-band reporting ---

    def report_error(
        self,
        error: BaseException,
        context: Context | None = None,
        attributes: Attributes = None,
        escaped: bool = False,
    ) -> None:
        """Record ``error`` on the current span, or on a dummy span if none is recording."""
        span = trace.get_current_span(context)
        if span.is_recording():
            span.record_exception(error, attributes=attributes, escaped=escaped)
            return

        span = self._tracer.start_span(DUMMY_SPAN_NAME, context=context)
        try:
            span.record_exception(error, attributes=attributes, escaped=escaped)
        finally:
            span.end()

    def report_panic(self, context: Context | None = None) -> PanicGuard:
        """Return a guard that reports exceptions escaping it, then re-raises them.

        Use it as a context manager or a decorator::

            with client.report_panic():
                handle(request)
        """
        return PanicGuard(self._tracer, context)


class PanicGuard(ContextDecorator):
    """Context manager that annotates an escaping exception and never suppresses it."""

    def __init__(self, tracer: trace.Tracer, context: Context | None = None) -> None:
        self._tracer = tracer
        self._context = context

    def __enter__(self) -> PanicGuard:
        return self

    def __exit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> bool:
        if exc is None or not _is_panic(exc):
            return False
        try:
            record_panic(self._tracer, exc, self._context)
        except Exception:
            log.exception("Failed to report %s", type(exc).__name__)
        return False


def _is_panic(exc: BaseException) -> bool:
    if isinstance(exc, GeneratorExit):
        return False
    # sys.exit() and sys.exit(0) are clean exits.
    if isinstance(exc, SystemExit) and exc.code in (0, None):
        return False
    return True


def record_panic(tracer: trace.Tracer, exc: BaseException, context: Context | None = None) -> None:
    """Add a ``log`` event with panic severity for ``exc``.

    The current recording span is annotated and left open; otherwise a dummy
    span is started from ``tracer`` and ended right away.
    """
    span = trace.get_current_span(context)
    is_recording = span.is_recording()
    if not is_recording:
        span = tracer.start_span(DUMMY_SPAN_NAME, context=context)

    try:
        span.add_event(
            "log",
            {
                "log.severity": "panic",
                "log.message": str(exc) or repr(exc),
                "exception.type": type(exc).__qualname__,
            },
        )
    finally:
        if not is_recording:
            span.end()


def _install_tracer_provider(provider: TracerProvider) -> bool:
    with _install_lock:
        current = trace.get_tracer_provider()
        if current is provider:
            return True
        if not isinstance(current, trace.ProxyTracerProvider):
            log.warning(
                "A process-wide tracer provider is already installed; "
                "spans of this client are only exported through Client.tracer() and its reporter"
            )
            return False
        trace.set_tracer_provider(provider)
        return True


def _install_meter_provider(meter_provider: MeterProvider) -> bool:
    with _install_lock:
        current = metrics.get_meter_provider()
        if current is meter_provider:
            return True
        if isinstance(current, MeterProvider):
            log.warning(
                "A process-wide meter provider is already installed; "
                "measurements of this client are only exported through Client.meter()"
            )
            return False
        metrics.set_meter_provider(meter_provider)
        return True


def _release(component: Any) -> list[str]:
    name = type(component).__name__
    try:
        flushed = component.force_flush()
        component.shutdown()
    except Exception as exc:
        return [f"{name}: {exc}"]
    if flushed is False:
        return [f"{name}: flush timed out"]
    return []


def _discard(provider: TracerProvider | None, processors: list[SpanProcessor]) -> None:
    components: list[Any] = list(processors)
    if provider is not None:
        components.append(provider)
    for component in components:
        try:
            component.shutdown()
        except Exception:
            log.warning("Failed to shut down %s after a setup failure", type(component).__name__, exc_info=True)
