"""Process-wide default client.

configure_opentelemetry() creates a Client and keeps it as the default for
code that has no Client reference of its own. There is a single owner: a
second configure_opentelemetry() closes the previous default before
replacing it. shutdown() closes and forgets it.

OpenTelemetry installs a global tracer provider only once per process, so
after a replacement the first provider stays global and is shut down with
its client. Use tracer() from this module, or the client returned by
configure_opentelemetry(), to reach the current default. Plain
trace.get_tracer() call sites keep using the first provider.
"""
from __future__ import annotations

import logging
import threading

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.util.types import Attributes

from .client import Client, CloseError, PanicGuard
from .config import new_config
from .options import Option

log = logging.getLogger("uptrace_client.telemetry")

_lock = threading.Lock()
_client: Client | None = None


def configure_opentelemetry(*opts: Option) -> Client:
    """Configure OpenTelemetry to export to Uptrace and return the default client.

    Any previous default client is closed first.
    """
    global _client

    client = Client(new_config(*opts))
    with _lock:
        previous, _client = _client, client

    if previous is not None:
        log.warning("Replacing the default Uptrace client; closing the previous one")
        try:
            previous.close()
        except CloseError:
            log.warning("Previous client did not close cleanly", exc_info=True)
    return client


def get_client() -> Client | None:
    """Return the default client, or None if OpenTelemetry is not configured."""
    return _client


def is_configured() -> bool:
    return _client is not None


def shutdown() -> None:
    """Close and forget the default client. Safe to call when none is configured."""
    global _client

    with _lock:
        client, _client = _client, None
    if client is not None:
        client.close()


def force_flush(timeout_millis: int = 30_000) -> bool:
    client = _client
    if client is None:
        return True
    return client.force_flush(timeout_millis)


def tracer(name: str, version: str | None = None) -> trace.Tracer:
    """Return a tracer whose spans are exported by the default client."""
    client = _client
    if client is None:
        return trace.get_tracer(name, version)
    return client.tracer(name, version)


def trace_url(span: trace.Span | None = None) -> str:
    client = _client
    if client is None:
        return ""
    return client.trace_url(span)


def report_error(
    error: BaseException,
    context: Context | None = None,
    attributes: Attributes = None,
    escaped: bool = False,
) -> None:
    """Report ``error`` through the default client; no-op without one."""
    client = _client
    if client is None:
        return
    client.report_error(error, context=context, attributes=attributes, escaped=escaped)


def report_panic(context: Context | None = None) -> PanicGuard:
    """Guard that reports escaping exceptions through the default client.

    Without a default client the guard only lets exceptions through.
    """
    client = _client
    if client is None:
        return PanicGuard(trace.NoOpTracer(), context)
    return client.report_panic(context)
