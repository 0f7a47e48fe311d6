"""Uptrace DSN parsing."""
from __future__ import annotations

from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

_HOSTED = ("uptrace.dev", "api.uptrace.dev")


class InvalidDSNError(ValueError):
    """Raised when a DSN cannot be used to connect to Uptrace."""


class DSN(BaseModel):
    """Parsed ``scheme://token@host[:port]/[project_id]`` connection string."""

    model_config = ConfigDict(frozen=True)

    original: str
    scheme: str
    host: str
    token: str
    project_id: str = ""

    @classmethod
    def parse(cls, dsn: str) -> DSN:
        if not dsn:
            raise InvalidDSNError("DSN is empty or missing (set UPTRACE_DSN or use with_dsn)")

        try:
            u = urlsplit(dsn)
            hostname = u.hostname
            port = u.port
        except ValueError as exc:
            raise InvalidDSNError(f"can't parse DSN={dsn!r}: {exc}") from exc

        if u.scheme not in ("http", "https"):
            raise InvalidDSNError(f"DSN={dsn!r} has unsupported scheme {u.scheme!r}")
        if not hostname:
            raise InvalidDSNError(f"DSN={dsn!r} does not have a host")
        if not u.username:
            raise InvalidDSNError(f"DSN={dsn!r} does not have a token")

        host = f"{hostname}:{port}" if port else hostname
        return cls(
            original=dsn,
            scheme=u.scheme,
            host=host,
            token=u.username,
            project_id=u.path.strip("/"),
        )

    @property
    def is_hosted(self) -> bool:
        return self.host in _HOSTED

    @property
    def otlp_endpoint(self) -> str:
        """Base URL of the OTLP/HTTP receiver, without the signal path."""
        if self.is_hosted:
            return "https://otlp.uptrace.dev"
        return f"{self.scheme}://{self.host}"

    @property
    def site_url(self) -> str:
        """Base URL of the Uptrace UI."""
        if self.is_hosted:
            return "https://app.uptrace.dev"
        return f"{self.scheme}://{self.host}"
