"""Error taxonomy for the adapter.

Every error knows the HTTP status it maps to so the handlers can render it
without a lookup table.
"""
from __future__ import annotations

from typing import Any


class AdapterError(Exception):
    status_code = 500

    def to_body(self) -> dict[str, Any]:
        return {"error": str(self) or "Unknown error"}


# Bad or missing query parameters -----------------------------------------

class ValidationError(AdapterError):
    status_code = 400


class InvalidDate(ValidationError):
    pass


class InvalidRange(ValidationError):
    pass


class InvalidQuantity(ValidationError):
    pass


class MissingResourceIds(ValidationError):
    pass


class ConfigError(AdapterError):
    status_code = 500


# Upstream failures --------------------------------------------------------

class UpstreamTransportError(AdapterError):
    """The upstream call itself failed (status, body or connection)."""

    status_code = 500

    def __init__(self, message: str, resource_id: str | None = None):
        self.resource_id = resource_id
        if resource_id is not None:
            message = f"Resource {resource_id}: {message}"
        super().__init__(message)


class UpstreamHttpError(UpstreamTransportError):
    def __init__(self, upstream_status: int, body: str, resource_id: str | None = None):
        self.upstream_status = upstream_status
        self.body_excerpt = (body or "")[:300]
        super().__init__(f"Planyo HTTP {upstream_status}. Body: {self.body_excerpt}", resource_id)


class UpstreamParseError(UpstreamTransportError):
    def __init__(self, body: str, resource_id: str | None = None):
        self.body_excerpt = (body or "")[:200]
        super().__init__(f"Planyo response not JSON. First 200 chars: {self.body_excerpt}", resource_id)


class UpstreamConnectionError(UpstreamTransportError):
    pass


class UpstreamApplicationError(AdapterError):
    """Planyo answered, but with a non-zero ``response_code``.

    Routine traffic (code 4 is "no results"), so it maps to 200 and is
    embedded in the body rather than surfaced as an HTTP failure.
    """

    status_code = 200

    def __init__(self, response_code: Any, response_message: Any = None, resource_id: str | None = None):
        self.response_code = response_code
        self.response_message = response_message
        self.resource_id = resource_id
        super().__init__(f"Planyo response_code {response_code}: {response_message}")

    def to_body(self) -> dict[str, Any]:
        return {"response_code": self.response_code, "response_message": self.response_message}
