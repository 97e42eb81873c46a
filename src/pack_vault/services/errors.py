"""Error taxonomy for pack content access and delivery.

Every failure carries a stable, machine-readable ``reason`` and the HTTP
status it maps to. The API layer renders these as ``{"error": reason}``.
"""

from __future__ import annotations


class PackAccessError(RuntimeError):
    """Base exception for failures surfaced to the caller."""

    status_code: int = 500
    default_reason: str = "internal_error"

    def __init__(self, reason: str | None = None, *, status_code: int | None = None) -> None:
        self.reason = reason or self.default_reason
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.reason)


class Unauthenticated(PackAccessError):
    """Missing, malformed or rejected bearer credential."""

    status_code = 401
    default_reason = "invalid_credentials"


class Forbidden(PackAccessError):
    """Valid identity without a purchase or ownership of the resource."""

    status_code = 403
    default_reason = "no_valid_order"


class RateLimited(PackAccessError):
    """Admission denied by the per-minute or per-hour window."""

    status_code = 429
    default_reason = "rate_limit_minute"

    def __init__(self, reason: str | None = None, *, retry_after: int | None = None) -> None:
        super().__init__(reason)
        self.retry_after = retry_after


class InvalidRequest(PackAccessError):
    """A required field is missing or malformed."""

    status_code = 400
    default_reason = "invalid_request"


class UpstreamFailure(PackAccessError):
    """Renderer, ledger or identity provider unreachable or erroring."""

    status_code = 502
    default_reason = "upstream_failure"


class UpstreamTimeout(UpstreamFailure):
    """The renderer did not answer within its timeout."""

    status_code = 504
    default_reason = "renderer_timeout"


class InternalError(PackAccessError):
    """Unexpected fault while handling a request."""

    status_code = 500
    default_reason = "internal_error"
