"""Exception taxonomy for the analysis pipeline.

Every error carries the HTTP status the server should answer with.  The
server's exception handler turns these into ``{"error", "detail"}`` bodies.
"""

from __future__ import annotations

from typing import Optional


class VibeCastError(Exception):
    """Base class for errors that surface at the HTTP boundary."""

    code = "internal_error"
    default_status = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.default_status


class StateMismatch(VibeCastError):
    """OAuth callback state is missing or does not match the stored cookie."""

    code = "state_mismatch"
    default_status = 400


class TokenExchangeFailed(VibeCastError):
    code = "invalid_token"
    default_status = 502


class UpstreamFetchFailed(VibeCastError):
    """A paginated or batched Spotify request failed."""

    code = "upstream_fetch_failed"
    default_status = 500


class MalformedAIResponse(VibeCastError):
    code = "malformed_ai_response"
    default_status = 500


class AggregationFailed(VibeCastError):
    """No usable input, or the aggregation strategy is misconfigured."""

    code = "aggregation_failed"
    default_status = 500


class Unauthorized(VibeCastError):
    """Request arrived without a bearer credential."""

    code = "unauthorized"
    default_status = 401
