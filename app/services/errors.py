"""
Error taxonomy for the handshake and sync pipeline.
Each error carries the HTTP status and a short code; main.py turns them into JSON responses.
"""
from typing import Optional


class SyncPipelineError(Exception):
    """Base class. `message` is safe to show to the caller."""

    status_code = 500
    code = "sync_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(SyncPipelineError):
    status_code = 401
    code = "unauthorized"


class InvalidState(SyncPipelineError):
    status_code = 400
    code = "invalid_state"


class IntegrationNotFound(SyncPipelineError):
    status_code = 404
    code = "integration_not_found"


class IntegrationInactive(SyncPipelineError):
    status_code = 409
    code = "integration_inactive"


class IncompleteCredentials(SyncPipelineError):
    status_code = 400
    code = "incomplete_credentials"


class HandshakeNotSupported(SyncPipelineError):
    status_code = 400
    code = "handshake_not_supported"


class TokenExchangeFailed(SyncPipelineError):
    status_code = 400
    code = "token_exchange_failed"


class UpstreamError(SyncPipelineError):
    """Non-2xx (or vendor error body) from a platform API. Aborts the remaining pages."""

    status_code = 502
    code = "upstream_error"

    def __init__(self, message: str, upstream_status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body[:500] if body else ""


class RateLimited(UpstreamError):
    status_code = 429
    code = "rate_limited"


class PaginationLimitExceeded(UpstreamError):
    code = "pagination_limit_exceeded"


class WebhookNotSupported(SyncPipelineError):
    status_code = 404
    code = "webhook_not_supported"
