"""Error taxonomy shared by the gateway, the ledger and the client job manager.

Every error carries a stable ``kind`` string and the HTTP status the API
answers with. ``message`` is never rewritten on the way up: provider text is
forwarded as-is and only :func:`aitools.messages.translate` turns it into
user-facing copy.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(GatewayError):
    kind = "invalid_input"
    status_code = 400


class AuthorizationError(GatewayError):
    kind = "unauthorized"
    status_code = 401


class ForbiddenError(AuthorizationError):
    kind = "forbidden"
    status_code = 403


class JobNotFound(GatewayError):
    kind = "not_found"
    status_code = 404


class ActiveJobExists(GatewayError):
    kind = "active_job_exists"
    status_code = 409

    def __init__(self, message: str, job_id: Optional[str] = None, tool: Optional[str] = None):
        super().__init__(message, {"active_job_id": job_id, "active_tool": tool})
        self.job_id = job_id
        self.tool = tool


class InsufficientCredits(GatewayError):
    kind = "insufficient_credits"
    status_code = 402

    def __init__(self, message: str, balance: Optional[int] = None):
        super().__init__(message, {"balance": balance} if balance is not None else None)
        self.balance = balance


class RateLimited(GatewayError):
    kind = "rate_limited"
    status_code = 429

    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class UpstreamUnavailable(GatewayError):
    kind = "upstream_unavailable"
    status_code = 502


class ExternalTaskFailed(GatewayError):
    kind = "external_task_failed"
    status_code = 502


class ReconciliationMismatch(GatewayError):
    kind = "reconciliation_mismatch"
    status_code = 409


class LedgerError(GatewayError):
    """The ledger could not be reached or rejected the call for a non-balance reason."""

    kind = "credit_error"
    status_code = 500


class ConfigurationError(GatewayError):
    """Missing or invalid deployment configuration. Fatal at startup."""

    kind = "configuration_error"
    status_code = 500


_SIMPLE_ERRORS = (
    ValidationError,
    AuthorizationError,
    ForbiddenError,
    JobNotFound,
    UpstreamUnavailable,
    ExternalTaskFailed,
    ReconciliationMismatch,
    LedgerError,
    ConfigurationError,
)


def error_from_dict(body: Dict[str, Any]) -> GatewayError:
    """Rebuild the typed error from an API error body (``{kind, message}``)."""
    kind = body.get("kind")
    message = body.get("message") or "Request failed"
    details = body.get("details") or {}
    if kind == ActiveJobExists.kind:
        return ActiveJobExists(message, details.get("active_job_id"), details.get("active_tool"))
    if kind == InsufficientCredits.kind:
        return InsufficientCredits(message, details.get("balance"))
    if kind == RateLimited.kind:
        return RateLimited(message, int(details.get("retry_after") or 60))
    for cls in _SIMPLE_ERRORS:
        if cls.kind == kind:
            return cls(message, details)
    return GatewayError(message, details)
