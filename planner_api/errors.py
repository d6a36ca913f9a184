"""Error taxonomy for the entitlement and payment subsystem.

Every user-facing failure is a PlannerError subclass. The global exception
handler in main.py turns them into the stable response shape:

    {"success": false, "message": ..., "errorCode": ..., "requestId": ...}

  ValidationError      → 400  malformed / missing caller input
  NotFoundError        → 404  unknown report or payment id
  AuthenticationError  → 401  missing / unparseable credential
  AuthorizationError   → 403  credential invalid, expired or out of scope
  WebhookSignatureError → 401 webhook HMAC missing or wrong
  InvalidCodeError     → 401  beta / coupon code rejected
  RateLimitedError     → 429  report generation quota exhausted
  ConfigurationError   → 500  missing secrets (never echoed back)
  UpstreamError        → 502  payment provider failure (504 on timeout)
"""

from typing import Optional


class PlannerError(Exception):
    """Base exception carrying an HTTP status and a public message.

    `message` is safe to return to callers. The exception's own str() may
    carry internal detail and is only exposed in development mode.
    """

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    default_message: str = "An internal error occurred"

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None):
        self.detail = detail or self.default_message
        self.message = message or self.default_message
        super().__init__(self.detail)


class ValidationError(PlannerError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Invalid request"

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None):
        # Validation detail is about the caller's own input, so it is public.
        super().__init__(detail, message=message or detail)


class NotFoundError(PlannerError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Resource not found"

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None):
        super().__init__(detail, message=message or detail)


class AuthenticationError(PlannerError):
    status_code = 401
    error_code = "AUTHENTICATION_REQUIRED"
    default_message = "Access denied. No token provided."


class AuthorizationError(PlannerError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Invalid token."


class WebhookSignatureError(PlannerError):
    status_code = 401
    error_code = "WEBHOOK_SIGNATURE_INVALID"
    default_message = "Webhook signature verification failed"


class InvalidCodeError(PlannerError):
    """Beta code or coupon code rejected."""

    status_code = 401
    error_code = "INVALID_CODE"

    def __init__(self, detail: Optional[str] = None, *, message: Optional[str] = None):
        super().__init__(detail, message=message or detail)


class RateLimitedError(PlannerError):
    status_code = 429
    error_code = "TOO_MANY_REQUESTS"
    default_message = (
        "You have reached your daily limit of free reports. "
        "Please try again tomorrow or purchase a premium report."
    )

    def __init__(
        self,
        retry_after: int,
        detail: Optional[str] = None,
        *,
        headers: Optional[dict[str, str]] = None,
    ):
        self.retry_after = retry_after
        self.headers = headers or {}
        super().__init__(detail)


class ConfigurationError(PlannerError):
    status_code = 500
    error_code = "CONFIGURATION_ERROR"
    default_message = "Server configuration error"


class UpstreamError(PlannerError):
    status_code = 502
    error_code = "UPSTREAM_ERROR"
    default_message = "Payment provider request failed"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        provider: Optional[str] = None,
        timeout: bool = False,
    ):
        self.provider = provider
        self.timeout = timeout
        if timeout:
            self.status_code = 504
            self.error_code = "UPSTREAM_TIMEOUT"
        super().__init__(detail)
