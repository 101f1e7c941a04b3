"""Error taxonomy shared by the API handlers, services and upstream clients."""

from typing import Any


class LeadCaptureError(Exception):
    """Base error carrying the HTTP status and the message safe to show clients."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None, *, details: Any | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class MalformedPayload(LeadCaptureError):
    status_code = 400
    default_message = "Invalid JSON in request body"


class InvalidPayload(LeadCaptureError):
    """Request body parsed but failed field checks."""

    status_code = 400
    default_message = "Invalid form data - Missing required fields or invalid format"

    def __init__(self, message: str | None = None, *, fields: list[Any] | None = None) -> None:
        self.fields = list(fields or [])
        super().__init__(message, details=[field.model_dump() for field in self.fields] or None)


class TooManyRequests(LeadCaptureError):
    status_code = 429
    default_message = "Too many requests"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class ConfigError(LeadCaptureError):
    """A required credential is missing; retrying will not help."""

    status_code = 500
    default_message = "Server configuration error"


class UpstreamError(LeadCaptureError):
    """A third-party service answered with a non-success status."""

    status_code = 500
    default_message = "Upstream service error"

    def __init__(self, message: str | None = None, *, upstream_status: int | None = None, body: str | None = None) -> None:
        self.upstream_status = upstream_status
        self.body = body
        super().__init__(message, details={"status": upstream_status, "body": body})


class ProviderUnavailable(LeadCaptureError):
    """Network or transport failure talking to a third party."""

    status_code = 500
    default_message = "Failed to validate phone number due to a network or server error."


class VerificationError(LeadCaptureError):
    """Input errors reported by the phone verification provider."""

    status_code = 400
    default_message = "Phone number validation failed."


class InvalidFormat(VerificationError):
    default_message = "Invalid phone number format provided."


class InvalidCountryCode(VerificationError):
    default_message = "Invalid country code for the phone number."
