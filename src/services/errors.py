"""
Error types raised by the conversion core.

Each kind carries a stable `code` and an HTTP status so the API can tell
"fix this field" apart from "you don't have permission" and
"someone already acted on this".
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for errors surfaced to workflow and report callers."""

    code = "conversion_error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(ConversionError):
    """Bad input: missing rejection reason, out-of-range rate or revenue, malformed deductions."""

    code = "validation_error"
    status_code = 422


class UnsupportedCurrencyError(ValidationError):
    """Currency code unknown to both the live rate table and the static one."""

    code = "unsupported_currency"


class AuthorizationError(ConversionError):
    """Actor lacks the capability the transition requires."""

    code = "authorization_error"
    status_code = 403


class InvalidTransitionError(AuthorizationError):
    """The record's current status does not allow the requested transition."""

    code = "invalid_transition"


class StateConflictError(ConversionError):
    """Expected-status precondition failed at commit time; re-read and retry."""

    code = "state_conflict"
    status_code = 409


class RecordNotFoundError(ConversionError):
    code = "not_found"
    status_code = 404


class ExternalUnavailableError(Exception):
    """
    Exchange rate provider failed or timed out.

    Only raised by the rate source client. The currency normalizer always
    catches it and answers from the fallback table instead.
    """
