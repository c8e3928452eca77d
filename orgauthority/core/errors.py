"""Error taxonomy shared by the directory, ledger and registry services.

Every business-rule failure is an :class:`AuthorityError` subclass carrying a
machine-readable ``code`` (also the message catalog key) and the HTTP status
the API layer answers with. Services raise them; the exception handler in
``orgauthority.main`` renders them as ``{"code": ..., "detail": ...}``.
"""

from __future__ import annotations

from typing import Any


class AuthorityError(Exception):
    code: str = "error"
    status_code: int = 500

    def __init__(self, reason: str | None = None, **params: Any) -> None:
        self.reason = reason
        self.params = params
        super().__init__(reason or self.code)

    def as_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "params": dict(self.params)}
        if self.reason:
            detail["reason"] = self.reason
        return detail


class ValidationError(AuthorityError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AuthorityError):
    code = "not_found"
    status_code = 404


class ForbiddenError(AuthorityError):
    code = "forbidden"
    status_code = 403


class ConflictError(AuthorityError):
    code = "conflict"
    status_code = 409


class InvalidStateError(AuthorityError):
    code = "invalid_state"
    status_code = 409


class ExpiredError(AuthorityError):
    code = "expired"
    status_code = 410


class EmailMismatchError(AuthorityError):
    code = "email_mismatch"
    status_code = 403


class LastOwnerViolation(AuthorityError):
    code = "last_owner_violation"
    status_code = 409


class UnavailableError(AuthorityError):
    code = "unavailable"
    status_code = 503


__all__ = [
    "AuthorityError",
    "ConflictError",
    "EmailMismatchError",
    "ExpiredError",
    "ForbiddenError",
    "InvalidStateError",
    "LastOwnerViolation",
    "NotFoundError",
    "UnavailableError",
    "ValidationError",
]
