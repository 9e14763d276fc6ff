"""Failure taxonomy shared by every service.

Services raise these; ``ticketpos.main`` maps them to JSON responses of the
form ``{"detail": <code>, "message": <text>}``.
"""
from __future__ import annotations


class PosError(Exception):
    """Base for all domain failures."""

    status_code = 400
    code = "pos_error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.code)
        if code:
            self.code = code


class NotFound(PosError):
    """Ticket, line, table or operator absent."""

    status_code = 404
    code = "not_found"


class InvalidState(PosError):
    """Mutating a closed/cancelled ticket, or a line whose ticket is not open."""

    status_code = 409
    code = "invalid_state"


class ValidationError(PosError):
    """Non-positive quantity/price, cash portion above amount due, missing reason."""

    status_code = 422
    code = "validation_error"


class InsufficientAmount(PosError):
    """Tendered cash below the amount due."""

    status_code = 409
    code = "insufficient_amount"


class Conflict(PosError):
    """Closing an already-paid ticket, or a stale concurrent write."""

    status_code = 409
    code = "conflict"


class AuthorizationDenied(PosError):
    """Manager credential check failed."""

    status_code = 403
    code = "authorization_denied"


class ApprovalRequired(PosError):
    """Operator lacks elevated role and no manager credential was supplied."""

    status_code = 403
    code = "needs_approval"


class PersistenceFailure(PosError):
    """Storage failed mid-operation; nothing was committed."""

    status_code = 500
    code = "persistence_failure"
