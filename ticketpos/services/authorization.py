"""Authorization gate for discounts and comps.

Manager and admin operators act directly. Staff operators get
``NEEDS_APPROVAL``; the action is then held in a ``PendingApproval`` that runs
once after a manager credential is accepted, or is thrown away on the first
failed check. A rejected action is never queued or retried: the caller starts
over.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session

from ticketpos.core.errors import ApprovalRequired, AuthorizationDenied, InvalidState
from ticketpos.models.enums import AuthAction

from .operators import OperatorContext, verify_manager_credential

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Decision(str, Enum):
    ALLOWED = "allowed"
    NEEDS_APPROVAL = "needs_approval"


def authorize(operator: OperatorContext, action: AuthAction) -> Decision:
    if operator.elevated:
        return Decision.ALLOWED
    logger.info("Operator %s needs approval for %s", operator.id, action.value)
    return Decision.NEEDS_APPROVAL


class PendingApproval:
    """A gated action waiting for a manager credential. Single use."""

    def __init__(self, operator: OperatorContext, action: AuthAction, perform: Callable[[Session, int], T]):
        self.operator = operator
        self.action = action
        self._perform = perform
        self._spent = False

    @property
    def spent(self) -> bool:
        return self._spent

    def approve(self, db: Session, secret: str):
        if self._spent:
            raise InvalidState("approval request already used", code="approval_spent")
        # spent either way: success runs once, failure discards
        self._spent = True
        manager = verify_manager_credential(db, secret)
        if manager is None:
            logger.warning(
                "Approval denied: %s requested by operator %s", self.action.value, self.operator.id
            )
            raise AuthorizationDenied("manager credential rejected")
        logger.info(
            "Approval granted: %s requested by %s, approved by %s",
            self.action.value, self.operator.id, manager.id,
        )
        return self._perform(db, manager.id)

    def discard(self) -> None:
        self._spent = True


def request(db: Session, operator: OperatorContext, action: AuthAction,
            perform: Callable[[Session, int], T]):
    """Run ``perform(db, approver_id)`` now, or hand back a ``PendingApproval``.

    A pending action gets the session of whoever approves it, never the one
    it was requested on.
    """
    if authorize(operator, action) is Decision.ALLOWED:
        return perform(db, operator.id)
    return PendingApproval(operator, action, perform)


def guarded(
    db: Session,
    operator: OperatorContext,
    action: AuthAction,
    perform: Callable[[Session, int], T],
    secret: Optional[str] = None,
) -> T:
    """One-shot form: elevated operators run directly, others must bring a secret."""
    outcome = request(db, operator, action, perform)
    if not isinstance(outcome, PendingApproval):
        return outcome
    if not secret:
        outcome.discard()
        raise ApprovalRequired(f"{action.value} needs manager approval")
    return outcome.approve(db, secret)
