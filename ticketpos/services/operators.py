"""Session/Auth collaborator: who is acting, and manager credential checks.

Hashing is delegated to passlib; this module only provisions operators and
answers the two questions the core asks: ``current_operator`` and
``verify_manager_credential``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ticketpos.core.config import settings
from ticketpos.core.errors import NotFound, ValidationError
from ticketpos.models.enums import OperatorRole
from ticketpos.models.operator import AuthLog, Operator

logger = logging.getLogger(__name__)

pwd = CryptContext(schemes=["argon2"], deprecated="auto")

MANAGER_ROLES = (OperatorRole.MANAGER, OperatorRole.ADMIN)


@dataclass(frozen=True)
class OperatorContext:
    """Explicit acting-operator value passed into authorization-sensitive calls."""

    id: int
    role: OperatorRole

    @property
    def elevated(self) -> bool:
        return self.role.value in settings.elevated_roles


def hash_secret(secret: str) -> str:
    return pwd.hash(secret)


def create_operator(db: Session, name: str, role: OperatorRole, secret: str) -> Operator:
    if not name or not name.strip():
        raise ValidationError("operator name required")
    if not secret:
        raise ValidationError("credential required")
    op = Operator(name=name.strip(), role=role, credential_hash=hash_secret(secret), active=True)
    db.add(op)
    db.commit()
    db.refresh(op)
    logger.info("Operator created: %s (%s) id=%s", op.name, op.role.value, op.id)
    return op


def current_operator(db: Session, operator_id: Optional[int]) -> OperatorContext:
    if operator_id is None:
        raise NotFound("operator not identified", code="operator_not_found")
    op = db.get(Operator, operator_id)
    if not op or not op.active:
        raise NotFound(f"operator {operator_id} not found", code="operator_not_found")
    return OperatorContext(id=op.id, role=op.role)


def log_auth_attempt(db: Session, operator_id: Optional[int], action: str, detail: str) -> None:
    db.add(AuthLog(operator_id=operator_id, action=action, detail=detail))
    db.commit()


def verify_manager_credential(db: Session, secret: str) -> Optional[Operator]:
    """Return the active manager/admin whose credential matches, else None."""
    if not secret:
        return None
    managers = (
        db.query(Operator)
        .filter(Operator.active.is_(True), Operator.role.in_(MANAGER_ROLES))
        .order_by(Operator.id)
        .all()
    )
    for op in managers:
        if pwd.verify(secret, op.credential_hash):
            op.last_login_at = datetime.utcnow()
            log_auth_attempt(db, op.id, "manager_credential", f"approved by {op.name}")
            logger.info("Manager credential accepted: %s", op.name)
            return op

    log_auth_attempt(db, None, "manager_credential", "rejected")
    logger.warning("Manager credential rejected")
    return None
