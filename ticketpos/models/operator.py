from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from ..db import Base
from .enums import EnumCode, OperatorRole


class Operator(Base):
    __tablename__ = "operator"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(80), nullable=False)
    role = Column(EnumCode(OperatorRole), nullable=False, default=OperatorRole.STAFF)
    credential_hash = Column(String(255), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login_at = Column(DateTime)


class AuthLog(Base):
    __tablename__ = "auth_log"
    id = Column(Integer, primary_key=True)
    at = Column(DateTime, default=datetime.utcnow)
    operator_id = Column(Integer, ForeignKey("operator.id"))
    action = Column(String(40), nullable=False)  # manager_credential | login
    detail = Column(String(255))
