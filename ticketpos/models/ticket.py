from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..db import Base
from .enums import EnumCode, LineStatus, PaymentMethod, TicketKind, TicketStatus

ACTIVE_TICKET_STATUSES = (TicketStatus.OPEN, TicketStatus.BILL_REQUESTED)
NON_BILLABLE_LINE_STATUSES = (LineStatus.CANCELLED, LineStatus.COMPED)


class Ticket(Base):
    __tablename__ = "ticket"
    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(Integer, ForeignKey("dining_table.id"), nullable=True, index=True)
    operator_id = Column(Integer, nullable=False)
    kind = Column(EnumCode(TicketKind), nullable=False)
    status = Column(EnumCode(TicketStatus), nullable=False, default=TicketStatus.OPEN, index=True)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(String(255))
    payment_method = Column(EnumCode(PaymentMethod), nullable=False, default=PaymentMethod.NONE)
    cash_amount = Column(Numeric(12, 2), nullable=False, default=0)
    card_amount = Column(Numeric(12, 2), nullable=False, default=0)
    note = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    closed_at = Column(DateTime)
    cancel_reason = Column(String(255))
    cancelled_by = Column(Integer)
    # optimistic lock, bumped on every UPDATE of the row
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    lines = relationship("TicketLine", back_populates="ticket", order_by="TicketLine.id")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TICKET_STATUSES


class TicketLine(Base):
    __tablename__ = "ticket_line"
    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("ticket.id"), nullable=False)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    half_portion = Column(Boolean, nullable=False, default=False)
    note = Column(Text)
    status = Column(EnumCode(LineStatus), nullable=False, default=LineStatus.PENDING)
    comp_reason = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("ix_line_ticket_status", "ticket_id", "status"),)

    ticket = relationship("Ticket", back_populates="lines")

    @property
    def is_billable(self) -> bool:
        return self.status not in NON_BILLABLE_LINE_STATUSES

    @property
    def line_total(self):
        if self.status == LineStatus.COMPED:
            return 0
        return self.quantity * self.unit_price
