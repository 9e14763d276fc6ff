from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from ticketpos.models.enums import LineStatus, TableZone, TicketKind


class TableIn(BaseModel):
    number: str = Field(min_length=1, max_length=20)
    zone: TableZone = TableZone.INSIDE
    capacity: int = Field(default=4, gt=0)


class ReserveIn(BaseModel):
    reserved: bool = True


class TicketIn(BaseModel):
    kind: TicketKind = TicketKind.DINE_IN
    table_id: Optional[int] = None
    note: Optional[str] = None


class LineIn(BaseModel):
    product_id: int
    quantity: int = Field(default=1, gt=0)
    unit_price: Decimal = Field(gt=0)
    half_portion: bool = False
    note: Optional[str] = None


class LazyLineIn(LineIn):
    ticket_id: Optional[int] = None
    kind: TicketKind = TicketKind.COUNTER_PICKUP


class QuantityIn(BaseModel):
    # zero or less cancels the line
    quantity: int


class PriceIn(BaseModel):
    unit_price: Decimal = Field(gt=0)


class NoteIn(BaseModel):
    note: Optional[str] = None


class LineStatusIn(BaseModel):
    status: LineStatus


class CancelIn(BaseModel):
    reason: str = Field(min_length=1)


class CashIn(BaseModel):
    tendered: Decimal = Field(ge=0)


class SplitIn(BaseModel):
    cash_portion: Decimal = Field(ge=0)


class DiscountIn(BaseModel):
    reason: str = Field(min_length=1)
    percent: Optional[Decimal] = Field(default=None, gt=0, le=100)
    fixed_amount: Optional[Decimal] = Field(default=None, gt=0)
    manager_secret: Optional[str] = None


class CompIn(BaseModel):
    reason: str = Field(min_length=1)
    manager_secret: Optional[str] = None


class RowKeyIn(BaseModel):
    line_id: int
    unit_index: int = Field(ge=0)


class RowsIn(BaseModel):
    rows: List[RowKeyIn] = Field(default_factory=list)


class ApproveIn(BaseModel):
    manager_secret: str = Field(min_length=1)
