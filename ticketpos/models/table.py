from sqlalchemy import Boolean, Column, Integer, String

from ..db import Base
from .enums import EnumCode, TableStatus, TableZone


class DiningTable(Base):
    __tablename__ = "dining_table"
    id = Column(Integer, primary_key=True, index=True)
    number = Column(String(20), unique=True, nullable=False)
    zone = Column(EnumCode(TableZone), nullable=False, default=TableZone.INSIDE)
    status = Column(EnumCode(TableStatus), nullable=False, default=TableStatus.FREE)
    capacity = Column(Integer, nullable=False, default=4)
    active = Column(Boolean, nullable=False, default=True)
