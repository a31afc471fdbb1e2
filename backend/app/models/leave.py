from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Numeric, Boolean, UniqueConstraint
from datetime import datetime
from decimal import Decimal
from app.core.database import Base

class LeaveType(Base):
    __tablename__ = "leave_types"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True)   # e.g. VL, SL
    name = Column(String(128), nullable=False)
    max_days_per_request = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (UniqueConstraint("employee_id", "leave_type_id", "year", name="uq_leave_balance_year"),)
    id = Column(Integer, primary_key=True)
    employee_id = Column(String(32), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False)
    year = Column(Integer, nullable=False)
    entitled = Column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    accrued = Column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    used = Column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    pending = Column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    balance = Column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def recalculate(self) -> None:
        self.balance = Decimal(self.entitled or 0) - Decimal(self.used or 0) - Decimal(self.pending or 0)

class Holiday(Base):
    __tablename__ = "holidays"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    date = Column(Date, nullable=False, index=True)
    is_recurring = Column(Boolean, default=False, nullable=False)   # same day/month every year
    is_active = Column(Boolean, default=True, nullable=False)
