from __future__ import annotations
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.errors import WorkflowValidationError
from app.models.leave import Holiday, LeaveBalance, LeaveType

logger = logging.getLogger(__name__)

LEAVE_REQUEST_TYPE = "Leave Request"


def is_leave_request(request_type) -> bool:
    return request_type is not None and request_type.name == LEAVE_REQUEST_TYPE


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def working_days(db: Session, start: date, end: date) -> int:
    """Weekdays in [start, end] that are not active holidays."""
    if end < start:
        return 0
    holidays = db.query(Holiday).filter(Holiday.is_active.is_(True)).all()
    exact = {h.date for h in holidays}
    recurring = {(h.date.month, h.date.day) for h in holidays if h.is_recurring}
    days, cur = 0, start
    while cur <= end:
        if cur.weekday() < 5 and cur not in exact and (cur.month, cur.day) not in recurring:
            days += 1
        cur += timedelta(days=1)
    return days


def get_balance(db: Session, employee_id: str, leave_type_id: int, year: Optional[int] = None) -> Optional[LeaveBalance]:
    year = year or datetime.utcnow().year
    return (
        db.query(LeaveBalance)
        .filter(LeaveBalance.employee_id == employee_id)
        .filter(LeaveBalance.leave_type_id == leave_type_id)
        .filter(LeaveBalance.year == year)
        .first()
    )


def get_or_create_balance(db: Session, employee_id: str, leave_type_id: int, year: Optional[int] = None) -> LeaveBalance:
    bal = get_balance(db, employee_id, leave_type_id, year)
    if bal is None:
        bal = LeaveBalance(
            employee_id=employee_id,
            leave_type_id=leave_type_id,
            year=year or datetime.utcnow().year,
            entitled=Decimal("0"), accrued=Decimal("0"),
            used=Decimal("0"), pending=Decimal("0"), balance=Decimal("0"),
        )
        db.add(bal)
        db.flush()
    return bal


def set_entitlement(db: Session, employee_id: str, leave_type_id: int, entitled, year: Optional[int] = None) -> LeaveBalance:
    bal = get_or_create_balance(db, employee_id, leave_type_id, year)
    bal.entitled = Decimal(str(entitled))
    bal.recalculate()
    return bal


def list_balances(db: Session, employee_id: str, year: Optional[int] = None):
    year = year or datetime.utcnow().year
    return (
        db.query(LeaveBalance)
        .filter(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
        .order_by(LeaveBalance.leave_type_id)
        .all()
    )


# -------------------------- request checks --------------------------

def assert_sufficient_balance(db: Session, employee_id: Optional[str], answers: Dict[str, Any]) -> None:
    """Submit-time guard for "Leave Request" submissions."""
    if not employee_id:
        raise WorkflowValidationError.single(
            "answers.leave_type",
            "Your account is not linked to an employee record. Please contact HR.",
        )
    code = answers.get("leave_type")
    start = _parse_date(answers.get("start_date"))
    end = _parse_date(answers.get("end_date"))
    if not code or not start or not end:
        return

    leave_type = db.query(LeaveType).filter(LeaveType.code == str(code)).first()
    if leave_type is None:
        raise WorkflowValidationError.single("answers.leave_type", "Selected leave type is invalid.")
    if end < start:
        raise WorkflowValidationError.single("answers.end_date", "End date must be after the start date.")

    days = working_days(db, start, end)
    bal = get_balance(db, employee_id, leave_type.id)
    available = Decimal(bal.balance) if bal is not None else Decimal("0")
    if available < days:
        shown = int(available) if available == int(available) else available
        raise WorkflowValidationError.single(
            "answers.leave_type",
            f"Insufficient leave balance. Only {shown} day(s) available.",
        )


def _leave_details(db: Session, submission):
    employee_id = submission.user.employee_id if submission.user else None
    if not employee_id:
        logger.warning("leave submission %s has no employee link", submission.id)
        return None
    answers = {a.field.field_key: a.value for a in submission.answers if a.field is not None}
    leave_type = db.query(LeaveType).filter(LeaveType.code == str(answers.get("leave_type") or "")).first()
    start, end = _parse_date(answers.get("start_date")), _parse_date(answers.get("end_date"))
    if leave_type is None or not start or not end:
        logger.warning("leave submission %s is missing leave type or dates", submission.id)
        return None
    return employee_id, leave_type.id, Decimal(working_days(db, start, end))


# Lifecycle: pending submission reserves, approval moves pending to used, rejection releases.

def reserve(db: Session, submission) -> None:
    details = _leave_details(db, submission)
    if details is None:
        return
    employee_id, leave_type_id, days = details
    bal = get_or_create_balance(db, employee_id, leave_type_id)
    bal.pending = Decimal(bal.pending or 0) + days
    bal.recalculate()


def deduct(db: Session, submission, was_reserved: bool = True) -> None:
    details = _leave_details(db, submission)
    if details is None:
        return
    employee_id, leave_type_id, days = details
    bal = get_or_create_balance(db, employee_id, leave_type_id)
    if was_reserved:
        bal.pending = max(Decimal("0"), Decimal(bal.pending or 0) - days)
    bal.used = Decimal(bal.used or 0) + days
    bal.recalculate()


def release(db: Session, submission) -> None:
    details = _leave_details(db, submission)
    if details is None:
        return
    employee_id, leave_type_id, days = details
    bal = get_or_create_balance(db, employee_id, leave_type_id)
    bal.pending = max(Decimal("0"), Decimal(bal.pending or 0) - days)
    bal.recalculate()


# -------------------------- admin --------------------------

def create_leave_type(db: Session, code: str, name: str, max_days_per_request: Optional[int] = None) -> LeaveType:
    code = (code or "").strip().upper()
    if not code:
        raise WorkflowValidationError.single("code", "The code field is required.")
    if db.query(LeaveType).filter(LeaveType.code == code).first():
        raise WorkflowValidationError.single("code", "The code has already been taken.")
    lt = LeaveType(code=code, name=name, max_days_per_request=max_days_per_request)
    db.add(lt)
    db.flush()
    return lt


def create_holiday(db: Session, name: str, day: date, is_recurring: bool = False) -> Holiday:
    h = Holiday(name=name, date=day, is_recurring=is_recurring)
    db.add(h)
    db.flush()
    return h
