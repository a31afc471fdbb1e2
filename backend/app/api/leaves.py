import datetime as dt
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import atomic, get_db
from app.core.errors import NotFoundError
from app.crud import leave as leave_crud
from app.deps.auth import get_current_user, require_permission
from app.models.leave import Holiday, LeaveType
from app.models.org import MANAGE_ORGANIZATION, Employee, User

router = APIRouter(prefix="/api", tags=["leaves"])


class LeaveTypeIn(BaseModel):
    code: str
    name: str
    max_days_per_request: Optional[int] = Field(default=None, ge=1)

class LeaveTypeOut(BaseModel):
    id: int
    code: str
    name: str
    max_days_per_request: Optional[int]
    is_active: bool

    class Config:
        from_attributes = True

class HolidayIn(BaseModel):
    name: str
    date: dt.date
    is_recurring: bool = False

class HolidayOut(BaseModel):
    id: int
    name: str
    date: dt.date
    is_recurring: bool
    is_active: bool

    class Config:
        from_attributes = True

class EntitlementIn(BaseModel):
    employee_id: str
    leave_type_id: int
    entitled: Decimal = Field(ge=0)
    year: Optional[int] = None

class BalanceOut(BaseModel):
    leave_type_id: int
    year: int
    entitled: float
    used: float
    pending: float
    balance: float

    class Config:
        from_attributes = True


@router.get("/leaves/balance", response_model=List[BalanceOut])
def api_leave_balance(year: Optional[int] = None, db: Session = Depends(get_db),
                      user: User = Depends(get_current_user)):
    if not user.employee_id:
        return []
    return [BalanceOut.model_validate(b) for b in leave_crud.list_balances(db, user.employee_id, year)]

@router.post("/leaves/entitlements", response_model=BalanceOut)
def api_set_entitlement(body: EntitlementIn, db: Session = Depends(get_db),
                        user: User = Depends(require_permission(MANAGE_ORGANIZATION))):
    if db.get(Employee, body.employee_id) is None:
        raise NotFoundError(f"Employee {body.employee_id} not found")
    if db.get(LeaveType, body.leave_type_id) is None:
        raise NotFoundError(f"Leave type {body.leave_type_id} not found")
    with atomic(db):
        bal = leave_crud.set_entitlement(db, body.employee_id, body.leave_type_id, body.entitled, body.year)
    db.refresh(bal)
    return BalanceOut.model_validate(bal)

@router.get("/leave-types", response_model=List[LeaveTypeOut])
def api_list_leave_types(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = db.query(LeaveType).filter(LeaveType.is_active.is_(True)).order_by(LeaveType.code).all()
    return [LeaveTypeOut.model_validate(r) for r in rows]

@router.post("/leave-types", response_model=LeaveTypeOut)
def api_create_leave_type(body: LeaveTypeIn, db: Session = Depends(get_db),
                          user: User = Depends(require_permission(MANAGE_ORGANIZATION))):
    with atomic(db):
        lt = leave_crud.create_leave_type(db, body.code, body.name.strip(), body.max_days_per_request)
    db.refresh(lt)
    return LeaveTypeOut.model_validate(lt)

@router.get("/holidays", response_model=List[HolidayOut])
def api_list_holidays(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = db.query(Holiday).filter(Holiday.is_active.is_(True)).order_by(Holiday.date).all()
    return [HolidayOut.model_validate(r) for r in rows]

@router.post("/holidays", response_model=HolidayOut)
def api_create_holiday(body: HolidayIn, db: Session = Depends(get_db),
                       user: User = Depends(require_permission(MANAGE_ORGANIZATION))):
    with atomic(db):
        h = leave_crud.create_holiday(db, body.name.strip(), body.date, body.is_recurring)
    db.refresh(h)
    return HolidayOut.model_validate(h)
