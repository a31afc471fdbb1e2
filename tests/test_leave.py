from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.core.errors import WorkflowValidationError
from app.crud import leave as leave_crud
from app.crud.approval import ApprovalEngine
from app.crud.submission import submit_request
from app.models.submission import RequestSubmission

from helpers import make_type, user_step

LEAVE_FIELDS = [
    {"label": "Leave Type", "field_type": "dropdown", "is_required": True,
     "options": [{"label": "Vacation", "value": "VL"}, {"label": "Sick", "value": "SL"}]},
    {"label": "Start Date", "field_type": "date", "is_required": True},
    {"label": "End Date", "field_type": "date", "is_required": True},
]


def _monday():
    # first Monday of March this year; balances are kept per calendar year
    d = date(datetime.utcnow().year, 3, 1)
    return d + timedelta(days=(7 - d.weekday()) % 7)


def _week(start=None):
    start = start or _monday()
    return {"leave_type": "VL", "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=4)).isoformat()}


@pytest.fixture
def vacation(db, org):
    lt = leave_crud.create_leave_type(db, "vl", "Vacation Leave")
    leave_crud.set_entitlement(db, org.users.alice.employee_id, lt.id, 10)
    db.commit()
    return lt


def _leave_type(db, steps):
    return make_type(db, steps, name=leave_crud.LEAVE_REQUEST_TYPE, fields=LEAVE_FIELDS)


def _balance(db, org, lt):
    db.expire_all()
    return leave_crud.get_balance(db, org.users.alice.employee_id, lt.id)


def test_working_days_skip_weekends_and_holidays(db):
    monday = _monday()
    assert leave_crud.working_days(db, monday, monday + timedelta(days=6)) == 5
    leave_crud.create_holiday(db, "Founders Day", monday + timedelta(days=2))
    leave_crud.create_holiday(db, "Anniversary", date(2001, monday.month, monday.day + 3), is_recurring=True)
    db.commit()
    assert leave_crud.working_days(db, monday, monday + timedelta(days=6)) == 3
    assert leave_crud.working_days(db, monday, monday - timedelta(days=1)) == 0


def test_leave_type_codes_are_unique(db):
    assert leave_crud.create_leave_type(db, " sl ", "Sick Leave").code == "SL"
    with pytest.raises(WorkflowValidationError) as exc:
        leave_crud.create_leave_type(db, "SL", "Sick Leave again")
    assert exc.value.errors == {"code": "The code has already been taken."}


def test_pending_request_reserves_days(db, org, vacation):
    rt = _leave_type(db, [user_step("Chair", org.users.carla)])
    submit_request(db, rt.id, org.users.alice, _week())
    bal = _balance(db, org, vacation)
    assert bal.pending == Decimal("5")
    assert bal.used == Decimal("0")
    assert bal.balance == Decimal("5")


def test_approval_moves_reserved_days_to_used(db, org, vacation):
    rt = _leave_type(db, [user_step("Chair", org.users.carla)])
    sub = submit_request(db, rt.id, org.users.alice, _week())
    ApprovalEngine(db).approve(sub, org.users.carla)
    bal = _balance(db, org, vacation)
    assert bal.pending == Decimal("0")
    assert bal.used == Decimal("5")
    assert bal.balance == Decimal("5")


def test_rejection_releases_reserved_days(db, org, vacation):
    rt = _leave_type(db, [user_step("Chair", org.users.carla)])
    sub = submit_request(db, rt.id, org.users.alice, _week())
    ApprovalEngine(db).reject(sub, org.users.carla, "coverage")
    bal = _balance(db, org, vacation)
    assert bal.pending == Decimal("0")
    assert bal.used == Decimal("0")
    assert bal.balance == Decimal("10")


def test_request_without_steps_is_deducted_at_once(db, org, vacation):
    rt = _leave_type(db, [])
    sub = submit_request(db, rt.id, org.users.alice, _week())
    assert sub.status == RequestSubmission.STATUS_APPROVED
    bal = _balance(db, org, vacation)
    assert bal.used == Decimal("5")
    assert bal.pending == Decimal("0")


def test_insufficient_balance_is_refused(db, org, vacation):
    rt = _leave_type(db, [user_step("Chair", org.users.carla)])
    submit_request(db, rt.id, org.users.alice, _week())
    two_weeks = _week(_monday() + timedelta(days=7))
    two_weeks["end_date"] = (_monday() + timedelta(days=18)).isoformat()
    with pytest.raises(WorkflowValidationError) as exc:
        submit_request(db, rt.id, org.users.alice, two_weeks)
    assert exc.value.errors == {"answers.leave_type": "Insufficient leave balance. Only 5 day(s) available."}
    assert db.query(RequestSubmission).count() == 1


def test_no_balance_row_means_nothing_available(db, org, vacation):
    rt = _leave_type(db, [user_step("Chair", org.users.carla)])
    with pytest.raises(WorkflowValidationError) as exc:
        submit_request(db, rt.id, org.users.ben, _week())
    assert "Only 0 day(s) available" in exc.value.errors["answers.leave_type"]


def test_end_before_start_is_refused(db, org, vacation):
    rt = _leave_type(db, [user_step("Chair", org.users.carla)])
    answers = _week()
    answers["end_date"], answers["start_date"] = answers["start_date"], answers["end_date"]
    with pytest.raises(WorkflowValidationError) as exc:
        submit_request(db, rt.id, org.users.alice, answers)
    assert "answers.end_date" in exc.value.errors


def test_account_without_employee_cannot_request_leave(db, org, vacation):
    rt = _leave_type(db, [user_step("Chair", org.users.carla)])
    with pytest.raises(WorkflowValidationError) as exc:
        submit_request(db, rt.id, org.users.admin, _week())
    assert "not linked to an employee" in exc.value.errors["answers.leave_type"]
