# app/crud/training.py
from __future__ import annotations
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.database import atomic
from app.core.errors import NotAuthorizedError, NotFoundError, WorkflowValidationError
from app.crud.approval import ApprovalEngine
from app.crud.submission import open_submission
from app.metrics import training_applications_total
from app.models.org import Department, Employee, Faculty, Position, User
from app.models.request_type import RequestField, RequestType
from app.models.submission import RequestSubmission
from app.models.training import Training, TrainingApplication
from app.services.audit import record_audit
from app.services.hierarchy import ResolutionScope
from app.utils import storage
from app.utils.policy import max_reapply_attempts

logger = logging.getLogger(__name__)

# field_key -> label/type for auto-generated training approval request types
TRAINING_FIELDS = [
    ("training_title", "Training Title", "text"),
    ("training_id", "Training ID", "text"),
    ("employee_id", "Employee ID", "text"),
    ("employee_name", "Employee Name", "text"),
    ("date_from", "Training Start Date", "date"),
    ("date_to", "Training End Date", "date"),
    ("hours", "Hours", "number"),
    ("venue", "Venue", "text"),
    ("facilitator", "Facilitator", "text"),
]


# -------------------------- setup --------------------------

def generate_reference_number(db: Session, training: Training) -> str:
    day = training.date_from or datetime.utcnow().date()
    base = f"TRG-{training.id:06d}-{day:%Y%m%d}"
    candidate, n = base, 1
    while (db.query(Training.id)
           .filter(Training.reference_number == candidate, Training.id != training.id)
           .first()):
        candidate = f"{base}-{n}"
        n += 1
    return candidate

def create_request_type_for_training(db: Session, training: Training, user: Optional[User]) -> RequestType:
    """Unpublished type with the training answer fields; approvers are configured later."""
    rt = RequestType(
        name=f"Training Approval - {training.title} (#{training.id})",
        description=f'Auto-generated request type for training "{training.title}". '
                    "Configure approvers in the Request Builder.",
        has_fulfillment=False,
        approval_steps=[],
        is_published=False,
        created_by=user.id if user else None,
    )
    for index, (key, label, ftype) in enumerate(TRAINING_FIELDS):
        rt.fields.append(RequestField(field_key=key, label=label, field_type=ftype,
                                      is_required=False, sort_order=index))
    db.add(rt)
    db.flush()
    training.request_type_id = rt.id
    return rt

def _load(db: Session, model, ids: List[int], label: str) -> list:
    rows = db.query(model).filter(model.id.in_(ids)).all() if ids else []
    if len(rows) != len(set(ids)):
        raise WorkflowValidationError.single(label, f"The selected {label} is invalid.")
    return rows

def create_training(db: Session, data: Dict[str, Any], user: Optional[User]) -> Training:
    if not (data.get("title") or "").strip():
        raise WorkflowValidationError.single("title", "The training title field is required.")
    if data.get("date_from") and data.get("date_to") and data["date_to"] < data["date_from"]:
        raise WorkflowValidationError.single("date_to", "The date to must be a date after or equal to date from.")
    if data.get("request_type_id") and db.get(RequestType, data["request_type_id"]) is None:
        raise WorkflowValidationError.single("request_type_id", "The selected request type is invalid.")

    with atomic(db):
        t = Training(
            title=data["title"].strip(),
            date_from=data.get("date_from"),
            date_to=data.get("date_to"),
            hours=data.get("hours"),
            facilitator=data.get("facilitator"),
            venue=data.get("venue"),
            capacity=data.get("capacity"),
            remarks=data.get("remarks"),
            requires_approval=bool(data.get("requires_approval", False)),
            request_type_id=data.get("request_type_id"),
        )
        t.allowed_faculties = _load(db, Faculty, data.get("faculty_ids") or [], "faculty_ids")
        t.allowed_departments = _load(db, Department, data.get("department_ids") or [], "department_ids")
        t.allowed_positions = _load(db, Position, data.get("position_ids") or [], "position_ids")
        db.add(t)
        db.flush()
        t.reference_number = generate_reference_number(db, t)
        if t.requires_approval and not t.request_type_id:
            create_request_type_for_training(db, t, user)

    db.refresh(t)
    logger.info("training %s (%s) created", t.id, t.reference_number)
    return t

def get_training(db: Session, training_id: int) -> Training:
    t = db.get(Training, training_id)
    if t is None:
        raise NotFoundError(f"Training {training_id} not found")
    return t


# -------------------------- eligibility --------------------------

def is_eligible(db: Session, training: Training, employee: Optional[Employee]) -> bool:
    """Faculty, department and position restrictions must all pass."""
    if employee is None:
        return False
    faculty_ids = {f.id for f in training.allowed_faculties}
    department_ids = {d.id for d in training.allowed_departments}
    position_ids = {p.id for p in training.allowed_positions}
    emp_faculty = employee.faculty_id

    faculty_ok = not faculty_ids or (emp_faculty is not None and emp_faculty in faculty_ids)
    position_ok = not position_ids or (employee.position_id is not None and employee.position_id in position_ids)

    if not department_ids:
        department_ok = True
    elif employee.department_id:
        department_ok = employee.department_id in department_ids
    elif emp_faculty:
        # faculty-level post: any allowed department within the same faculty
        department_ok = (
            db.query(Department.id)
            .filter(Department.id.in_(department_ids), Department.faculty_id == emp_faculty)
            .first()
        ) is not None
    else:
        department_ok = False
    return faculty_ok and department_ok and position_ok

def active_application_count(db: Session, training: Training) -> int:
    return (
        db.query(TrainingApplication)
        .filter(TrainingApplication.training_id == training.id)
        .filter(TrainingApplication.status.in_(TrainingApplication.ACTIVE_STATUSES))
        .count()
    )

def available_spots(db: Session, training: Training) -> Optional[int]:
    if training.capacity is None:
        return None
    return max(0, training.capacity - active_application_count(db, training))

def has_capacity(db: Session, training: Training) -> bool:
    spots = available_spots(db, training)
    return spots is None or spots > 0


# -------------------------- application --------------------------

def employee_for(db: Session, user: User) -> Optional[Employee]:
    """The user's employee record; links it by email when the account is not linked yet."""
    if user.employee is not None:
        return user.employee
    if not user.email:
        return None
    emp = db.query(Employee).filter(Employee.email_address == user.email).first()
    if emp is None:
        return None
    if emp.user is not None and emp.user.id != user.id:
        return None
    if emp.user is None:
        with atomic(db):
            user.employee_id = emp.id
        db.refresh(user)
        logger.info("linked user %s to employee %s by email", user.id, emp.id)
    return emp

def training_answers(training: Training, employee: Employee) -> Dict[str, Any]:
    return {
        "training_title": training.title,
        "training_id": str(training.id),
        "employee_id": employee.id,
        "employee_name": f"{employee.first_name} {employee.surname}".strip(),
        "date_from": training.date_from.isoformat() if training.date_from else None,
        "date_to": training.date_to.isoformat() if training.date_to else None,
        "hours": str(training.hours) if training.hours is not None else None,
        "venue": training.venue,
        "facilitator": training.facilitator,
    }

def _upsert_application(db: Session, existing: Optional[TrainingApplication], employee: Employee,
                        training: Training, status: str, submission_id: Optional[int]) -> TrainingApplication:
    app = existing
    if app is None:
        app = TrainingApplication(employee_id=employee.id, training_id=training.id, re_apply_count=0)
        db.add(app)
    app.status = status
    if submission_id is not None:
        app.request_submission_id = submission_id
    return app

def apply_for_training(db: Session, training_id: int, user: User,
                       engine: Optional[ApprovalEngine] = None) -> TrainingApplication:
    employee = employee_for(db, user)
    if employee is None:
        raise WorkflowValidationError.single("employee", "Employee profile not found. Please contact HR.")

    training = get_training(db, training_id)
    if not is_eligible(db, training, employee):
        raise NotAuthorizedError("You are not eligible to join this training.")
    if not has_capacity(db, training):
        raise WorkflowValidationError.single("training_id", "This training is full. No available spots remaining.")

    existing = (
        db.query(TrainingApplication)
        .filter(TrainingApplication.employee_id == employee.id, TrainingApplication.training_id == training.id)
        .first()
    )
    if existing is not None and existing.status in TrainingApplication.ACTIVE_STATUSES:
        raise WorkflowValidationError.single("training_id", "You have already applied for this training.")

    if not training.requires_approval:
        with atomic(db):
            app = _upsert_application(db, existing, employee, training, TrainingApplication.STATUS_SIGNED_UP, None)
        db.refresh(app)
        training_applications_total.labels(outcome="signed_up").inc()
        record_audit(db, "TRAINING_APPLIED", None, user.id,
                     {"training_id": training.id, "employee_id": employee.id, "status": app.status})
        return app

    if not training.request_type_id:
        raise WorkflowValidationError.single(
            "training_id",
            "This training requires approval but no request workflow was configured. "
            "Please contact HR to fix the training setup.",
        )
    limit = max_reapply_attempts()
    if existing is not None and (existing.re_apply_count or 0) >= limit:
        raise WorkflowValidationError.single(
            "training_id",
            f"You have reached the maximum number of re-application attempts ({limit}). "
            "Please contact HR for assistance.",
        )
    request_type = training.request_type
    if request_type is None or not request_type.is_published:
        raise WorkflowValidationError.single(
            "training_id", "Training approval workflow is not available. Please contact HR.")

    engine = engine or ApprovalEngine(db)
    scope = ResolutionScope(
        faculty_ids=frozenset(f.id for f in training.allowed_faculties),
        department_ids=frozenset(d.id for d in training.allowed_departments),
    )
    written: List[str] = []
    try:
        with atomic(db):
            sub = open_submission(db, request_type, user, training_answers(training, employee), engine, written,
                                  scope=scope, department_filter=False)
            status = (TrainingApplication.STATUS_SIGNED_UP if sub.status == RequestSubmission.STATUS_PENDING
                      else TrainingApplication.STATUS_APPROVED)
            app = _upsert_application(db, existing, employee, training, status, sub.id)
    except Exception:
        for path in written:
            storage.delete(path)
        raise

    db.refresh(app)
    training_applications_total.labels(outcome="pending_approval" if app.status == TrainingApplication.STATUS_SIGNED_UP
                                       else "approved").inc()
    record_audit(db, "TRAINING_APPLIED", sub.id, user.id, {
        "training_id": training.id,
        "employee_id": employee.id,
        "status": app.status,
        "reference_code": sub.reference_code,
    })
    logger.info("employee %s applied for training %s via %s", employee.id, training.id, sub.reference_code)
    return app

def list_trainings(db: Session, user: Optional[User] = None, eligible_only: bool = False) -> List[Dict[str, Any]]:
    employee = user.employee if user is not None else None
    applied = set()
    if employee is not None:
        applied = {
            row[0] for row in db.query(TrainingApplication.training_id)
            .filter(TrainingApplication.employee_id == employee.id)
            .filter(TrainingApplication.status.in_(TrainingApplication.ACTIVE_STATUSES))
        }
    out = []
    for t in db.query(Training).order_by(Training.date_from.asc(), Training.id.asc()).all():
        eligible = is_eligible(db, t, employee)
        if eligible_only and (not eligible or t.id in applied):
            continue
        out.append({
            "id": t.id,
            "reference_number": t.reference_number,
            "title": t.title,
            "date_from": t.date_from,
            "date_to": t.date_to,
            "hours": float(t.hours) if t.hours is not None else None,
            "facilitator": t.facilitator,
            "venue": t.venue,
            "capacity": t.capacity,
            "available_spots": available_spots(db, t),
            "requires_approval": t.requires_approval,
            "request_type_id": t.request_type_id,
            "allowed_faculty_ids": [f.id for f in t.allowed_faculties],
            "allowed_department_ids": [d.id for d in t.allowed_departments],
            "allowed_position_ids": [p.id for p in t.allowed_positions],
            "is_eligible": eligible,
            "already_applied": t.id in applied,
        })
    return out


def list_applications(db: Session, user: User, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """The user's own applications, newest first, with the date-derived display status."""
    employee = employee_for(db, user)
    if employee is None:
        return []
    today = today or datetime.utcnow().date()
    rows = (
        db.query(TrainingApplication)
        .filter(TrainingApplication.employee_id == employee.id)
        .order_by(TrainingApplication.updated_at.desc(), TrainingApplication.id.desc())
        .all()
    )
    return [
        {
            "id": a.id,
            "training_id": a.training_id,
            "training_title": a.training.title if a.training else None,
            "date_from": a.training.date_from if a.training else None,
            "date_to": a.training.date_to if a.training else None,
            "status": a.status,
            "display_status": a.display_status(today),
            "re_apply_count": a.re_apply_count,
            "request_submission_id": a.request_submission_id,
        }
        for a in rows
    ]
