# app/crud/submission.py
from __future__ import annotations
import csv
import io
import logging
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, aliased

from app.core.database import atomic
from app.core.errors import NotFoundError, WorkflowValidationError
from app.crud import leave as leave_crud
from app.crud.approval import ApprovalEngine, user_can_approve, user_can_fulfill
from app.metrics import submissions_created_total
from app.models.approval import ApproverKind, RequestApprovalAction
from app.models.org import MANAGE_REQUESTS, Position, Role, User
from app.models.request_type import RequestField, RequestType
from app.models.submission import RequestAnswer, RequestSubmission
from app.services.audit import record_audit
from app.services.hierarchy import ResolutionScope
from app.utils import storage

logger = logging.getLogger(__name__)

SCOPES = ("mine", "assigned", "all")
_TRUE = {True, 1, "1", "true", "on", "yes"}
_FALSE = {False, 0, "0", "false", "off", "no", ""}


# -------------------------- dynamic field validation --------------------------

def _missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, storage.Upload) and not value.content:
        return True
    return False

def _norm_bool(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value if isinstance(value, (bool, int)) else None

def _parse_date(value: Any) -> Optional[date]:
    """A whole ISO date or datetime string; trailing text is not ignored."""
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None

def _field_error(field: RequestField, value: Any) -> Optional[str]:
    label = field.label or field.field_key
    ftype = field.field_type

    if ftype == "checkbox":
        v = _norm_bool(value)
        if field.is_required:
            return None if v in _TRUE else f"The {label} must be accepted."
        if value is None or (v is not None and (v in _TRUE or v in _FALSE)):
            return None
        return f"The {label} field must be true or false."

    if _missing(value):
        return f"The {label} field is required." if field.is_required else None

    if ftype == "file":
        if not isinstance(value, storage.Upload):
            return f"The {label} must be a file."
        if value.size > storage.MAX_ANSWER_FILE_BYTES:
            return f"The {label} may not be greater than 10240 kilobytes."
        return None
    if isinstance(value, storage.Upload):
        return f"The {label} must be a string."
    if ftype == "number":
        if isinstance(value, bool):
            return f"The {label} must be a number."
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return f"The {label} must be a number."
        return None if number.is_finite() else f"The {label} must be a number."
    if ftype == "date":
        return None if _parse_date(value) else f"The {label} is not a valid date."
    if not isinstance(value, str):
        return f"The {label} must be a string."
    if ftype in ("dropdown", "radio"):
        choices = field.choice_values()
        if choices and value not in choices:
            return f"The selected {label} is invalid."
    return None

def validate_answers(request_type: RequestType, answers: Dict[str, Any]) -> Dict[str, Any]:
    """Check every field at once; raise with all field errors keyed as answers.<field_key>."""
    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}
    for field in request_type.fields:
        value = answers.get(field.field_key)
        msg = _field_error(field, value)
        if msg:
            errors[f"answers.{field.field_key}"] = msg
        else:
            cleaned[field.field_key] = value
    if errors:
        raise WorkflowValidationError(errors, "The given data was invalid.")
    return cleaned

def _store_answers(db: Session, submission: RequestSubmission, request_type: RequestType,
                   answers: Dict[str, Any], written: List[str]) -> None:
    for field in request_type.fields:
        value = answers.get(field.field_key)
        stored, stored_json = None, None
        if field.field_type == "file":
            if isinstance(value, storage.Upload) and value.content:
                stored = storage.store_bytes(
                    value.content,
                    f"requests/submissions/{submission.id}/{field.field_key}",
                    value.filename,
                    storage.MAX_ANSWER_FILE_BYTES,
                )
                written.append(stored)
                stored_json = {"original_name": value.filename, "mime_type": value.content_type}
        elif field.field_type == "checkbox":
            stored = "1" if _norm_bool(value) in _TRUE else "0"
        elif field.field_type in ("dropdown", "radio"):
            stored = value
            stored_json = next(
                (o for o in (field.options or []) if isinstance(o, dict) and o.get("value") == value),
                None,
            )
        else:
            stored = None if value is None else str(value)
        db.add(RequestAnswer(submission=submission, field=field, value=stored, value_json=stored_json))


# -------------------------- creation --------------------------

def new_reference_code(db: Session) -> str:
    while True:
        code = RequestSubmission.generate_reference_code()
        if not db.query(RequestSubmission.id).filter(RequestSubmission.reference_code == code).first():
            return code

def open_submission(
    db: Session,
    request_type: RequestType,
    user: User,
    answers: Dict[str, Any],
    engine: ApprovalEngine,
    written: List[str],
    scope: Optional[ResolutionScope] = None,
    department_filter: bool = True,
) -> RequestSubmission:
    """
    Create the submission, its answers and its approval actions.
    Runs inside the caller's transaction; stored file paths are appended to
    `written` so the caller can remove them if the transaction fails.
    """
    sub = RequestSubmission(
        reference_code=new_reference_code(db),
        request_type_id=request_type.id,
        user_id=user.id,
        status=RequestSubmission.STATUS_PENDING,
        approval_state={"steps": []},
        submitted_at=datetime.utcnow(),
    )
    sub.request_type = request_type
    sub.user = user
    db.add(sub)
    db.flush()
    _store_answers(db, sub, request_type, answers, written)
    db.flush()
    db.refresh(sub, attribute_names=["answers"])
    engine.initialize(sub, scope=scope, department_filter=department_filter)
    return sub

def submit_request(
    db: Session,
    request_type_id: int,
    user: User,
    answers: Dict[str, Any],
    engine: Optional[ApprovalEngine] = None,
) -> RequestSubmission:
    request_type = db.get(RequestType, request_type_id)
    if request_type is None or not request_type.is_published:
        raise NotFoundError("Request type is not available.")

    cleaned = validate_answers(request_type, answers or {})
    is_leave = leave_crud.is_leave_request(request_type)
    if is_leave:
        leave_crud.assert_sufficient_balance(db, user.employee_id, cleaned)

    engine = engine or ApprovalEngine(db)
    written: List[str] = []
    try:
        with atomic(db):
            sub = open_submission(db, request_type, user, cleaned, engine, written)
            if is_leave:
                if sub.status == RequestSubmission.STATUS_PENDING:
                    leave_crud.reserve(db, sub)
                else:
                    leave_crud.deduct(db, sub, was_reserved=False)
    except Exception:
        for path in written:
            storage.delete(path)
        raise

    db.refresh(sub)
    submissions_created_total.labels(request_type=request_type.name).inc()
    record_audit(db, "REQUEST_SUBMITTED", sub.id, user.id, {
        "reference_code": sub.reference_code,
        "request_type_id": request_type.id,
        "status": sub.status,
        "current_step_index": sub.current_step_index,
    })
    logger.info("submission %s created by user %s; status=%s", sub.reference_code, user.id, sub.status)
    return sub


# -------------------------- listing --------------------------

def _reference_condition(action, user: User):
    """SQL predicate: the action is addressed to this user (id, role or position)."""
    conds = [
        and_(action.approver_type == ApproverKind.USER.value, action.approver_ref == user.id),
    ]
    role_ids = list(user.role_ids)
    if role_ids:
        conds.append(and_(action.approver_type == ApproverKind.ROLE.value, action.approver_ref.in_(role_ids)))
    if user.employee is not None and user.employee.position_id:
        conds.append(and_(action.approver_type == ApproverKind.POSITION.value,
                          action.approver_ref == user.employee.position_id))
    return or_(*conds)

def effective_scope(scope: Optional[str], user: User) -> str:
    scope = scope if scope in SCOPES else "mine"
    if scope == "all" and not user.can(MANAGE_REQUESTS):
        return "mine"
    return scope

def build_submissions_query(
    db: Session,
    user: User,
    scope: Optional[str] = "mine",
    status: Optional[str] = None,
    request_type_id: Optional[int] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
):
    scope = effective_scope(scope, user)
    q = db.query(RequestSubmission)
    if status:
        q = q.filter(RequestSubmission.status == status)
    if request_type_id:
        q = q.filter(RequestSubmission.request_type_id == request_type_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            RequestSubmission.reference_code.ilike(like),
            RequestSubmission.request_type.has(RequestType.name.ilike(like)),
            RequestSubmission.user.has(User.name.ilike(like)),
        ))
    if date_from:
        q = q.filter(RequestSubmission.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(RequestSubmission.created_at <= datetime.combine(date_to, time.max))

    if scope == "mine":
        q = q.filter(RequestSubmission.user_id == user.id)
    elif scope == "assigned":
        pending = aliased(RequestApprovalAction)
        final = aliased(RequestApprovalAction)
        last = aliased(RequestApprovalAction)
        max_step = (
            db.query(func.max(last.step_index))
            .filter(last.submission_id == final.submission_id)
            .scalar_subquery()
        )
        awaiting_me = db.query(pending.id).filter(
            pending.submission_id == RequestSubmission.id,
            pending.status == RequestApprovalAction.STATUS_PENDING,
            pending.step_index == RequestSubmission.current_step_index,
            _reference_condition(pending, user),
        ).exists()
        fulfil_by_me = db.query(final.id).filter(
            final.submission_id == RequestSubmission.id,
            final.status == RequestApprovalAction.STATUS_APPROVED,
            final.step_index == max_step,
            or_(_reference_condition(final, user), final.acted_by == user.id),
        ).exists()
        q = q.filter(or_(
            awaiting_me,
            and_(RequestSubmission.status == RequestSubmission.STATUS_FULFILLMENT, fulfil_by_me),
        ))
    return q.order_by(RequestSubmission.created_at.desc(), RequestSubmission.id.desc()), scope

def summarize(sub: RequestSubmission) -> Dict[str, Any]:
    emp = sub.user.employee if sub.user else None
    return {
        "id": sub.id,
        "reference_code": sub.reference_code,
        "status": sub.status,
        "current_step_index": sub.current_step_index,
        "submitted_at": sub.submitted_at,
        "fulfilled_at": sub.fulfilled_at,
        "request_type": {"id": sub.request_type.id, "name": sub.request_type.name,
                         "has_fulfillment": sub.request_type.has_fulfillment} if sub.request_type else None,
        "requester": {
            "id": sub.user.id if sub.user else None,
            "name": sub.user.name if sub.user else None,
            "employee_id": emp.id if emp else None,
        },
    }

def list_submissions(db: Session, user: User, page: int = 1, per_page: int = 10, **filters) -> Dict[str, Any]:
    q, scope = build_submissions_query(db, user, **filters)
    per_page = max(1, min(int(per_page or 10), 100))
    page = max(1, int(page or 1))
    total = q.count()
    rows = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "data": [summarize(s) for s in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
        "filters": {"scope": scope, **{k: v for k, v in filters.items() if k != "scope"}},
        "can_manage": user.can(MANAGE_REQUESTS),
    }

def _fmt(dt: Optional[datetime]) -> str:
    return dt.strftime("%Y-%m-%d %H:%M") if dt else ""

def export_csv(db: Session, user: User, **filters) -> str:
    q, _ = build_submissions_query(db, user, **filters)
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(["Reference Code", "Request Type", "Status", "Submitted At", "Requester", "Employee ID", "Fulfilled At"])
    for s in q.order_by(None).order_by(RequestSubmission.id.asc()).yield_per(200):
        w.writerow([
            s.reference_code,
            s.request_type.name if s.request_type else "N/A",
            (s.status or "").capitalize(),
            _fmt(s.submitted_at or s.created_at),
            s.user.name if s.user else "Unknown",
            (s.user.employee_id if s.user else None) or "-",
            _fmt(s.fulfilled_at),
        ])
    return buf.getvalue()


# -------------------------- detail --------------------------

def requester_payload(sub: RequestSubmission) -> Dict[str, Any]:
    user = sub.user
    emp = user.employee if user else None
    full_name = (emp.full_name if emp else "") or (user.name if user else "Unknown")
    return {"id": user.id if user else None, "full_name": full_name,
            "employee_id": emp.id if emp else (user.employee_id if user else None)}

def _action_payload(db: Session, a: RequestApprovalAction) -> Dict[str, Any]:
    ref = a.approver
    approver_user = db.get(User, ref.id) if ref.kind == ApproverKind.USER else None
    role_id = ref.id if ref.kind == ApproverKind.ROLE else (a.meta or {}).get("original_role_id")
    role = db.get(Role, role_id) if role_id else None
    position = db.get(Position, ref.id) if ref.kind == ApproverKind.POSITION else None
    actor = a.actor
    pos = approver_user.employee.position if approver_user and approver_user.employee else None
    return {
        "id": a.id,
        "step_index": a.step_index,
        "status": a.status or RequestApprovalAction.STATUS_PENDING,
        "notes": a.notes,
        "acted_at": a.acted_at.isoformat() if a.acted_at else None,
        **ref.to_descriptor(),
        "approver": {
            "id": approver_user.id, "name": approver_user.name, "email": approver_user.email,
            "position": {"id": pos.id, "name": pos.name} if pos else None,
        } if approver_user else None,
        "approver_role": {"id": role.id, "name": role.name, "label": role.label or role.name} if role else None,
        "approver_position": {"id": position.id, "name": position.name} if position else None,
        "acted_by": {"id": actor.id, "name": actor.name} if actor else None,
        "meta": a.meta or {},
    }

def submission_detail(db: Session, sub: RequestSubmission, user: User) -> Dict[str, Any]:
    answers = {a.field_id: a for a in sub.answers}
    fields = []
    for f in sub.request_type.fields:
        ans = answers.get(f.id)
        value = ans.value if ans else None
        download_url = None
        if f.field_type == "file" and value:
            download_url = f"/api/requests/{sub.id}/answers/{f.id}/download"
        if f.field_type == "checkbox":
            value = value == "1"
        fields.append({
            "id": f.id,
            "field_key": f.field_key,
            "label": f.label,
            "field_type": f.field_type,
            "description": f.description,
            "value": value,
            "value_json": ans.value_json if ans else None,
            "download_url": download_url,
        })
    actions = sorted(sub.approval_actions, key=lambda a: (a.step_index, a.id))
    fulfillment = sub.fulfillment
    return {
        **summarize(sub),
        "requester": requester_payload(sub),
        "fields": fields,
        "approval": {
            "actions": [_action_payload(db, a) for a in actions],
            "state": sub.approval_state or {"steps": []},
        },
        "fulfillment": {
            "original_filename": fulfillment.original_filename,
            "notes": fulfillment.notes,
            "completed_at": fulfillment.completed_at.isoformat() if fulfillment.completed_at else None,
            "fulfilled_by": {"id": fulfillment.fulfiller.id, "name": fulfillment.fulfiller.name,
                             "email": fulfillment.fulfiller.email} if fulfillment.fulfiller else None,
            "download_url": f"/api/requests/{sub.id}/fulfillment/download",
        } if fulfillment else None,
        "can": {
            "approve": user_can_approve(sub, user),
            "reject": user_can_approve(sub, user),
            "fulfill": (sub.requires_fulfillment()
                        and sub.status == RequestSubmission.STATUS_FULFILLMENT
                        and user_can_fulfill(sub, user)),
        },
    }

def answer_file(db: Session, sub: RequestSubmission, field_id: int) -> Tuple[str, Optional[str]]:
    ans = (
        db.query(RequestAnswer)
        .filter(RequestAnswer.submission_id == sub.id, RequestAnswer.field_id == field_id)
        .first()
    )
    if ans is None or not ans.value or ans.field is None or ans.field.field_type != "file":
        raise NotFoundError("File not found")
    name = (ans.value_json or {}).get("original_name")
    return ans.value, name
