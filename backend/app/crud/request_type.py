# app/crud/request_type.py
from __future__ import annotations
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.database import atomic
from app.core.errors import NotFoundError, WorkflowValidationError
from app.models.approval import ApproverKind, ApproverRef
from app.models.org import Position, Role, User
from app.models.request_type import FIELD_TYPES, RequestField, RequestType
from app.services.audit import record_audit

logger = logging.getLogger(__name__)

_MISSING_ID_MESSAGE = {
    ApproverKind.USER: ("approver_id", "Select a user."),
    ApproverKind.ROLE: ("approver_role_id", "Select a role."),
    ApproverKind.POSITION: ("approver_position_id", "Select a position."),
}
_MODEL_FOR = {ApproverKind.USER: User, ApproverKind.ROLE: Role, ApproverKind.POSITION: Position}


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9_]+", "_", (text or "").lower()).strip("_") or "field"

def _unique_key(base: str, reserved: set) -> str:
    base = slugify(base)
    candidate, n = base, 1
    while candidate in reserved:
        candidate = f"{base}_{n}"
        n += 1
    reserved.add(candidate)
    return candidate


def normalize_steps(db: Session, steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate and normalize builder steps. A legacy step carrying approver_type
    at step level becomes a one-approver list; each step and approver gets an id.
    """
    errors: Dict[str, str] = {}
    out = []
    for index, step in enumerate(steps or []):
        if not (step.get("name") or "").strip():
            errors[f"approval_steps.{index}.name"] = "The step name field is required."
        approvers = list(step.get("approvers") or [])
        if not approvers and step.get("approver_type"):
            approvers = [{k: step.get(k) for k in
                          ("approver_type", "approver_id", "approver_role_id", "approver_position_id")}]
        if not approvers:
            errors[f"approval_steps.{index}.approvers"] = "Add at least one approver."
            continue

        normalized = []
        for a_index, a in enumerate(approvers):
            prefix = f"approval_steps.{index}.approvers.{a_index}"
            try:
                kind = ApproverKind(str(a.get("approver_type") or "").lower())
            except ValueError:
                errors[f"{prefix}.approver_type"] = "The selected approver type is invalid."
                continue
            ref = ApproverRef.from_descriptor(a)
            if ref is None:
                key, msg = _MISSING_ID_MESSAGE[kind]
                errors[f"{prefix}.{key}"] = msg
                continue
            if db.get(_MODEL_FOR[kind], ref.id) is None:
                key, _ = _MISSING_ID_MESSAGE[kind]
                errors[f"{prefix}.{key}"] = f"The selected {key} is invalid."
                continue
            normalized.append({"id": a.get("id") or uuid.uuid4().hex, **ref.to_descriptor()})

        out.append({
            "id": step.get("id") or uuid.uuid4().hex,
            "name": (step.get("name") or "").strip(),
            "description": step.get("description"),
            "approvers": normalized,
            "sort_order": index,
        })
    if errors:
        raise WorkflowValidationError(errors, "The given data was invalid.")
    return out


def _validate_fields(fields: List[Dict[str, Any]]) -> None:
    errors: Dict[str, str] = {}
    if not fields:
        errors["fields"] = "Add at least one field."
    for index, f in enumerate(fields or []):
        if not (f.get("label") or "").strip():
            errors[f"fields.{index}.label"] = "The label field is required."
        if f.get("field_type") not in FIELD_TYPES:
            errors[f"fields.{index}.field_type"] = "The selected field type is invalid."
        elif f["field_type"] in ("dropdown", "radio") and not f.get("options"):
            errors[f"fields.{index}.options"] = "Options are required for selection-based fields."
        for o_index, o in enumerate(f.get("options") or []):
            if not isinstance(o, dict) or not o.get("label") or not o.get("value"):
                errors[f"fields.{index}.options.{o_index}"] = "Each option needs a label and a value."
    if errors:
        raise WorkflowValidationError(errors, "The given data was invalid.")


def _sync_fields(db: Session, rt: RequestType, fields: List[Dict[str, Any]]) -> None:
    existing = {f.id: f for f in rt.fields}
    reserved = {f.field_key for f in existing.values()}
    keep = []
    for index, data in enumerate(fields):
        current = existing.get(data.get("id")) if data.get("id") else None
        provided = (data.get("field_key") or "").strip()
        if current is not None and provided in ("", current.field_key):
            key = current.field_key
        elif provided:
            key = _unique_key(provided, reserved)
        else:
            key = _unique_key(data.get("label") or "field", reserved)
        values = dict(
            field_key=key,
            label=data["label"].strip(),
            field_type=data["field_type"],
            is_required=bool(data.get("is_required", False)),
            description=data.get("description"),
            options=data.get("options"),
            sort_order=data.get("sort_order") if data.get("sort_order") is not None else index,
        )
        if current is not None:
            for k, v in values.items():
                setattr(current, k, v)
            keep.append(current)
        else:
            f = RequestField(**values)
            rt.fields.append(f)
            keep.append(f)
    for f in list(rt.fields):
        if f not in keep:
            rt.fields.remove(f)


def create_request_type(db: Session, data: Dict[str, Any], created_by: Optional[int]) -> RequestType:
    if not (data.get("name") or "").strip():
        raise WorkflowValidationError.single("name", "The name field is required.")
    _validate_fields(data.get("fields") or [])
    steps = normalize_steps(db, data.get("approval_steps") or [])
    publish = bool(data.get("is_published", False))

    with atomic(db):
        rt = RequestType(
            name=data["name"].strip(),
            description=data.get("description"),
            has_fulfillment=bool(data.get("has_fulfillment", False)),
            approval_steps=steps,
            is_published=publish,
            published_at=datetime.utcnow() if publish else None,
            created_by=created_by,
        )
        db.add(rt)
        db.flush()
        _sync_fields(db, rt, data.get("fields") or [])

    db.refresh(rt)
    record_audit(db, "REQUEST_TYPE_CREATED", None, created_by,
                 {"request_type_id": rt.id, "name": rt.name, "steps": len(steps)})
    logger.info("request type %s (%s) created by user %s", rt.id, rt.name, created_by)
    return rt


def update_request_type(db: Session, rt: RequestType, data: Dict[str, Any]) -> RequestType:
    if not (data.get("name") or "").strip():
        raise WorkflowValidationError.single("name", "The name field is required.")
    _validate_fields(data.get("fields") or [])
    steps = normalize_steps(db, data.get("approval_steps") or [])
    with atomic(db):
        rt.name = data["name"].strip()
        rt.description = data.get("description")
        rt.has_fulfillment = bool(data.get("has_fulfillment", False))
        rt.approval_steps = steps
        if "is_published" in data and data["is_published"] is not None:
            _set_published(rt, bool(data["is_published"]))
        _sync_fields(db, rt, data.get("fields") or [])
    db.refresh(rt)
    return rt


def _set_published(rt: RequestType, publish: bool) -> None:
    if publish and not rt.is_published:
        rt.published_at = datetime.utcnow()
    elif not publish:
        rt.published_at = None
    rt.is_published = publish


def set_published(db: Session, rt: RequestType, publish: bool, actor: Optional[int]) -> RequestType:
    with atomic(db):
        _set_published(rt, publish)
    db.refresh(rt)
    if publish:
        record_audit(db, "REQUEST_TYPE_PUBLISHED", None, actor, {"request_type_id": rt.id, "name": rt.name})
    return rt


def get_request_type(db: Session, request_type_id: int) -> RequestType:
    rt = db.get(RequestType, request_type_id)
    if rt is None:
        raise NotFoundError(f"Request type {request_type_id} not found")
    return rt


def list_request_types(db: Session, published_only: bool = False, search: Optional[str] = None) -> List[RequestType]:
    q = db.query(RequestType)
    if published_only:
        q = q.filter(RequestType.is_published.is_(True))
    if search:
        q = q.filter(RequestType.name.ilike(f"%{search.strip()}%"))
    return q.order_by(RequestType.name.asc()).all()

