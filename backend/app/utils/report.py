from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.crud.submission import build_submissions_query, summarize
from app.models.org import MANAGE_REQUESTS, User
from app.models.request_type import RequestType
from app.models.submission import RequestSubmission
from app.models.training import Training, TrainingApplication

def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _serialize_application(a: TrainingApplication) -> Dict[str, Any]:
    t = a.training
    return {
        "id": a.id,
        "training_id": a.training_id,
        "training_title": t.title if t else None,
        "date_from": _iso(t.date_from) if t else None,
        "status": a.status,
        "re_apply_count": a.re_apply_count,
        "request_submission_id": a.request_submission_id,
    }


def dashboard_summary(db: Session, user: User, limit: int = 5) -> Dict[str, Any]:
    """Counts for the user's visible requests plus what is waiting on them."""
    visible, scope = build_submissions_query(db, user, scope="all" if user.can(MANAGE_REQUESTS) else "mine")
    ids = visible.order_by(None).with_entities(RequestSubmission.id).subquery()

    by_status = {s: 0 for s in RequestSubmission.STATUSES}
    for status, count in (
        db.query(RequestSubmission.status, func.count(RequestSubmission.id))
        .filter(RequestSubmission.id.in_(db.query(ids.c.id)))
        .group_by(RequestSubmission.status)
    ):
        by_status[status] = count

    by_type: List[Dict[str, Any]] = [
        {"request_type_id": rt_id, "name": name, "count": count}
        for rt_id, name, count in (
            db.query(RequestType.id, RequestType.name, func.count(RequestSubmission.id))
            .join(RequestSubmission, RequestSubmission.request_type_id == RequestType.id)
            .filter(RequestSubmission.id.in_(db.query(ids.c.id)))
            .group_by(RequestType.id, RequestType.name)
            .order_by(func.count(RequestSubmission.id).desc(), RequestType.name)
        )
    ]

    assigned, _ = build_submissions_query(db, user, scope="assigned")
    pending_for_me = assigned.filter(RequestSubmission.status == RequestSubmission.STATUS_PENDING)
    awaiting_fulfillment = assigned.filter(RequestSubmission.status == RequestSubmission.STATUS_FULFILLMENT)

    applications: List[TrainingApplication] = []
    if user.employee is not None:
        applications = (
            db.query(TrainingApplication)
            .join(Training, TrainingApplication.training_id == Training.id)
            .filter(TrainingApplication.employee_id == user.employee.id)
            .filter(TrainingApplication.status.in_(TrainingApplication.ACTIVE_STATUSES))
            .order_by(Training.date_from.asc(), TrainingApplication.id.asc())
            .all()
        )

    return {
        "generated_at": _iso(datetime.utcnow()),
        "scope": scope,
        "requests": {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_type": by_type,
        },
        "my_pending_approvals": {
            "count": pending_for_me.count(),
            "latest": [summarize(s) for s in pending_for_me.limit(limit).all()],
        },
        "awaiting_my_fulfillment": awaiting_fulfillment.count(),
        "open_training_applications": [_serialize_application(a) for a in applications],
    }
