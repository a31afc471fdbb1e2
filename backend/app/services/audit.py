from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.utils.audit_sink import write_event

def record_audit(
    db: Session,
    action: str,
    submission_id: Optional[int],
    actor: Optional[int],
    details: Dict[str, Any],
) -> AuditLog:
    """
    Persist audit to DB and mirror to filesystem as JSONL.
    Call after the business transaction has committed; this commits its own row.
    """
    row = AuditLog(action=action, submission_id=submission_id, actor=actor, details=details)
    db.add(row)
    db.commit()
    db.refresh(row)

    write_event({
        "id": row.id,
        "action": row.action,
        "submission_id": row.submission_id,
        "actor": row.actor,
        "details": row.details or {},
        "created_at": row.created_at.isoformat() if row.created_at else datetime.utcnow().isoformat(),
    })
    return row

def list_audit(db: Session, submission_id: int):
    return (
        db.query(AuditLog)
        .filter(AuditLog.submission_id == submission_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .all()
    )
