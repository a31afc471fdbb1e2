from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, List

from app.models.approval import RequestApprovalAction

STEP_PENDING = "pending"
STEP_APPROVED = "approved"
STEP_REJECTED = "rejected"
STEP_SKIPPED = "skipped"


def step_status(actions: List[RequestApprovalAction]) -> str:
    if not actions:
        return STEP_SKIPPED
    statuses = [a.status for a in actions]
    if RequestApprovalAction.STATUS_REJECTED in statuses:
        return STEP_REJECTED
    if all(s == RequestApprovalAction.STATUS_APPROVED for s in statuses):
        return STEP_APPROVED
    return STEP_PENDING

def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None

def build_approval_state(steps: List[Dict[str, Any]], actions: Iterable[RequestApprovalAction]) -> Dict[str, Any]:
    """
    Project action rows onto the submission's steps.
    The result is always recomputed from rows; callers never edit it in place.
    Every step_index that has actions gets an entry, defined or not.
    """
    by_step: Dict[int, List[RequestApprovalAction]] = {}
    for a in actions:
        by_step.setdefault(a.step_index, []).append(a)

    count = max(len(steps), max(by_step, default=-1) + 1)
    out_steps = []
    for index in range(count):
        step = steps[index] if index < len(steps) else {}
        rows = sorted(by_step.get(index, []), key=lambda a: a.id or 0)
        approvers = []
        for a in rows:
            entry = {
                "action_id": a.id,
                **a.approver.to_descriptor(),
                "status": a.status,
                "acted_by": a.acted_by,
                "acted_at": _iso(a.acted_at),
                "notes": a.notes,
            }
            entry.update({k: v for k, v in (a.meta or {}).items() if k != "original"})
            approvers.append(entry)
        out_steps.append({
            "index": index,
            "name": step.get("name") or f"Step {index + 1}",
            "description": step.get("description"),
            "status": step_status(rows),
            "approvers": approvers,
        })
    return {"steps": out_steps}
