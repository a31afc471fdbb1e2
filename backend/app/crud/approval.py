# app/crud/approval.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.database import atomic
from app.core.errors import NotAuthorizedError, NotFoundError, WorkflowValidationError
from app.crud import leave as leave_crud
from app.metrics import approval_decisions_total, fulfillments_total, submissions_finished_total
from app.models.approval import ApproverKind, ApproverRef, RequestApprovalAction
from app.models.org import MANAGE_REQUESTS, User
from app.models.submission import RequestFulfillment, RequestSubmission
from app.models.training import TrainingApplication
from app.services.audit import record_audit
from app.services.hierarchy import (
    HierarchyResolver, ResolutionScope, ResolvedApprover, dedupe, filter_by_department,
)
from app.services.notify import notify_request_fulfilled
from app.utils import storage
from app.utils.approval_state import build_approval_state

NO_PENDING_STEP = "No pending approval step found for you."

MAX_DECISION_NOTES = 1000
MAX_FULFILLMENT_NOTES = 2000


# -------------------------- authorization predicates --------------------------
# Pure functions of the stored rows; nothing is cached between calls.

def can_act(action: RequestApprovalAction, user: User, submission: Optional[RequestSubmission] = None) -> bool:
    if action.status != RequestApprovalAction.STATUS_PENDING or user is None:
        return False
    ref = action.approver
    if ref.kind == ApproverKind.USER:
        return ref.id == user.id
    if ref.kind == ApproverKind.ROLE:
        return ref.id in user.role_ids
    # position
    employee = user.employee
    if employee is None or employee.position_id != ref.id:
        return False
    submission = submission or action.submission
    requester = submission.user.employee if submission is not None and submission.user else None
    if requester is None:
        return True
    if requester.faculty_id and employee.faculty_id:
        return requester.faculty_id == employee.faculty_id
    return True


def current_action_for(submission: RequestSubmission, user: User) -> Optional[RequestApprovalAction]:
    if submission.current_step_index is None:
        return None
    for action in submission.approval_actions:
        if action.step_index == submission.current_step_index and can_act(action, user, submission):
            return action
    return None


def user_can_approve(submission: RequestSubmission, user: User) -> bool:
    if submission.status != RequestSubmission.STATUS_PENDING or submission.current_step_index is None:
        return False
    return current_action_for(submission, user) is not None


def user_can_fulfill(submission: RequestSubmission, user: User) -> bool:
    if user is None:
        return False
    if user.can(MANAGE_REQUESTS):
        return True
    if not submission.approval_actions:
        return False
    final_step = max(a.step_index for a in submission.approval_actions)
    for a in submission.approval_actions:
        if a.step_index != final_step or a.status != RequestApprovalAction.STATUS_APPROVED:
            continue
        if a.acted_by == user.id:
            return True
        ref = a.approver
        if ref.kind == ApproverKind.USER and ref.id == user.id:
            return True
        if ref.kind == ApproverKind.ROLE and ref.id in user.role_ids:
            return True
    return False


def is_referenced(action: RequestApprovalAction, user: User) -> bool:
    ref = action.approver
    if action.acted_by == user.id:
        return True
    if ref.kind == ApproverKind.USER:
        return ref.id == user.id
    if ref.kind == ApproverKind.ROLE:
        return ref.id in user.role_ids
    return user.employee is not None and user.employee.position_id == ref.id


def can_view(submission: RequestSubmission, user: User) -> bool:
    if submission.user_id == user.id or user.can(MANAGE_REQUESTS):
        return True
    return any(is_referenced(a, user) for a in submission.approval_actions)


def authorize_view(submission: RequestSubmission, user: User) -> None:
    if not can_view(submission, user):
        raise NotAuthorizedError("You are not allowed to view this request.")


# -------------------------- engine --------------------------

class ApprovalEngine:
    """
    Drives a submission through its approval steps.

    Every mutating call runs in one transaction; the approval_state snapshot is
    rebuilt from the action rows inside it. Audit rows and metrics follow commit.
    """

    def __init__(self, db: Session, logger: Optional[logging.Logger] = None,
                 resolver: Optional[HierarchyResolver] = None):
        self.db = db
        self.log = logger or logging.getLogger(__name__)
        self.resolver = resolver or HierarchyResolver(db)

    # ---- initialization (runs inside the caller's transaction)

    def resolve_step(self, step: dict, submission: RequestSubmission,
                     scope: Optional[ResolutionScope] = None,
                     department_filter: bool = True) -> List[ResolvedApprover]:
        descriptors = step.get("approvers") or []
        requester = submission.user.employee if submission.user else None
        if requester is None:
            resolved = [
                ResolvedApprover(ref=ref, original=d)
                for d in descriptors
                for ref in [ApproverRef.from_descriptor(d)] if ref is not None
            ]
            return dedupe(resolved)
        resolved = []
        for d in descriptors:
            resolved.extend(self.resolver.resolve(d, requester, scope))
        if department_filter:
            resolved = filter_by_department(self.db, resolved, requester)
        return dedupe(resolved)

    def initialize(self, submission: RequestSubmission, scope: Optional[ResolutionScope] = None,
                   department_filter: bool = True) -> None:
        steps = submission.request_type.steps()
        # later edits of the request type do not reach submissions already in flight
        submission.approval_steps = steps
        for index, step in enumerate(steps):
            approvers = self.resolve_step(step, submission, scope, department_filter)
            if not approvers and step.get("approvers"):
                self.log.info("submission %s step %s has no approvers after resolution; skipped",
                              submission.reference_code, index)
            for r in approvers:
                action = RequestApprovalAction(
                    step_index=index,
                    status=RequestApprovalAction.STATUS_PENDING,
                    meta=r.to_meta(),
                )
                action.approver = r.ref
                submission.approval_actions.append(action)
        self.db.flush()
        self.advance_or_complete(submission)
        self.rebuild_snapshot(submission)

    # ---- state

    def rebuild_snapshot(self, submission: RequestSubmission) -> None:
        self.db.flush()
        submission.approval_state = build_approval_state(
            submission.step_definitions(), submission.approval_actions
        )

    def advance_or_complete(self, submission: RequestSubmission) -> None:
        pending = [a.step_index for a in submission.approval_actions
                   if a.status == RequestApprovalAction.STATUS_PENDING]
        if pending:
            submission.status = RequestSubmission.STATUS_PENDING
            submission.current_step_index = min(pending)
            return
        submission.current_step_index = None
        submission.status = (
            RequestSubmission.STATUS_FULFILLMENT if submission.requires_fulfillment()
            else RequestSubmission.STATUS_APPROVED
        )

    # ---- decisions

    def approve(self, submission: RequestSubmission, user: User, notes: Optional[str] = None) -> RequestSubmission:
        if not user_can_approve(submission, user):
            raise NotAuthorizedError("You are not allowed to approve this request.")
        notes = _check_notes(notes, MAX_DECISION_NOTES, required=False)

        with atomic(self.db):
            action = current_action_for(submission, user)
            if action is None:
                raise WorkflowValidationError.single("submission", NO_PENDING_STEP)
            step_index = action.step_index
            action.status = RequestApprovalAction.STATUS_APPROVED
            action.notes = notes
            action.acted_at = datetime.utcnow()
            action.acted_by = user.id
            self.rebuild_snapshot(submission)
            self.advance_or_complete(submission)
            finished = submission.status != RequestSubmission.STATUS_PENDING
            if finished:
                self._on_flow_completed(submission)

        self.db.refresh(submission)
        approval_decisions_total.labels(decision="approved").inc()
        record_audit(self.db, "STEP_APPROVED", submission.id, user.id,
                     {"step_index": step_index, "action_id": action.id, "notes": notes or ""})
        if finished:
            submissions_finished_total.labels(status=submission.status).inc()
            record_audit(self.db, "REQUEST_APPROVED", submission.id, user.id, {"status": submission.status})
            self.log.info("submission %s approved by user %s; status=%s",
                          submission.reference_code, user.id, submission.status)
        else:
            self.log.info("submission %s step %s approved by user %s; current step %s",
                          submission.reference_code, step_index, user.id, submission.current_step_index)
        return submission

    def reject(self, submission: RequestSubmission, user: User, notes: Optional[str]) -> RequestSubmission:
        if not user_can_approve(submission, user):
            raise NotAuthorizedError("You are not allowed to reject this request.")
        notes = _check_notes(notes, MAX_DECISION_NOTES, required=True)

        with atomic(self.db):
            action = current_action_for(submission, user)
            if action is None:
                raise WorkflowValidationError.single("submission", NO_PENDING_STEP)
            step_index = action.step_index
            action.status = RequestApprovalAction.STATUS_REJECTED
            action.notes = notes
            action.acted_at = datetime.utcnow()
            action.acted_by = user.id
            submission.status = RequestSubmission.STATUS_REJECTED
            submission.current_step_index = None
            self.rebuild_snapshot(submission)
            self._on_rejected(submission)

        self.db.refresh(submission)
        approval_decisions_total.labels(decision="rejected").inc()
        submissions_finished_total.labels(status=RequestSubmission.STATUS_REJECTED).inc()
        record_audit(self.db, "REQUEST_REJECTED", submission.id, user.id,
                     {"step_index": step_index, "action_id": action.id, "notes": notes})
        self.log.info("submission %s rejected at step %s by user %s", submission.reference_code, step_index, user.id)
        return submission

    def fulfill(self, submission: RequestSubmission, user: User, upload: Optional[storage.Upload],
                notes: Optional[str] = None) -> RequestSubmission:
        if not submission.requires_fulfillment():
            raise NotFoundError("This request does not require fulfillment.")
        if not user_can_fulfill(submission, user):
            raise NotAuthorizedError("You are not allowed to fulfill this request.")
        if submission.status != RequestSubmission.STATUS_FULFILLMENT:
            raise WorkflowValidationError.single("submission", "This request is not awaiting fulfillment.")
        if upload is None or not upload.content:
            raise WorkflowValidationError.single("file", "The file field is required.")
        notes = _check_notes(notes, MAX_FULFILLMENT_NOTES, required=False)
        try:
            path = storage.store_bytes(upload.content, f"requests/fulfillments/{submission.id}", upload.filename,
                                       storage.MAX_FULFILLMENT_FILE_BYTES)
        except storage.FileTooLargeError as e:
            raise WorkflowValidationError.single("file", str(e))

        now = datetime.utcnow()
        try:
            with atomic(self.db):
                f = submission.fulfillment
                if f is None:
                    f = RequestFulfillment(submission_id=submission.id)
                    submission.fulfillment = f
                elif f.file_path and f.file_path != path:
                    storage.delete(f.file_path)
                f.fulfilled_by = user.id
                f.file_path = path
                f.original_filename = upload.filename
                f.notes = notes
                f.completed_at = now
                submission.status = RequestSubmission.STATUS_COMPLETED
                submission.fulfilled_at = now
        except Exception:
            storage.delete(path)
            raise

        self.db.refresh(submission)
        fulfillments_total.inc()
        submissions_finished_total.labels(status=RequestSubmission.STATUS_COMPLETED).inc()
        record_audit(self.db, "REQUEST_FULFILLED", submission.id, user.id,
                     {"file": upload.filename, "notes": notes or ""})
        self.log.info("submission %s fulfilled by user %s", submission.reference_code, user.id)
        notify_request_fulfilled(submission)
        return submission

    # ---- side effects inside the decision transaction

    def _training_application(self, submission: RequestSubmission) -> Optional[TrainingApplication]:
        return (
            self.db.query(TrainingApplication)
            .filter(TrainingApplication.request_submission_id == submission.id)
            .first()
        )

    def _on_flow_completed(self, submission: RequestSubmission) -> None:
        app = self._training_application(submission)
        if app is not None:
            app.status = TrainingApplication.STATUS_APPROVED
        if leave_crud.is_leave_request(submission.request_type):
            leave_crud.deduct(self.db, submission)

    def _on_rejected(self, submission: RequestSubmission) -> None:
        app = self._training_application(submission)
        if app is not None:
            app.status = TrainingApplication.STATUS_REJECTED
            app.re_apply_count = (app.re_apply_count or 0) + 1
        if leave_crud.is_leave_request(submission.request_type):
            leave_crud.release(self.db, submission)


def _check_notes(notes: Optional[str], limit: int, required: bool) -> Optional[str]:
    notes = (notes or "").strip() or None
    if required and not notes:
        raise WorkflowValidationError.single("notes", "The notes field is required.")
    if notes and len(notes) > limit:
        raise WorkflowValidationError.single("notes", f"The notes may not be greater than {limit} characters.")
    return notes


def get_submission(db: Session, submission_id: int) -> RequestSubmission:
    sub = db.get(RequestSubmission, submission_id)
    if sub is None:
        raise NotFoundError(f"Request {submission_id} not found")
    return sub
