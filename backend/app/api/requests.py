import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import NotFoundError
from app.crud import submission as submission_crud
from app.crud.approval import ApprovalEngine, authorize_view, get_submission
from app.deps.auth import get_current_user
from app.deps.uploads import to_upload
from app.models.org import User
from app.services.audit import list_audit
from app.utils import storage

router = APIRouter(prefix="/api/requests", tags=["requests"])

workflow_log = logging.getLogger("app.workflow")


def engine_for(db: Session) -> ApprovalEngine:
    return ApprovalEngine(db, logger=workflow_log)


class DecisionIn(BaseModel):
    notes: Optional[str] = None

class RejectIn(BaseModel):
    notes: Optional[str] = None

class SubmissionOut(BaseModel):
    id: int
    reference_code: str
    status: str
    current_step_index: Optional[int]
    submitted_at: Optional[datetime]
    fulfilled_at: Optional[datetime]

    class Config:
        from_attributes = True

class AuditEntry(BaseModel):
    id: int
    action: str
    submission_id: Optional[int]
    actor: Optional[int]
    details: dict
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=dict)
def api_list_requests(
    scope: str = "mine",
    status: Optional[str] = None,
    request_type_id: Optional[int] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = 1,
    per_page: int = 10,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return submission_crud.list_submissions(
        db, user, page=page, per_page=per_page,
        scope=scope, status=status, request_type_id=request_type_id,
        search=search, date_from=date_from, date_to=date_to,
    )

@router.get("/export")
def api_export_requests(
    scope: str = "mine",
    status: Optional[str] = None,
    request_type_id: Optional[int] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    body = submission_crud.export_csv(
        db, user, scope=scope, status=status, request_type_id=request_type_id,
        search=search, date_from=date_from, date_to=date_to,
    )
    name = f"requests-{datetime.utcnow():%Y%m%d-%H%M%S}.csv"
    return Response(body, media_type="text/csv",
                    headers={"Content-Disposition": f'attachment; filename="{name}"'})

@router.get("/{submission_id}", response_model=dict)
def api_get_request(submission_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = get_submission(db, submission_id)
    authorize_view(sub, user)
    return submission_crud.submission_detail(db, sub, user)

@router.post("/{submission_id}/approve", response_model=SubmissionOut)
def api_approve(submission_id: int, body: DecisionIn = DecisionIn(),
                db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = get_submission(db, submission_id)
    return SubmissionOut.model_validate(engine_for(db).approve(sub, user, body.notes))

@router.post("/{submission_id}/reject", response_model=SubmissionOut)
def api_reject(submission_id: int, body: RejectIn,
               db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = get_submission(db, submission_id)
    return SubmissionOut.model_validate(engine_for(db).reject(sub, user, body.notes))

@router.post("/{submission_id}/fulfill", response_model=SubmissionOut)
def api_fulfill(
    submission_id: int,
    file: Optional[UploadFile] = File(default=None),
    notes: Optional[str] = Form(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    sub = get_submission(db, submission_id)
    return SubmissionOut.model_validate(engine_for(db).fulfill(sub, user, to_upload(file), notes))

@router.get("/{submission_id}/fulfillment/download")
def api_download_fulfillment(submission_id: int, db: Session = Depends(get_db),
                             user: User = Depends(get_current_user)):
    sub = get_submission(db, submission_id)
    authorize_view(sub, user)
    f = sub.fulfillment
    if f is None or not storage.exists(f.file_path):
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(storage.resolve(f.file_path), filename=f.original_filename or "fulfillment")

@router.get("/{submission_id}/answers/{field_id}/download")
def api_download_answer(submission_id: int, field_id: int, db: Session = Depends(get_db),
                        user: User = Depends(get_current_user)):
    sub = get_submission(db, submission_id)
    authorize_view(sub, user)
    path, name = submission_crud.answer_file(db, sub, field_id)
    if not storage.exists(path):
        raise NotFoundError("File not found")
    return FileResponse(storage.resolve(path), filename=name or "attachment")

@router.get("/{submission_id}/audit", response_model=List[AuditEntry])
def api_request_audit(submission_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = get_submission(db, submission_id)
    authorize_view(sub, user)
    return [AuditEntry.model_validate(e) for e in list_audit(db, sub.id)]
