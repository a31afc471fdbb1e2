from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.requests import SubmissionOut, engine_for
from app.core.database import get_db
from app.core.errors import NotFoundError
from app.crud import request_type as request_type_crud
from app.crud.submission import submit_request
from app.deps.auth import get_current_user, require_permission
from app.deps.uploads import read_answers
from app.models.org import MANAGE_REQUESTS, User

router = APIRouter(prefix="/api/request-types", tags=["request-types"])


class FieldIn(BaseModel):
    id: Optional[int] = None
    field_key: Optional[str] = None
    label: str = ""
    field_type: str = "text"
    is_required: bool = False
    description: Optional[str] = None
    options: Optional[List[Dict[str, Any]]] = None
    sort_order: Optional[int] = None

class RequestTypeIn(BaseModel):
    name: str = ""
    description: Optional[str] = None
    has_fulfillment: bool = False
    is_published: Optional[bool] = None
    fields: List[FieldIn] = Field(default_factory=list)
    approval_steps: List[Dict[str, Any]] = Field(default_factory=list)

class FieldOut(BaseModel):
    id: int
    field_key: str
    label: str
    field_type: str
    is_required: bool
    description: Optional[str]
    options: Optional[List[Dict[str, Any]]]
    sort_order: int

    class Config:
        from_attributes = True

class RequestTypeOut(BaseModel):
    id: int
    name: str
    description: Optional[str]
    has_fulfillment: bool
    is_published: bool
    published_at: Optional[datetime]
    approval_steps: List[Dict[str, Any]]
    fields: List[FieldOut]
    created_at: datetime

    class Config:
        from_attributes = True


def _visible(db: Session, request_type_id: int, user: User):
    rt = request_type_crud.get_request_type(db, request_type_id)
    if not rt.is_published and not user.can(MANAGE_REQUESTS):
        raise NotFoundError("Request type is not available.")
    return rt


@router.get("", response_model=List[RequestTypeOut])
def api_list_request_types(search: Optional[str] = None, published_only: bool = False,
                           db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    published_only = published_only or not user.can(MANAGE_REQUESTS)
    rows = request_type_crud.list_request_types(db, published_only=published_only, search=search)
    return [RequestTypeOut.model_validate(r) for r in rows]

@router.post("", response_model=RequestTypeOut)
def api_create_request_type(body: RequestTypeIn, db: Session = Depends(get_db),
                            user: User = Depends(require_permission(MANAGE_REQUESTS))):
    rt = request_type_crud.create_request_type(db, body.model_dump(), user.id)
    return RequestTypeOut.model_validate(rt)

@router.get("/{request_type_id}", response_model=RequestTypeOut)
def api_get_request_type(request_type_id: int, db: Session = Depends(get_db),
                         user: User = Depends(get_current_user)):
    return RequestTypeOut.model_validate(_visible(db, request_type_id, user))

@router.put("/{request_type_id}", response_model=RequestTypeOut)
def api_update_request_type(request_type_id: int, body: RequestTypeIn, db: Session = Depends(get_db),
                            user: User = Depends(require_permission(MANAGE_REQUESTS))):
    rt = request_type_crud.get_request_type(db, request_type_id)
    return RequestTypeOut.model_validate(request_type_crud.update_request_type(db, rt, body.model_dump()))

@router.post("/{request_type_id}/publish", response_model=RequestTypeOut)
def api_publish_request_type(request_type_id: int, db: Session = Depends(get_db),
                             user: User = Depends(require_permission(MANAGE_REQUESTS))):
    rt = request_type_crud.get_request_type(db, request_type_id)
    return RequestTypeOut.model_validate(request_type_crud.set_published(db, rt, True, user.id))

@router.post("/{request_type_id}/unpublish", response_model=RequestTypeOut)
def api_unpublish_request_type(request_type_id: int, db: Session = Depends(get_db),
                               user: User = Depends(require_permission(MANAGE_REQUESTS))):
    rt = request_type_crud.get_request_type(db, request_type_id)
    return RequestTypeOut.model_validate(request_type_crud.set_published(db, rt, False, user.id))

@router.post("/{request_type_id}/submit", response_model=SubmissionOut)
def api_submit_request(request_type_id: int, answers: Dict[str, Any] = Depends(read_answers),
                       db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = submit_request(db, request_type_id, user, answers, engine=engine_for(db))
    return SubmissionOut.model_validate(sub)
