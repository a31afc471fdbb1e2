from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.requests import engine_for
from app.core.database import get_db
from app.crud import training as training_crud
from app.deps.auth import get_current_user, require_permission
from app.models.org import MANAGE_TRAININGS, User

router = APIRouter(prefix="/api/trainings", tags=["trainings"])


class TrainingIn(BaseModel):
    title: str = ""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    hours: Optional[Decimal] = Field(default=None, ge=0)
    facilitator: Optional[str] = None
    venue: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    remarks: Optional[str] = None
    requires_approval: bool = False
    request_type_id: Optional[int] = None
    faculty_ids: List[int] = Field(default_factory=list)
    department_ids: List[int] = Field(default_factory=list)
    position_ids: List[int] = Field(default_factory=list)

class TrainingOut(BaseModel):
    id: int
    reference_number: Optional[str]
    title: str
    date_from: Optional[date]
    date_to: Optional[date]
    capacity: Optional[int]
    requires_approval: bool
    request_type_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True

class ApplicationOut(BaseModel):
    id: int
    training_id: int
    employee_id: str
    status: str
    re_apply_count: int
    request_submission_id: Optional[int]

    class Config:
        from_attributes = True


@router.get("", response_model=List[dict])
def api_list_trainings(eligible_only: bool = False, db: Session = Depends(get_db),
                       user: User = Depends(get_current_user)):
    return training_crud.list_trainings(db, user, eligible_only=eligible_only)

@router.get("/applications", response_model=List[dict])
def api_my_applications(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return training_crud.list_applications(db, user)

@router.post("", response_model=TrainingOut)
def api_create_training(body: TrainingIn, db: Session = Depends(get_db),
                        user: User = Depends(require_permission(MANAGE_TRAININGS))):
    return TrainingOut.model_validate(training_crud.create_training(db, body.model_dump(), user))

@router.post("/{training_id}/apply", response_model=ApplicationOut)
def api_apply_for_training(training_id: int, db: Session = Depends(get_db),
                           user: User = Depends(get_current_user)):
    app = training_crud.apply_for_training(db, training_id, user, engine=engine_for(db))
    return ApplicationOut.model_validate(app)
