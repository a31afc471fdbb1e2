from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.deps.auth import get_current_user
from app.models.org import User
from app.utils.report import dashboard_summary

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

@router.get("/summary", response_model=dict)
def api_dashboard_summary(limit: int = 5, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return dashboard_summary(db, user, limit=max(1, min(limit, 50)))
