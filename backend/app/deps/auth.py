from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session
from typing import Callable
from app.core.database import get_db
from app.core.security import decode_token
from app.models.org import User

def get_current_user(authorization: str | None = Header(default=None),
                     db: Session = Depends(get_db)) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = decode_token(token, expected_type="access")
        user_id = int(data.get("sub"))
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user

def require_permission(*perms: str) -> Callable:
    def checker(user: User = Depends(get_current_user)) -> User:
        if perms and not any(user.can(p) for p in perms):
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return checker
