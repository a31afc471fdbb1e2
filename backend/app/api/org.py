from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.crud import org as org_crud
from app.deps.auth import get_current_user, require_permission
from app.models.org import MANAGE_ORGANIZATION, User

router = APIRouter(prefix="/api", tags=["organization"])

manage = require_permission(MANAGE_ORGANIZATION)


class FacultyIn(BaseModel):
    code: str
    name: str
    status: Optional[str] = None

class FacultyOut(BaseModel):
    id: int
    code: str
    name: str
    status: Optional[str]

    class Config:
        from_attributes = True

class DepartmentIn(BaseModel):
    code: str
    name: str
    type: str = "academic"
    faculty_id: Optional[int] = None

class DepartmentOut(BaseModel):
    id: int
    code: str
    name: str
    type: str
    faculty_id: Optional[int]
    head_position_id: Optional[int]

    class Config:
        from_attributes = True

class DepartmentHeadIn(BaseModel):
    position_id: Optional[int] = None

class PositionIn(BaseModel):
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    department_id: Optional[int] = None
    faculty_id: Optional[int] = None
    hierarchy_level: int = Field(default=1, ge=1, le=10)

class PositionOut(BaseModel):
    id: int
    code: Optional[str]
    name: str
    department_id: Optional[int]
    faculty_id: Optional[int]
    hierarchy_level: int

    class Config:
        from_attributes = True

class EmployeeIn(BaseModel):
    id: str
    first_name: str
    middle_name: Optional[str] = None
    surname: str
    email_address: Optional[str] = None
    status: Optional[str] = None
    department_id: Optional[int] = None
    position_id: Optional[int] = None

class EmployeeUpdate(BaseModel):
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    surname: Optional[str] = None
    email_address: Optional[str] = None
    status: Optional[str] = None
    department_id: Optional[int] = None
    position_id: Optional[int] = None

class EmployeeOut(BaseModel):
    id: str
    first_name: str
    middle_name: Optional[str]
    surname: str
    full_name: str
    email_address: Optional[str]
    status: Optional[str]
    department_id: Optional[int]
    position_id: Optional[int]
    faculty_id: Optional[int]

    class Config:
        from_attributes = True

class RoleIn(BaseModel):
    name: str
    label: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)

class RoleOut(BaseModel):
    id: int
    name: str
    label: Optional[str]
    permissions: List[str]

    class Config:
        from_attributes = True

class UserIn(BaseModel):
    name: str
    email: str
    employee_id: Optional[str] = None
    role_ids: List[int] = Field(default_factory=list)

class UserRolesIn(BaseModel):
    role_ids: List[int] = Field(default_factory=list)

class UserOut(BaseModel):
    id: int
    name: str
    email: str
    employee_id: Optional[str]
    roles: List[RoleOut]
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/faculties", response_model=List[FacultyOut])
def api_list_faculties(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return [FacultyOut.model_validate(f) for f in org_crud.list_faculties(db)]

@router.post("/faculties", response_model=FacultyOut)
def api_create_faculty(body: FacultyIn, db: Session = Depends(get_db), user: User = Depends(manage)):
    return FacultyOut.model_validate(org_crud.create_faculty(db, body.model_dump()))

@router.get("/departments", response_model=List[DepartmentOut])
def api_list_departments(faculty_id: Optional[int] = None, db: Session = Depends(get_db),
                         user: User = Depends(get_current_user)):
    return [DepartmentOut.model_validate(d) for d in org_crud.list_departments(db, faculty_id)]

@router.post("/departments", response_model=DepartmentOut)
def api_create_department(body: DepartmentIn, db: Session = Depends(get_db), user: User = Depends(manage)):
    return DepartmentOut.model_validate(org_crud.create_department(db, body.model_dump()))

@router.post("/departments/{department_id}/head", response_model=DepartmentOut)
def api_set_department_head(department_id: int, body: DepartmentHeadIn, db: Session = Depends(get_db),
                            user: User = Depends(manage)):
    return DepartmentOut.model_validate(org_crud.set_department_head(db, department_id, body.position_id))

@router.get("/positions", response_model=List[PositionOut])
def api_list_positions(department_id: Optional[int] = None, db: Session = Depends(get_db),
                       user: User = Depends(get_current_user)):
    return [PositionOut.model_validate(p) for p in org_crud.list_positions(db, department_id)]

@router.post("/positions", response_model=PositionOut)
def api_create_position(body: PositionIn, db: Session = Depends(get_db), user: User = Depends(manage)):
    return PositionOut.model_validate(org_crud.create_position(db, body.model_dump()))

@router.get("/employees", response_model=List[EmployeeOut])
def api_list_employees(department_id: Optional[int] = None, search: Optional[str] = None,
                       db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return [EmployeeOut.model_validate(e) for e in org_crud.list_employees(db, department_id, search)]

@router.post("/employees", response_model=EmployeeOut)
def api_create_employee(body: EmployeeIn, db: Session = Depends(get_db), user: User = Depends(manage)):
    return EmployeeOut.model_validate(org_crud.create_employee(db, body.model_dump()))

@router.patch("/employees/{employee_id}", response_model=EmployeeOut)
def api_update_employee(employee_id: str, body: EmployeeUpdate, db: Session = Depends(get_db),
                        user: User = Depends(manage)):
    data = body.model_dump(exclude_unset=True)
    return EmployeeOut.model_validate(org_crud.update_employee(db, employee_id, data))

@router.get("/roles", response_model=List[RoleOut])
def api_list_roles(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return [RoleOut.model_validate(r) for r in org_crud.list_roles(db)]

@router.post("/roles", response_model=RoleOut)
def api_create_role(body: RoleIn, db: Session = Depends(get_db), user: User = Depends(manage)):
    return RoleOut.model_validate(org_crud.create_role(db, body.model_dump()))

@router.get("/users", response_model=List[UserOut])
def api_list_users(db: Session = Depends(get_db), user: User = Depends(manage)):
    return [UserOut.model_validate(u) for u in org_crud.list_users(db)]

@router.post("/users", response_model=UserOut)
def api_create_user(body: UserIn, db: Session = Depends(get_db), user: User = Depends(manage)):
    return UserOut.model_validate(org_crud.create_user(db, body.model_dump()))

@router.put("/users/{user_id}/roles", response_model=UserOut)
def api_set_user_roles(user_id: int, body: UserRolesIn, db: Session = Depends(get_db),
                       user: User = Depends(manage)):
    return UserOut.model_validate(org_crud.set_user_roles(db, user_id, body.role_ids))

@router.get("/me", response_model=dict)
def api_me(user: User = Depends(get_current_user)):
    emp = user.employee
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "roles": [r.name for r in user.roles],
        "employee": {
            "id": emp.id,
            "full_name": emp.full_name,
            "department_id": emp.department_id,
            "position_id": emp.position_id,
        } if emp else None,
    }
