# app/crud/org.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.database import atomic
from app.core.errors import NotFoundError, WorkflowValidationError
from app.models.org import Department, Employee, Faculty, Position, Role, User

logger = logging.getLogger(__name__)

DEPARTMENT_TYPES = ("academic", "administrative")


def _get(db: Session, model, pk, label: str):
    row = db.get(model, pk)
    if row is None:
        raise NotFoundError(f"{label} {pk} not found")
    return row

def _require(data: Dict[str, Any], *keys: str) -> None:
    errors = {k: f"The {k.replace('_', ' ')} field is required." for k in keys
              if data.get(k) is None or (isinstance(data.get(k), str) and not data[k].strip())}
    if errors:
        raise WorkflowValidationError(errors)

def _check_ref(db: Session, model, pk, key: str) -> None:
    if pk is not None and db.get(model, pk) is None:
        raise WorkflowValidationError.single(key, f"The selected {key.replace('_', ' ')} is invalid.")

def _check_unique(db: Session, model, column, value, key: str) -> None:
    if db.query(model.id).filter(column == value).first():
        raise WorkflowValidationError.single(key, f"The {key.replace('_', ' ')} has already been taken.")


# -------------------------- structure --------------------------

def create_faculty(db: Session, data: Dict[str, Any]) -> Faculty:
    _require(data, "code", "name")
    code = data["code"].strip().upper()
    _check_unique(db, Faculty, Faculty.code, code, "code")
    with atomic(db):
        f = Faculty(code=code, name=data["name"].strip(), status=data.get("status") or "active")
        db.add(f)
    db.refresh(f)
    return f

def create_department(db: Session, data: Dict[str, Any]) -> Department:
    _require(data, "code", "name")
    code = data["code"].strip().upper()
    _check_unique(db, Department, Department.code, code, "code")
    dtype = data.get("type") or "academic"
    if dtype not in DEPARTMENT_TYPES:
        raise WorkflowValidationError.single("type", "The selected type is invalid.")
    _check_ref(db, Faculty, data.get("faculty_id"), "faculty_id")
    with atomic(db):
        d = Department(code=code, name=data["name"].strip(), type=dtype, faculty_id=data.get("faculty_id"))
        db.add(d)
    db.refresh(d)
    return d

def create_position(db: Session, data: Dict[str, Any]) -> Position:
    _require(data, "name")
    _check_ref(db, Department, data.get("department_id"), "department_id")
    _check_ref(db, Faculty, data.get("faculty_id"), "faculty_id")
    level = data.get("hierarchy_level")
    level = 1 if level is None else int(level)
    if not 1 <= level <= 10:
        raise WorkflowValidationError.single("hierarchy_level", "The hierarchy level must be between 1 and 10.")
    with atomic(db):
        p = Position(
            code=data.get("code"),
            name=data["name"].strip(),
            description=data.get("description"),
            department_id=data.get("department_id"),
            faculty_id=data.get("faculty_id"),
            hierarchy_level=level,
        )
        db.add(p)
    db.refresh(p)
    return p

def set_department_head(db: Session, department_id: int, position_id: Optional[int]) -> Department:
    d = _get(db, Department, department_id, "Department")
    _check_ref(db, Position, position_id, "head_position_id")
    with atomic(db):
        d.head_position_id = position_id
    db.refresh(d)
    logger.info("department %s head position set to %s", d.id, position_id)
    return d


# -------------------------- people --------------------------

def create_employee(db: Session, data: Dict[str, Any]) -> Employee:
    _require(data, "id", "first_name", "surname")
    emp_id = str(data["id"]).strip()
    if db.get(Employee, emp_id) is not None:
        raise WorkflowValidationError.single("id", "The id has already been taken.")
    _check_ref(db, Department, data.get("department_id"), "department_id")
    _check_ref(db, Position, data.get("position_id"), "position_id")
    with atomic(db):
        e = Employee(
            id=emp_id,
            first_name=data["first_name"].strip(),
            middle_name=data.get("middle_name"),
            surname=data["surname"].strip(),
            email_address=data.get("email_address"),
            status=data.get("status") or "active",
            department_id=data.get("department_id"),
            position_id=data.get("position_id"),
        )
        db.add(e)
    db.refresh(e)
    return e

def update_employee(db: Session, employee_id: str, data: Dict[str, Any]) -> Employee:
    e = _get(db, Employee, employee_id, "Employee")
    _check_ref(db, Department, data.get("department_id"), "department_id")
    _check_ref(db, Position, data.get("position_id"), "position_id")
    with atomic(db):
        for key in ("first_name", "middle_name", "surname", "email_address", "status", "department_id", "position_id"):
            if key in data:
                setattr(e, key, data[key])
    db.refresh(e)
    return e

def create_role(db: Session, data: Dict[str, Any]) -> Role:
    _require(data, "name")
    name = data["name"].strip()
    _check_unique(db, Role, Role.name, name, "name")
    perms = data.get("permissions") or []
    if not isinstance(perms, list) or not all(isinstance(p, str) for p in perms):
        raise WorkflowValidationError.single("permissions", "The permissions must be a list of strings.")
    with atomic(db):
        r = Role(name=name, label=data.get("label"), permissions=perms)
        db.add(r)
    db.refresh(r)
    return r

def _roles(db: Session, role_ids: List[int]) -> List[Role]:
    roles = db.query(Role).filter(Role.id.in_(role_ids)).all() if role_ids else []
    if len(roles) != len(set(role_ids)):
        raise WorkflowValidationError.single("role_ids", "The selected role ids is invalid.")
    return roles

def create_user(db: Session, data: Dict[str, Any]) -> User:
    _require(data, "name", "email")
    email = data["email"].strip().lower()
    _check_unique(db, User, User.email, email, "email")
    emp_id = data.get("employee_id")
    _check_ref(db, Employee, emp_id, "employee_id")
    if emp_id and db.query(User.id).filter(User.employee_id == emp_id).first():
        raise WorkflowValidationError.single("employee_id", "The employee is already linked to another account.")
    roles = _roles(db, data.get("role_ids") or [])
    with atomic(db):
        u = User(name=data["name"].strip(), email=email, employee_id=emp_id)
        u.roles = roles
        db.add(u)
    db.refresh(u)
    return u

def set_user_roles(db: Session, user_id: int, role_ids: List[int]) -> User:
    u = _get(db, User, user_id, "User")
    roles = _roles(db, role_ids)
    with atomic(db):
        u.roles = roles
    db.refresh(u)
    return u


# -------------------------- listing --------------------------

def list_faculties(db: Session) -> List[Faculty]:
    return db.query(Faculty).order_by(Faculty.name).all()

def list_departments(db: Session, faculty_id: Optional[int] = None) -> List[Department]:
    q = db.query(Department)
    if faculty_id is not None:
        q = q.filter(Department.faculty_id == faculty_id)
    return q.order_by(Department.name).all()

def list_positions(db: Session, department_id: Optional[int] = None) -> List[Position]:
    q = db.query(Position)
    if department_id is not None:
        q = q.filter(Position.department_id == department_id)
    return q.order_by(Position.hierarchy_level.desc(), Position.name).all()

def list_employees(db: Session, department_id: Optional[int] = None, search: Optional[str] = None) -> List[Employee]:
    q = db.query(Employee)
    if department_id is not None:
        q = q.filter(Employee.department_id == department_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter((Employee.first_name.ilike(like)) | (Employee.surname.ilike(like)) | (Employee.id.ilike(like)))
    return q.order_by(Employee.surname, Employee.first_name).all()

def list_roles(db: Session) -> List[Role]:
    return db.query(Role).order_by(Role.name).all()

def list_users(db: Session) -> List[User]:
    return db.query(User).order_by(User.name).all()
