from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Table, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base

# Granted by a role's permission list to see and act on every request
MANAGE_REQUESTS = "access-request-types-module"
MANAGE_ORGANIZATION = "manage-organization"
MANAGE_TRAININGS = "access-trainings-module"

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

class Faculty(Base):
    __tablename__ = "faculties"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    status = Column(String(16), default="active")        # active | inactive
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    departments = relationship("Department", back_populates="faculty")

class Department(Base):
    __tablename__ = "departments"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    type = Column(String(32), default="academic", nullable=False)   # academic | administrative
    faculty_id = Column(Integer, ForeignKey("faculties.id"), nullable=True, index=True)
    head_position_id = Column(Integer, ForeignKey("positions.id", use_alter=True, name="fk_departments_head_position"), nullable=True)
    status = Column(String(16), default="active")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    faculty = relationship("Faculty", back_populates="departments")
    head_position = relationship("Position", foreign_keys=[head_position_id], post_update=True)
    positions = relationship("Position", foreign_keys="Position.department_id", back_populates="department")

class Position(Base):
    __tablename__ = "positions"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    faculty_id = Column(Integer, ForeignKey("faculties.id"), nullable=True, index=True)  # faculty-level posts have no department
    hierarchy_level = Column(Integer, default=1, nullable=False)  # 10 = Dean, 9 = Associate Dean, 8 = department head
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    department = relationship("Department", foreign_keys=[department_id], back_populates="positions")
    faculty = relationship("Faculty")

class Employee(Base):
    __tablename__ = "employees"
    id = Column(String(32), primary_key=True)            # agency employee number
    first_name = Column(String(128), nullable=False)
    middle_name = Column(String(128), nullable=True)
    surname = Column(String(128), nullable=False)
    email_address = Column(String(255), nullable=True, index=True)
    status = Column(String(32), default="active")
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    position_id = Column(Integer, ForeignKey("positions.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    department = relationship("Department")
    position = relationship("Position")
    user = relationship("User", back_populates="employee", uselist=False)

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.middle_name, self.surname) if p]
        return " ".join(parts).strip()

    @property
    def faculty_id(self):
        """Faculty through the department, else through a faculty-level position."""
        if self.department is not None and self.department.faculty_id:
            return self.department.faculty_id
        if self.position is not None and self.position.faculty_id:
            return self.position.faculty_id
        return None

class Role(Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True)
    name = Column(String(128), nullable=False, unique=True)
    label = Column(String(255), nullable=True)
    permissions = Column(JSON, default=list)             # ["access-request-types-module", ...]
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    employee_id = Column(String(32), ForeignKey("employees.id", ondelete="SET NULL"), nullable=True, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    employee = relationship("Employee", back_populates="user")
    roles = relationship("Role", secondary=user_roles, lazy="selectin")

    @property
    def role_ids(self) -> set:
        return {r.id for r in self.roles}

    def can(self, permission: str) -> bool:
        for role in self.roles:
            perms = role.permissions or []
            if "*" in perms or permission in perms:
                return True
        return False
