import os
import tempfile
from types import SimpleNamespace

# Point the app at throwaway storage before anything imports it
_TMP = tempfile.mkdtemp(prefix="hr-workflow-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["AUDIT_DIR"] = os.path.join(_TMP, "audit")
os.environ["STORAGE_DIR"] = os.path.join(_TMP, "storage")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient

from backend.main import app as api_app
from app.core.database import Base, SessionLocal, engine
from app.models.org import Department, Employee, Faculty, Position, Role, User


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(api_app) as c:
        yield c


def _person(db, emp_id, first, surname, email, department=None, position=None, roles=()):
    emp = Employee(id=emp_id, first_name=first, surname=surname, email_address=email,
                   department_id=department.id if department else None,
                   position_id=position.id if position else None)
    db.add(emp)
    db.flush()
    user = User(name=f"{first} {surname}", email=email, employee_id=emp.id)
    user.roles = list(roles)
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def org(db):
    """
    Science faculty with Computer Science and Mathematics departments, a
    faculty-level Dean, and an administrative HR department.
    """
    sci = Faculty(code="SCI", name="Science")
    db.add(sci)
    db.flush()
    cs = Department(code="CS", name="Computer Science", type="academic", faculty_id=sci.id)
    math = Department(code="MATH", name="Mathematics", type="academic", faculty_id=sci.id)
    hr = Department(code="HRD", name="Human Resources", type="administrative")
    db.add_all([cs, math, hr])
    db.flush()

    p = SimpleNamespace(
        instructor=Position(name="Instructor", department_id=cs.id, hierarchy_level=1),
        senior=Position(name="Senior Lecturer", department_id=cs.id, hierarchy_level=5),
        cs_chair=Position(name="CS Chair", department_id=cs.id, hierarchy_level=8),
        math_chair=Position(name="Math Chair", department_id=math.id, hierarchy_level=8),
        dean=Position(name="Dean of Science", faculty_id=sci.id, hierarchy_level=10),
        hr_director=Position(name="HR Director", department_id=hr.id, hierarchy_level=9),
        hr_officer=Position(name="HR Officer", department_id=hr.id, hierarchy_level=3),
    )
    db.add_all(vars(p).values())
    db.flush()
    cs.head_position_id = p.cs_chair.id
    math.head_position_id = p.math_chair.id
    hr.head_position_id = p.hr_director.id

    r = SimpleNamespace(
        admin=Role(name="hr-admin", permissions=["*"]),
        clerk=Role(name="records-clerk", permissions=[]),
        auditor=Role(name="auditor", permissions=[]),
    )
    db.add_all(vars(r).values())
    db.flush()

    u = SimpleNamespace(
        alice=_person(db, "E001", "Alice", "Reyes", "alice@example.edu", cs, p.instructor),
        ben=_person(db, "E002", "Ben", "Santos", "ben@example.edu", cs, p.senior, roles=[r.clerk]),
        carla=_person(db, "E003", "Carla", "Cruz", "carla@example.edu", cs, p.cs_chair),
        mario=_person(db, "E004", "Mario", "Lim", "mario@example.edu", math, p.math_chair),
        dina=_person(db, "E005", "Dina", "Tan", "dina@example.edu", None, p.dean),
        hector=_person(db, "E006", "Hector", "Go", "hector@example.edu", hr, p.hr_director),
        hana=_person(db, "E007", "Hana", "Uy", "hana@example.edu", hr, p.hr_officer,
                     roles=[r.clerk, r.auditor]),
    )
    admin = User(name="HR Admin", email="admin@example.edu")
    admin.roles = [r.admin]
    db.add(admin)
    u.admin = admin
    db.commit()
    return SimpleNamespace(faculty=sci, cs=cs, math=math, hr=hr, positions=p, roles=r, users=u)
