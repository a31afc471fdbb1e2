from datetime import date

import pytest

from app.core.errors import NotAuthorizedError, NotFoundError, WorkflowValidationError
from app.crud import request_type as request_type_crud
from app.crud import training as training_crud
from app.crud.approval import ApprovalEngine, user_can_approve
from app.models.org import Employee, User
from app.models.submission import RequestSubmission
from app.models.training import TrainingApplication

from helpers import user_step


def _training(db, **extra):
    data = {"title": "Research Methods", "date_from": date(2026, 11, 3), "date_to": date(2026, 11, 5),
            "hours": 16, "venue": "Room 201", "facilitator": "Dr. Ramos"}
    data.update(extra)
    return training_crud.create_training(db, data, None)


def _configure_workflow(db, training, *approvers):
    return _configure_steps(db, training, [user_step("Review", *approvers)])


def _configure_steps(db, training, steps):
    rt = training.request_type
    rt.approval_steps = request_type_crud.normalize_steps(db, steps)
    db.commit()
    request_type_crud.set_published(db, rt, True, None)
    return rt


def test_reference_number(db, org):
    t = _training(db)
    assert t.reference_number == f"TRG-{t.id:06d}-20261103"


def test_date_range_is_checked(db, org):
    with pytest.raises(WorkflowValidationError) as exc:
        _training(db, date_to=date(2026, 11, 1))
    assert "date_to" in exc.value.errors
    with pytest.raises(WorkflowValidationError):
        _training(db, title="  ")


def test_unknown_restriction_ids_are_refused(db, org):
    with pytest.raises(WorkflowValidationError) as exc:
        _training(db, department_ids=[org.cs.id, 9999])
    assert exc.value.errors == {"department_ids": "The selected department_ids is invalid."}


def test_sign_up_without_approval(db, org):
    t = _training(db, capacity=1)
    app = training_crud.apply_for_training(db, t.id, org.users.alice)
    assert app.status == TrainingApplication.STATUS_SIGNED_UP
    assert app.request_submission_id is None
    assert training_crud.available_spots(db, t) == 0

    with pytest.raises(WorkflowValidationError) as exc:
        training_crud.apply_for_training(db, t.id, org.users.alice)
    assert exc.value.errors["training_id"] == "You have already applied for this training."

    with pytest.raises(WorkflowValidationError) as exc:
        training_crud.apply_for_training(db, t.id, org.users.ben)
    assert exc.value.errors["training_id"] == "This training is full. No available spots remaining."


def test_unknown_training(db, org):
    with pytest.raises(NotFoundError):
        training_crud.apply_for_training(db, 4242, org.users.alice)


def test_eligibility_restrictions_all_apply(db, org):
    p = org.positions
    t = _training(db, department_ids=[org.cs.id], position_ids=[p.instructor.id, p.dean.id])
    alice, ben, mario, dina = (db.get(Employee, e) for e in ("E001", "E002", "E004", "E005"))
    assert training_crud.is_eligible(db, t, alice)
    assert not training_crud.is_eligible(db, t, ben)      # position not allowed
    assert not training_crud.is_eligible(db, t, mario)    # department not allowed
    # the dean has no department but sits in the faculty that owns CS
    assert training_crud.is_eligible(db, t, dina)
    assert not training_crud.is_eligible(db, t, None)

    with pytest.raises(NotAuthorizedError):
        training_crud.apply_for_training(db, t.id, org.users.ben)


def test_faculty_restriction(db, org):
    t = _training(db, faculty_ids=[org.faculty.id])
    assert training_crud.is_eligible(db, t, db.get(Employee, "E004"))
    assert not training_crud.is_eligible(db, t, db.get(Employee, "E006"))


def test_account_without_employee(db, org):
    t = _training(db)
    with pytest.raises(WorkflowValidationError) as exc:
        training_crud.apply_for_training(db, t.id, org.users.admin)
    assert exc.value.errors == {"employee": "Employee profile not found. Please contact HR."}


def test_employee_linked_by_email(db, org):
    db.add(Employee(id="E010", first_name="Zoe", surname="Ong", email_address="zoe@example.edu",
                    department_id=org.cs.id, position_id=org.positions.instructor.id))
    zoe = User(name="Zoe Ong", email="zoe@example.edu")
    db.add(zoe)
    db.commit()
    t = _training(db)
    app = training_crud.apply_for_training(db, t.id, zoe)
    assert app.employee_id == "E010"
    db.refresh(zoe)
    assert zoe.employee_id == "E010"


def test_email_match_does_not_steal_linked_employee(db, org):
    other = User(name="Imposter", email="alice@example.org")
    db.add(other)
    db.get(Employee, "E001").email_address = "alice@example.org"
    db.commit()
    assert training_crud.employee_for(db, other) is None


def test_approval_training_gets_its_own_request_type(db, org):
    t = _training(db, requires_approval=True)
    rt = t.request_type
    assert rt is not None
    assert rt.is_published is False
    assert rt.approval_steps == []
    assert [f.field_key for f in rt.fields] == [key for key, _, _ in training_crud.TRAINING_FIELDS]

    with pytest.raises(WorkflowValidationError) as exc:
        training_crud.apply_for_training(db, t.id, org.users.alice)
    assert exc.value.errors["training_id"] == "Training approval workflow is not available. Please contact HR."


def test_missing_workflow_is_reported(db, org):
    t = _training(db, requires_approval=True)
    t.request_type_id = None
    db.commit()
    with pytest.raises(WorkflowValidationError) as exc:
        training_crud.apply_for_training(db, t.id, org.users.alice)
    assert "no request workflow was configured" in exc.value.errors["training_id"]


def test_approved_application_follows_submission(db, org):
    u = org.users
    t = _training(db, requires_approval=True)
    _configure_workflow(db, t, u.carla)

    app = training_crud.apply_for_training(db, t.id, u.alice)
    assert app.status == TrainingApplication.STATUS_SIGNED_UP
    sub = app.request_submission
    assert sub.status == RequestSubmission.STATUS_PENDING
    answers = {a.field.field_key: a.value for a in sub.answers}
    assert answers["training_title"] == "Research Methods"
    assert answers["employee_id"] == "E001"
    assert answers["date_from"] == "2026-11-03"

    ApprovalEngine(db).approve(sub, u.carla)
    db.refresh(app)
    assert app.status == TrainingApplication.STATUS_APPROVED


def test_rejection_counts_towards_reapply_limit(db, org, monkeypatch):
    monkeypatch.setenv("TRAINING_MAX_REAPPLY_ATTEMPTS", "2")
    u = org.users
    t = _training(db, requires_approval=True)
    _configure_workflow(db, t, u.carla)
    engine = ApprovalEngine(db)

    for attempt in (1, 2):
        app = training_crud.apply_for_training(db, t.id, u.alice)
        engine.reject(app.request_submission, u.carla, "full this term")
        db.refresh(app)
        assert app.status == TrainingApplication.STATUS_REJECTED
        assert app.re_apply_count == attempt

    with pytest.raises(WorkflowValidationError) as exc:
        training_crud.apply_for_training(db, t.id, u.alice)
    assert "maximum number of re-application attempts (2)" in exc.value.errors["training_id"]
    assert db.query(TrainingApplication).count() == 1


def test_rejected_application_frees_a_spot(db, org):
    u = org.users
    t = _training(db, requires_approval=True, capacity=1)
    _configure_workflow(db, t, u.carla)
    app = training_crud.apply_for_training(db, t.id, u.alice)
    assert not training_crud.has_capacity(db, t)
    ApprovalEngine(db).reject(app.request_submission, u.carla, "no budget")
    assert training_crud.has_capacity(db, t)


def test_list_trainings_for_employee(db, org):
    u = org.users
    open_to_all = _training(db, title="Safety Orientation")
    math_only = _training(db, title="Proof Writing", department_ids=[org.math.id])
    training_crud.apply_for_training(db, open_to_all.id, u.alice)

    listed = {t["id"]: t for t in training_crud.list_trainings(db, u.alice)}
    assert listed[open_to_all.id]["already_applied"] is True
    assert listed[math_only.id]["is_eligible"] is False

    assert training_crud.list_trainings(db, u.alice, eligible_only=True) == []
    assert [t["id"] for t in training_crud.list_trainings(db, u.mario, eligible_only=True)] == \
        [open_to_all.id, math_only.id]


def _position_step(*positions):
    return {"name": "Review", "approvers": [
        {"approver_type": "position", "approver_position_id": p.id} for p in positions]}


def test_position_outside_training_scope_stays_unresolved(db, org):
    u, p = org.users, org.positions
    # the chair's post belongs to a department, not to the allowed faculty itself
    restricted = _training(db, requires_approval=True, faculty_ids=[org.faculty.id])
    _configure_steps(db, restricted, [_position_step(p.cs_chair)])
    sub = training_crud.apply_for_training(db, restricted.id, u.alice).request_submission
    action = sub.approval_actions[0]
    assert action.approver_position_id == p.cs_chair.id
    assert action.meta["was_resolved_from_position"] is False
    assert user_can_approve(sub, u.carla)

    open_to_all = _training(db, title="Ethics", requires_approval=True)
    _configure_steps(db, open_to_all, [_position_step(p.cs_chair)])
    sub = training_crud.apply_for_training(db, open_to_all.id, u.alice).request_submission
    assert sub.approval_actions[0].approver_id == u.carla.id


def test_training_steps_skip_department_filter(db, org):
    u, p = org.users, org.positions
    t = _training(db, requires_approval=True)
    _configure_steps(db, t, [_position_step(p.cs_chair, p.math_chair)])
    sub = training_crud.apply_for_training(db, t.id, u.alice).request_submission
    refs = [(a.approver_type, a.approver_ref) for a in sub.approval_actions]
    assert refs == [("user", u.carla.id), ("position", p.math_chair.id)]


def test_signed_up_application_status_follows_training_dates(db, org):
    alice = org.users.alice
    t = _training(db)     # 3 to 5 November 2026
    training_crud.apply_for_training(db, t.id, alice)

    def shown(today):
        return training_crud.list_applications(db, alice, today=today)[0]["display_status"]

    assert shown(date(2026, 11, 1)) == "Signed Up"
    assert shown(date(2026, 11, 3)) == "Ongoing"
    assert shown(date(2026, 11, 5)) == "Ongoing"
    assert shown(date(2026, 11, 6)) == "Completed"
    assert db.query(TrainingApplication).one().status == TrainingApplication.STATUS_SIGNED_UP


def test_rejected_application_keeps_its_status_after_training(db, org):
    u = org.users
    t = _training(db, requires_approval=True)
    _configure_workflow(db, t, u.carla)
    app = training_crud.apply_for_training(db, t.id, u.alice)
    ApprovalEngine(db).reject(app.request_submission, u.carla, "no budget")
    listed = training_crud.list_applications(db, u.alice, today=date(2026, 12, 1))
    assert listed[0]["display_status"] == TrainingApplication.STATUS_REJECTED
