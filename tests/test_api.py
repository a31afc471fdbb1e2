from datetime import datetime

from app.crud.submission import submit_request
from app.models.submission import RequestSubmission

from helpers import auth, make_type, user_step


def _submit_json(client, rt, user, answers):
    return client.post(f"/api/request-types/{rt.id}/submit", json={"answers": answers}, headers=auth(user))


# ---- auth

def test_login_and_me(client, org):
    r = client.post("/auth/login", json={"email": "  Alice@Example.edu "})
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["user_id"] == org.users.alice.id

    me = client.get("/api/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["employee"]["id"] == "E001"
    assert me.json()["employee"]["full_name"] == "Alice Reyes"

    refreshed = client.post("/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert refreshed.status_code == 200
    # an access token is not accepted as a refresh token
    bad = client.post("/auth/refresh", json={"refresh_token": body["access_token"]})
    assert bad.status_code == 401


def test_unknown_login_and_missing_token(client, org):
    assert client.post("/auth/login", json={"email": "nobody@example.edu"}).status_code == 401
    assert client.get("/api/me").status_code == 401
    assert client.get("/api/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


# ---- request types

def test_request_type_management_needs_permission(client, db, org):
    payload = {"name": "Parking Permit", "fields": [{"label": "Plate Number", "field_type": "text"}],
               "approval_steps": [user_step("Security", org.users.hector)]}
    assert client.post("/api/request-types", json=payload, headers=auth(org.users.alice)).status_code == 403

    r = client.post("/api/request-types", json=payload, headers=auth(org.users.admin))
    assert r.status_code == 200
    rt = r.json()
    assert rt["is_published"] is False
    assert rt["fields"][0]["field_key"] == "plate_number"
    assert rt["approval_steps"][0]["approvers"][0]["approver_id"] == org.users.hector.id

    assert client.get(f"/api/request-types/{rt['id']}", headers=auth(org.users.alice)).status_code == 404
    assert client.get("/api/request-types", headers=auth(org.users.alice)).json() == []

    r = client.post(f"/api/request-types/{rt['id']}/publish", headers=auth(org.users.admin))
    assert r.status_code == 200 and r.json()["is_published"] is True
    listed = client.get("/api/request-types", headers=auth(org.users.alice)).json()
    assert [t["name"] for t in listed] == ["Parking Permit"]


def test_request_type_validation_shape(client, org):
    r = client.post("/api/request-types", json={"name": "Broken", "fields": [], "approval_steps": []},
                    headers=auth(org.users.admin))
    assert r.status_code == 422
    body = r.json()
    assert body["detail"] == "The given data was invalid."
    assert body["errors"] == {"fields": "Add at least one field."}


def test_update_request_type_keeps_field_keys(client, db, org):
    rt = make_type(db, [user_step("Chair", org.users.carla)])
    field = rt.fields[0]
    payload = {
        "name": "Equipment Request",
        "fields": [{"id": field.id, "label": "Reason", "field_type": "textarea", "is_required": True}],
        "approval_steps": [user_step("Chair", org.users.carla)],
    }
    r = client.put(f"/api/request-types/{rt.id}", json=payload, headers=auth(org.users.admin))
    assert r.status_code == 200
    assert r.json()["fields"][0]["field_key"] == "purpose"
    assert r.json()["fields"][0]["label"] == "Reason"


# ---- submissions

def test_submit_json_and_approve(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)])
    r = _submit_json(client, rt, u.alice, {"purpose": "new laptop"})
    assert r.status_code == 200
    sub = r.json()
    assert sub["status"] == "pending"
    assert sub["current_step_index"] == 0

    r = client.post(f"/api/requests/{sub['id']}/approve", headers=auth(u.alice))
    assert r.status_code == 403
    assert r.json() == {"detail": "You are not allowed to approve this request."}

    detail = client.get(f"/api/requests/{sub['id']}", headers=auth(u.carla)).json()
    assert detail["can"]["approve"] is True

    r = client.post(f"/api/requests/{sub['id']}/approve", json={"notes": "go ahead"}, headers=auth(u.carla))
    assert r.status_code == 200
    assert r.json()["status"] == "approved"

    db.expire_all()
    stored = db.get(RequestSubmission, sub["id"])
    assert stored.approval_actions[0].notes == "go ahead"
    assert stored.approval_actions[0].acted_by == u.carla.id


def test_submit_validation_errors(client, db, org):
    rt = make_type(db, [user_step("Chair", org.users.carla)])
    r = _submit_json(client, rt, org.users.alice, {})
    assert r.status_code == 422
    assert r.json()["errors"] == {"answers.purpose": "The Purpose field is required."}


def test_submit_to_unpublished_type(client, db, org):
    rt = make_type(db, [user_step("Chair", org.users.carla)], publish=False)
    r = _submit_json(client, rt, org.users.alice, {"purpose": "x"})
    assert r.status_code == 404


def test_multipart_submit_with_file(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)], fields=[
        {"label": "Purpose", "field_type": "text", "is_required": True},
        {"label": "Attachment", "field_type": "file", "is_required": True},
        {"label": "Urgent", "field_type": "checkbox"},
    ])
    r = client.post(
        f"/api/request-types/{rt.id}/submit",
        data={"answers[purpose]": "conference", "answers[urgent]": "on"},
        files={"answers[attachment]": ("agenda.txt", b"day one", "text/plain")},
        headers=auth(u.alice),
    )
    assert r.status_code == 200, r.text
    sub_id = r.json()["id"]

    detail = client.get(f"/api/requests/{sub_id}", headers=auth(u.alice)).json()
    fields = {f["field_key"]: f for f in detail["fields"]}
    assert fields["urgent"]["value"] is True
    assert fields["attachment"]["value_json"]["original_name"] == "agenda.txt"

    download = client.get(fields["attachment"]["download_url"], headers=auth(u.carla))
    assert download.status_code == 200
    assert download.content == b"day one"
    assert client.get(fields["attachment"]["download_url"], headers=auth(u.mario)).status_code == 403


def test_reject_requires_notes(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)])
    sub = submit_request(db, rt.id, u.alice, {"purpose": "x"})
    r = client.post(f"/api/requests/{sub.id}/reject", json={}, headers=auth(u.carla))
    assert r.status_code == 422
    assert r.json()["errors"] == {"notes": "The notes field is required."}

    r = client.post(f"/api/requests/{sub.id}/reject", json={"notes": "duplicate"}, headers=auth(u.carla))
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"
    assert r.json()["current_step_index"] is None


def test_fulfill_and_download(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)], name="Certificate of Employment", has_fulfillment=True)
    sub = submit_request(db, rt.id, u.alice, {"purpose": "visa"})
    client.post(f"/api/requests/{sub.id}/approve", headers=auth(u.carla))

    r = client.post(f"/api/requests/{sub.id}/fulfill", data={"notes": "signed"}, headers=auth(u.carla))
    assert r.status_code == 422
    assert "file" in r.json()["errors"]

    r = client.post(f"/api/requests/{sub.id}/fulfill", files={"file": ("coe.pdf", b"%PDF-1.4 coe", "application/pdf")},
                    data={"notes": "signed"}, headers=auth(u.ben))
    assert r.status_code == 403

    r = client.post(f"/api/requests/{sub.id}/fulfill", files={"file": ("coe.pdf", b"%PDF-1.4 coe", "application/pdf")},
                    data={"notes": "signed"}, headers=auth(u.carla))
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert r.json()["fulfilled_at"] is not None

    download = client.get(f"/api/requests/{sub.id}/fulfillment/download", headers=auth(u.alice))
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 coe"


def test_fulfill_without_fulfillment_step(client, db, org):
    rt = make_type(db, [])
    sub = submit_request(db, rt.id, org.users.alice, {"purpose": "x"})
    r = client.post(f"/api/requests/{sub.id}/fulfill", files={"file": ("a.pdf", b"1")}, headers=auth(org.users.admin))
    assert r.status_code == 404


def test_view_permissions(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)])
    sub = submit_request(db, rt.id, u.alice, {"purpose": "x"})
    assert client.get(f"/api/requests/{sub.id}", headers=auth(u.mario)).status_code == 403
    assert client.get(f"/api/requests/{sub.id}", headers=auth(u.admin)).status_code == 200
    assert client.get("/api/requests/99999", headers=auth(u.admin)).status_code == 404


def test_list_and_export(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)])
    sub = submit_request(db, rt.id, u.alice, {"purpose": "x"})

    mine = client.get("/api/requests", headers=auth(u.alice)).json()
    assert mine["total"] == 1 and mine["data"][0]["reference_code"] == sub.reference_code
    assigned = client.get("/api/requests", params={"scope": "assigned"}, headers=auth(u.carla)).json()
    assert assigned["total"] == 1

    r = client.get("/api/requests/export", headers=auth(u.alice))
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert sub.reference_code in r.text


def test_audit_trail(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)])
    sub = submit_request(db, rt.id, u.alice, {"purpose": "x"})
    client.post(f"/api/requests/{sub.id}/approve", headers=auth(u.carla))
    trail = client.get(f"/api/requests/{sub.id}/audit", headers=auth(u.alice)).json()
    assert [e["action"] for e in trail] == ["REQUEST_SUBMITTED", "STEP_APPROVED", "REQUEST_APPROVED"]
    assert trail[1]["actor"] == u.carla.id


# ---- trainings, leave, organization

def test_training_endpoints(client, org):
    payload = {"title": "First Aid", "date_from": "2026-12-01", "date_to": "2026-12-01", "capacity": 20}
    assert client.post("/api/trainings", json=payload, headers=auth(org.users.alice)).status_code == 403
    r = client.post("/api/trainings", json=payload, headers=auth(org.users.admin))
    assert r.status_code == 200
    training = r.json()
    assert training["reference_number"].endswith("-20261201")

    r = client.post(f"/api/trainings/{training['id']}/apply", headers=auth(org.users.alice))
    assert r.status_code == 200
    assert r.json()["status"] == "Signed Up"

    listed = client.get("/api/trainings", headers=auth(org.users.alice)).json()
    assert listed[0]["available_spots"] == 19
    assert listed[0]["already_applied"] is True

    mine = client.get("/api/trainings/applications", headers=auth(org.users.alice)).json()
    assert [a["training_id"] for a in mine] == [training["id"]]
    assert mine[0]["status"] == "Signed Up"
    assert client.get("/api/trainings/applications", headers=auth(org.users.admin)).json() == []


def test_leave_endpoints(client, org):
    admin = auth(org.users.admin)
    lt = client.post("/api/leave-types", json={"code": "vl", "name": "Vacation Leave"}, headers=admin).json()
    assert lt["code"] == "VL"
    r = client.post("/api/leaves/entitlements",
                    json={"employee_id": "E001", "leave_type_id": lt["id"], "entitled": 15}, headers=admin)
    assert r.status_code == 200
    assert r.json()["balance"] == 15

    balance = client.get("/api/leaves/balance", headers=auth(org.users.alice)).json()
    assert balance[0]["year"] == datetime.utcnow().year
    assert balance[0]["entitled"] == 15

    r = client.post("/api/holidays", json={"name": "New Year", "date": "2026-01-01", "is_recurring": True},
                    headers=auth(org.users.alice))
    assert r.status_code == 403


def test_organization_endpoints(client, org):
    admin = auth(org.users.admin)
    r = client.post("/api/faculties", json={"code": "eng", "name": "Engineering"}, headers=admin)
    assert r.status_code == 200 and r.json()["code"] == "ENG"
    assert client.post("/api/faculties", json={"code": "ENG", "name": "Again"}, headers=admin).status_code == 422
    assert client.post("/api/faculties", json={"code": "X", "name": "X"},
                       headers=auth(org.users.alice)).status_code == 403

    codes = [d["code"] for d in client.get("/api/departments", headers=auth(org.users.alice)).json()]
    assert set(codes) == {"CS", "MATH", "HRD"}
    assert client.get("/api/users", headers=auth(org.users.alice)).status_code == 403


# ---- dashboard and ops

def test_dashboard_summary(client, db, org):
    u = org.users
    rt = make_type(db, [user_step("Chair", u.carla)])
    submit_request(db, rt.id, u.alice, {"purpose": "x"})

    mine = client.get("/api/dashboard/summary", headers=auth(u.alice)).json()
    assert mine["scope"] == "mine"
    assert mine["requests"]["total"] == 1
    assert mine["requests"]["by_status"]["pending"] == 1
    assert mine["requests"]["by_type"][0]["name"] == "Equipment Request"

    carla = client.get("/api/dashboard/summary", headers=auth(u.carla)).json()
    assert carla["requests"]["total"] == 0
    assert carla["my_pending_approvals"]["count"] == 1

    assert client.get("/api/dashboard/summary", headers=auth(u.admin)).json()["scope"] == "all"


def test_health_and_metrics(client, org):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert "request_submissions" in health["tables"]

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "approval_decisions_total" in metrics.text
    assert "request_latency_seconds" in metrics.text


def test_policy_endpoints(client, org):
    policy = client.get("/api/policy", headers=auth(org.users.alice)).json()
    assert policy["escalation"]["ladder"][0] == "higher_position"
    assert policy["training"]["max_reapply_attempts"] >= 1
    assert client.post("/api/policy/reload", headers=auth(org.users.alice)).status_code == 403
    r = client.post("/api/policy/reload", headers=auth(org.users.admin))
    assert r.status_code == 200 and "escalation" in r.json()["sections"]


def test_notification_webhook_config(client, org):
    admin = auth(org.users.admin)
    assert client.post("/config/notification-webhook", json={"webhook_url": "ftp://hooks"},
                       headers=admin).status_code == 400
    r = client.post("/config/notification-webhook", json={"webhook_url": "https://hooks.example.edu/hr"},
                    headers=admin)
    assert r.json() == {"saved": True, "configured": True}
    preview = client.get("/config/notification-webhook", headers=admin).json()
    assert preview["webhook_url_preview"].startswith("https://hooks")
    client.post("/config/notification-webhook", json={"webhook_url": ""}, headers=admin)
    assert client.get("/config/notification-webhook", headers=admin).json()["configured"] is False
