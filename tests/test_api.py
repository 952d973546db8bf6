import base64
import io

import pytest
from werkzeug.security import generate_password_hash

from app.docflow import auth, create_app
from app.docflow.constants import ROLES
from app.docflow.db import session_scope
from app.docflow.models import AuditEvent, Base, User
from app.docflow.modules.ledger.models import WorkflowAction

SIGNATURE = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJ"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "store"))
    monkeypatch.setenv("SIGNATURE_ENCRYPTION_KEY", "66" * 32)
    auth._login_attempts.clear()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        for role in ROLES:
            s.add(
                User(
                    email=f"{role}@example.com",
                    full_name=role.replace("_", " ").title(),
                    password_hash=generate_password_hash("pw"),
                    role=role,
                    is_active=True,
                )
            )
    return app


def _login(app, role: str):
    client = app.test_client()
    r = client.post("/auth/login", json={"email": f"{role}@example.com", "password": "pw"})
    assert r.status_code == 200
    return client, {"X-CSRF-Token": r.json["csrf_token"]}


def _upload(client, headers, data: bytes, title: str = "Transcript", **form):
    return client.post(
        "/api/documents",
        data={"file": (io.BytesIO(data), "transcript.pdf"), "title": title, **form},
        content_type="multipart/form-data",
        headers=headers,
    )


def _act(client, headers, workflow_id: int, action: str = "approve", **body):
    return client.post(f"/api/workflows/{workflow_id}/actions", json={"action": action, **body}, headers=headers)


def _send_signature(client, headers, url: str, data: bytes = PNG, filename: str = "sig.png", mimetype: str = "image/png"):
    return client.post(
        url,
        data={"signature": (io.BytesIO(data), filename, mimetype)},
        content_type="multipart/form-data",
        headers=headers,
    )


def test_upload_review_and_verify_end_to_end(app):
    staff, staff_h = _login(app, "academic_staff")
    head, head_h = _login(app, "department_head")
    dean, dean_h = _login(app, "dean")
    public = app.test_client()

    r = _upload(staff, staff_h, b"%PDF-1.7 transcript", description="Semester 1")
    assert r.status_code == 201
    digest = r.json["hash"]
    doc = r.json["document"]
    wf_id = doc["workflow"]["id"]
    assert doc["status"] == "in_review"
    assert doc["workflow"]["stepRoles"] == ["academic_staff", "department_head", "dean"]

    r = public.post("/api/verify", json={"hash": digest})
    assert r.json["isVerified"] is True
    assert r.json["document"]["status"] == "in_review"

    # Out-of-turn approver is refused.
    r = _act(dean, dean_h, wf_id)
    assert r.status_code == 403
    assert r.json["error"] == "role_mismatch"

    r = _act(staff, staff_h, wf_id, comment="Checked", audience="next_reviewer", signature=SIGNATURE)
    assert r.status_code == 200
    assert r.json["action"]["signature"] == SIGNATURE
    assert r.json["action"]["comment"] == "[aud:next_reviewer] Checked"
    assert r.json["workflow"]["currentStep"] == 1

    r = head.get("/api/documents/pending")
    assert [d["hash"] for d in r.json] == [digest]

    # A stale client view is a retryable conflict.
    r = _act(head, head_h, wf_id, expected_step=0)
    assert r.status_code == 409
    assert r.json["error"] == "concurrent_modification"
    assert r.json["retryable"] is True

    assert _act(head, head_h, wf_id, "forward", expected_step=1).status_code == 200
    r = _act(dean, dean_h, wf_id, "sign", signature=SIGNATURE)
    assert r.status_code == 200
    assert r.json["workflow"]["isCompleted"] is True

    r = _act(dean, dean_h, wf_id)
    assert r.status_code == 409
    assert r.json["error"] == "already_completed"

    r = staff.get(f"/api/workflows/{wf_id}")
    assert r.status_code == 200
    assert r.json["documentStatus"] == "completed"
    assert [a["action"] for a in r.json["actions"]] == ["approved", "forwarded", "signed"]
    assert r.json["actions"][0]["signature"] == SIGNATURE
    assert r.json["actions"][2]["user"]["role"] == "dean"

    r = public.post("/api/verify", json={"hash": digest})
    assert r.json["document"]["status"] == "completed"

    with session_scope(app) as s:
        stored = [a.signature for a in s.query(WorkflowAction).order_by(WorkflowAction.id)]
    assert stored[0].startswith("encrypted:")
    assert stored[1] is None
    assert stored[2].startswith("encrypted:")


def test_rejection_via_api(app):
    staff, staff_h = _login(app, "academic_staff")
    head, head_h = _login(app, "department_head")
    wf_id = _upload(staff, staff_h, b"request").json["document"]["workflow"]["id"]

    _act(staff, staff_h, wf_id)
    r = _act(head, head_h, wf_id, "escalate")
    assert r.status_code == 400
    assert r.json["error"] == "invalid_action"
    assert head.post(f"/api/workflows/{wf_id}/actions", json={}, headers=head_h).status_code == 400

    r = _act(head, head_h, wf_id, "reject", comment="Incomplete", audience="student", visibility=["student"])
    assert r.status_code == 200
    assert r.json["workflow"]["isRejected"] is True
    assert r.json["action"]["comment"] == "[vis:student] [aud:student] Incomplete"

    r = _act(head, head_h, wf_id)
    assert r.status_code == 409
    assert r.json["error"] == "already_rejected"
    assert staff.get("/api/stats/user").json["rejectedDocuments"] == 1


def test_upload_rules(app):
    staff, staff_h = _login(app, "academic_staff")
    student, student_h = _login(app, "student")

    assert _upload(student, student_h, b"mine").status_code == 403
    assert app.test_client().post("/api/documents").status_code in (400, 401)

    r = staff.post("/api/documents", data={"title": "No file"}, content_type="multipart/form-data", headers=staff_h)
    assert r.status_code == 400
    assert r.json["error"] == "missing_file"

    assert _upload(staff, staff_h, b"same bytes").status_code == 201
    r = _upload(staff, staff_h, b"same bytes", title="Again")
    assert r.status_code == 409
    assert r.json["error"] == "hash_collision"

    assert _upload(staff, staff_h, b"other", template_id="abc").status_code == 400
    assert _upload(staff, staff_h, b"other", template_id="999").status_code == 404

    r = staff.get("/api/documents")
    assert len(r.json) == 1


def test_document_download_is_restricted(app):
    staff, staff_h = _login(app, "academic_staff")
    student, _ = _login(app, "student")
    dean, _ = _login(app, "dean")
    doc_id = _upload(staff, staff_h, b"%PDF-1.7 body").json["document"]["id"]

    r = staff.get(f"/api/documents/{doc_id}/content")
    assert r.status_code == 200
    assert r.data == b"%PDF-1.7 body"

    # The dean is on the path; a student is not.
    assert dean.get(f"/api/documents/{doc_id}/content").status_code == 200
    assert student.get(f"/api/documents/{doc_id}/content").status_code == 403
    assert staff.get("/api/documents/999/content").status_code == 404

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "document.download").count() == 2


def test_template_administration(app):
    admin, admin_h = _login(app, "admin")
    staff, staff_h = _login(app, "academic_staff")
    head, _ = _login(app, "department_head")

    r = admin.post(
        "/api/admin/templates",
        json={"name": "Grade Report", "type": "grade_report", "approvalPath": ["academic_staff", "wizard"]},
        headers=admin_h,
    )
    assert r.status_code == 400
    assert r.json["error"] == "invalid_template"

    r = admin.post(
        "/api/admin/templates",
        json={"name": "Grade Report", "type": "grade_report", "approvalPath": ["academic_staff", "department_head"]},
        headers=admin_h,
    )
    assert r.status_code == 201
    template_id = r.json["id"]

    assert staff.post("/api/admin/templates", json={}, headers=staff_h).status_code == 403
    assert [t["name"] for t in head.get("/api/templates").json] == ["Grade Report"]
    student, _ = _login(app, "student")
    assert student.get("/api/templates").json == []

    r = _upload(staff, staff_h, b"grades", template_id=str(template_id))
    assert r.status_code == 201
    assert r.json["document"]["type"] == "grade_report"
    assert r.json["document"]["workflow"]["totalSteps"] == 2

    r = admin.put(f"/api/admin/templates/{template_id}", json={"approvalPath": ["dean"]}, headers=admin_h)
    assert r.status_code == 200
    assert r.json["approvalPath"] == ["dean"]

    r = admin.delete(f"/api/admin/templates/{template_id}", headers=admin_h)
    assert r.status_code == 200
    assert r.json["isActive"] is False
    assert head.get("/api/templates").json == []
    assert len(admin.get("/api/admin/templates").json) == 1

    r = _upload(staff, staff_h, b"more grades", template_id=str(template_id))
    assert r.status_code == 400
    assert r.json["error"] == "invalid_template"


def test_audit_endpoint(app):
    admin, _ = _login(app, "admin")
    staff, staff_h = _login(app, "academic_staff")
    doc = _upload(staff, staff_h, b"letter").json["document"]
    _act(staff, staff_h, doc["workflow"]["id"])
    app.test_client().post("/api/verify", json={"hash": doc["hash"]})

    assert staff.get("/api/admin/audit").status_code == 403

    r = admin.get(f"/api/admin/audit?document_id={doc['id']}&order=asc")
    assert r.status_code == 200
    assert [e["type"] for e in r.json] == ["document_created", "workflow_action", "verification"]

    r = admin.get("/api/admin/audit?limit=1")
    assert [e["type"] for e in r.json] == ["verification"]

    assert admin.get("/api/admin/audit?limit=abc").status_code == 400


def test_workflow_stats_for_reviewer(app):
    staff, staff_h = _login(app, "academic_staff")
    head, _ = _login(app, "department_head")
    for data in (b"a", b"b"):
        wf_id = _upload(staff, staff_h, data).json["document"]["workflow"]["id"]
        _act(staff, staff_h, wf_id)

    r = head.get("/api/stats/workflow")
    assert r.json == {"pendingReview": 2, "approvedToday": 0, "inWorkflow": 2}
    assert staff.get("/api/stats/workflow").json["approvedToday"] == 2
    assert head.get("/api/workflows/999").status_code == 404


def test_action_fields_must_be_strings(app):
    staff, staff_h = _login(app, "academic_staff")
    wf_id = _upload(staff, staff_h, b"typed").json["document"]["workflow"]["id"]

    bodies = (
        {"action": 5},
        {"action": ["approve"]},
        {"action": "approve", "signature": {"data": SIGNATURE}},
        {"action": "approve", "comment": 7},
        {"action": "approve", "audience": ["student"]},
        {"action": "approve", "visibility": "dean"},
        {"action": "approve", "visibility": [1]},
    )
    for body in bodies:
        r = staff.post(f"/api/workflows/{wf_id}/actions", json=body, headers=staff_h)
        assert r.status_code == 400, body
        assert r.json["error"] == "invalid_input"

    r = staff.get(f"/api/workflows/{wf_id}")
    assert r.json["currentStep"] == 0
    assert r.json["actions"] == []


def test_seal_failure_is_opaque(app, monkeypatch):
    class _BrokenAead:
        def encrypt(self, nonce, data, associated_data):
            raise RuntimeError("cipher backend unavailable")

    staff, staff_h = _login(app, "academic_staff")
    wf_id = _upload(staff, staff_h, b"sealed").json["document"]["workflow"]["id"]
    monkeypatch.setattr(app.extensions["signature_vault"], "_aead", _BrokenAead())

    r = _act(staff, staff_h, wf_id, signature=SIGNATURE)
    assert r.status_code == 500
    assert r.json == {"error": "signature_seal_failed", "message": "Operation failed."}

    r = staff.get(f"/api/workflows/{wf_id}")
    assert r.json["currentStep"] == 0
    assert r.json["actions"] == []


def test_admin_user_management(app):
    admin, admin_h = _login(app, "admin")
    staff, staff_h = _login(app, "academic_staff")
    new = {"email": "New.Reviewer@Example.com", "password": "long-enough", "fullName": "New Reviewer", "role": "dean"}

    assert staff.post("/api/admin/users", json=new, headers=staff_h).status_code == 403
    assert staff.get("/api/admin/users").status_code == 403

    r = admin.post("/api/admin/users", json=new, headers=admin_h)
    assert r.status_code == 201
    assert r.json["email"] == "new.reviewer@example.com"
    assert r.json["role"] == "dean"
    assert r.json["isActive"] is True
    assert r.json["hasSignature"] is False
    user_id = r.json["id"]

    r = admin.post("/api/admin/users", json={**new, "email": "new.reviewer@example.com"}, headers=admin_h)
    assert r.status_code == 409
    assert r.json["error"] == "duplicate_account"

    invalid = (
        {**new, "email": "not-an-email"},
        {**new, "email": "a@example.com", "role": "wizard"},
        {**new, "email": "b@example.com", "password": "short"},
        {**new, "email": "c@example.com", "fullName": 5},
        {**new, "email": "d@example.com", "fullName": "  "},
    )
    for body in invalid:
        r = admin.post("/api/admin/users", json=body, headers=admin_h)
        assert r.status_code == 400, body
        assert r.json["error"] == "invalid_input"

    listed = admin.get("/api/admin/users").json
    assert len(listed) == len(ROLES) + 1
    assert "new.reviewer@example.com" in [u["email"] for u in listed]

    reviewer = app.test_client()
    creds = {"email": "new.reviewer@example.com", "password": "long-enough"}
    assert reviewer.post("/auth/login", json=creds).status_code == 200

    r = admin.patch(f"/api/admin/users/{user_id}/deactivate", headers=admin_h)
    assert r.status_code == 200
    assert r.json["isActive"] is False
    # The open session is dropped and new logins are refused.
    assert reviewer.get("/auth/me").status_code == 401
    assert app.test_client().post("/auth/login", json=creds).status_code == 401

    r = admin.patch(f"/api/admin/users/{user_id}/activate", headers=admin_h)
    assert r.json["isActive"] is True
    assert app.test_client().post("/auth/login", json=creds).status_code == 200

    admin_id = admin.get("/auth/me").json["user"]["id"]
    r = admin.patch(f"/api/admin/users/{admin_id}/deactivate", headers=admin_h)
    assert r.status_code == 400
    assert r.json["error"] == "invalid_input"
    assert admin.patch("/api/admin/users/999/activate", headers=admin_h).status_code == 404

    with session_scope(app) as s:
        events = [
            e.action
            for e in s.query(AuditEvent).filter(AuditEvent.action.like("user.%")).order_by(AuditEvent.id)
        ]
    assert events == ["user.create", "user.deactivate", "user.activate"]


def test_signature_upload_is_sealed_at_rest(app):
    dean, dean_h = _login(app, "dean")
    admin, admin_h = _login(app, "admin")
    student, student_h = _login(app, "student")
    expected = "data:image/png;base64," + base64.b64encode(PNG).decode("ascii")

    r = _send_signature(dean, dean_h, "/api/profile/signature")
    assert r.status_code == 200
    assert r.json["hasSignature"] is True
    assert r.json["signature"] == expected
    assert dean.get("/auth/me").json["user"]["signature"] == expected

    with session_scope(app) as s:
        stored = s.query(User).filter(User.email == "dean@example.com").one().signature
        staff_id = s.query(User).filter(User.email == "academic_staff@example.com").one().id
    assert stored.startswith("encrypted:")
    assert app.extensions["signature_vault"].decrypt(stored) == expected

    r = _send_signature(dean, dean_h, "/api/profile/signature", b"%PDF-1.7", "sig.pdf", "application/pdf")
    assert r.status_code == 400
    assert r.json["error"] == "invalid_input"
    r = dean.post("/api/profile/signature", data={}, content_type="multipart/form-data", headers=dean_h)
    assert r.status_code == 400
    assert r.json["error"] == "missing_file"

    # Only approver roles keep a signature of their own.
    assert _send_signature(student, student_h, "/api/profile/signature").status_code == 403
    assert _send_signature(admin, admin_h, "/api/profile/signature").status_code == 403

    url = f"/api/admin/users/{staff_id}/signature"
    assert _send_signature(dean, dean_h, url).status_code == 403
    r = _send_signature(admin, admin_h, url, filename="sig.jpg", mimetype="image/jpeg")
    assert r.status_code == 200
    assert r.json["signature"].startswith("data:image/jpeg;base64,")

    listed = {u["email"]: u for u in admin.get("/api/admin/users").json}
    assert listed["academic_staff@example.com"]["hasSignature"] is True
    assert listed["department_head@example.com"]["hasSignature"] is False
    assert "signature" not in listed["dean@example.com"]
