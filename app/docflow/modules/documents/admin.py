from __future__ import annotations

import io

from flask import Blueprint, abort, current_app, jsonify, request, send_file
from sqlalchemy import select

from app.docflow.audit import record_event
from app.docflow.constants import UPLOADER_ROLES
from app.docflow.db import db_session
from app.docflow.errors import InvalidTemplate, NotFound
from app.docflow.models import User
from app.docflow.modules.documents.models import Document, DocumentTemplate
from app.docflow.modules.documents.service import (
    create_document,
    create_template,
    documents_for_owner,
    get_template,
    read_document_bytes,
    templates_for_role,
    update_template,
)
from app.docflow.modules.integrity.vault import current_vault
from app.docflow.modules.workflow.models import Workflow
from app.docflow.modules.workflow.service import WorkflowEngine
from app.docflow.rbac import current_user, require_login, require_role
from app.docflow.storage import storage_from_config

bp = Blueprint("documents", __name__)


def document_to_dict(d: Document, wf: Workflow | None = None) -> dict:
    out = {
        "id": d.id,
        "title": d.title,
        "description": d.description,
        "type": d.doc_type,
        "fileName": d.filename,
        "mimeType": d.content_type,
        "fileSize": d.size_bytes,
        "hash": d.fingerprint,
        "status": d.status,
        "userId": d.owner_user_id,
        "createdAt": d.created_at.isoformat(),
    }
    if wf is not None:
        out["workflow"] = {
            "id": wf.id,
            "currentStep": wf.current_step,
            "totalSteps": wf.total_steps,
            "stepRoles": list(wf.step_roles),
            "isCompleted": wf.is_completed,
            "isRejected": wf.is_rejected,
        }
    return out


def template_to_dict(t: DocumentTemplate) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "type": t.doc_type,
        "description": t.description,
        "approvalPath": list(t.approval_path or []),
        "isActive": t.is_active,
        "createdAt": t.created_at.isoformat(),
        "updatedAt": t.updated_at.isoformat(),
    }


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        abort(400)
    return body


def _can_read_document(user: User, d: Document, wf: Workflow | None) -> bool:
    if user.role == "admin" or d.owner_user_id == user.id:
        return True
    return wf is not None and user.role in (wf.step_roles or [])


@bp.post("/documents")
@require_role(*sorted(UPLOADER_ROLES))
def upload_document():
    s = db_session()
    u = current_user()

    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"error": "missing_file", "message": "No file uploaded"}), 400
    title = (request.form.get("title") or "").strip()
    if not title:
        return jsonify({"error": "missing_title", "message": "Title is required"}), 400

    template = None
    raw_template_id = (request.form.get("template_id") or "").strip()
    if raw_template_id:
        if not raw_template_id.isdigit():
            raise InvalidTemplate(f"Invalid template id: {raw_template_id!r}.")
        template = get_template(s, int(raw_template_id))

    data = f.read()
    engine = WorkflowEngine(s, current_vault())
    doc, wf = create_document(
        s,
        engine,
        storage_from_config(current_app.config),
        owner=u,
        title=title,
        data=data,
        filename=f.filename,
        content_type=f.mimetype,
        description=request.form.get("description"),
        template=template,
    )
    s.commit()
    current_app.logger.info("document %s uploaded by user %s hash=%s", doc.id, u.id, doc.fingerprint)
    return jsonify({"document": document_to_dict(doc, wf), "hash": doc.fingerprint}), 201


@bp.get("/documents")
@require_login
def list_my_documents():
    s = db_session()
    u = current_user()
    engine = WorkflowEngine(s, current_vault())
    docs = documents_for_owner(s, u)
    return jsonify([document_to_dict(d, engine.get_for_document(d.id)) for d in docs])


@bp.get("/documents/pending")
@require_login
def pending_documents():
    s = db_session()
    u = current_user()
    engine = WorkflowEngine(s, current_vault())
    return jsonify([document_to_dict(d, wf) for d, wf in engine.pending_for_role(u.role)])


@bp.get("/documents/<int:doc_id>/content")
@require_login
def document_content(doc_id: int):
    s = db_session()
    u = current_user()
    d = s.get(Document, doc_id)
    if d is None:
        raise NotFound(f"Document {doc_id} not found.")
    wf = s.scalars(select(Workflow).where(Workflow.document_id == d.id)).one_or_none()
    if not _can_read_document(u, d, wf):
        abort(403)

    data = read_document_bytes(storage_from_config(current_app.config), d)
    record_event(
        s,
        actor=u,
        action="document.download",
        entity_type="Document",
        entity_id=str(d.id),
        metadata={"hash": d.fingerprint},
    )
    s.commit()
    return send_file(io.BytesIO(data), mimetype=d.content_type, as_attachment=True, download_name=d.filename)


@bp.get("/templates")
@require_login
def list_templates():
    s = db_session()
    u = current_user()
    return jsonify([template_to_dict(t) for t in templates_for_role(s, u.role)])


@bp.get("/admin/templates")
@require_role("admin")
def admin_list_templates():
    s = db_session()
    templates = s.scalars(select(DocumentTemplate).order_by(DocumentTemplate.name.asc())).all()
    return jsonify([template_to_dict(t) for t in templates])


@bp.post("/admin/templates")
@require_role("admin")
def admin_create_template():
    s = db_session()
    u = current_user()
    body = _json_body()
    t = create_template(
        s,
        name=body.get("name") or "",
        doc_type=body.get("type") or "other",
        approval_path=body.get("approvalPath"),
        description=body.get("description"),
        is_active=body.get("isActive", True),
    )
    record_event(
        s,
        actor=u,
        action="template.create",
        entity_type="DocumentTemplate",
        entity_id=str(t.id),
        metadata={"approval_path": t.approval_path},
    )
    s.commit()
    return jsonify(template_to_dict(t)), 201


@bp.put("/admin/templates/<int:template_id>")
@require_role("admin")
def admin_update_template(template_id: int):
    s = db_session()
    u = current_user()
    body = _json_body()
    t = get_template(s, template_id)
    mapping = {
        "name": "name",
        "type": "doc_type",
        "description": "description",
        "approvalPath": "approval_path",
        "isActive": "is_active",
    }
    changes = {mapping[k]: v for k, v in body.items() if k in mapping}
    update_template(s, t, changes)
    record_event(
        s,
        actor=u,
        action="template.update",
        entity_type="DocumentTemplate",
        entity_id=str(t.id),
        metadata={"fields": sorted(changes)},
    )
    s.commit()
    return jsonify(template_to_dict(t))


@bp.delete("/admin/templates/<int:template_id>")
@require_role("admin")
def admin_deactivate_template(template_id: int):
    s = db_session()
    u = current_user()
    t = get_template(s, template_id)
    # Workflows may reference the template; it is deactivated, never removed.
    update_template(s, t, {"is_active": False})
    record_event(s, actor=u, action="template.deactivate", entity_type="DocumentTemplate", entity_id=str(t.id))
    s.commit()
    return jsonify(template_to_dict(t))
