from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request

from app.docflow.db import db_session
from app.docflow.errors import InvalidInput
from app.docflow.modules.documents.models import Document
from app.docflow.modules.integrity.vault import current_vault
from app.docflow.modules.ledger.models import WorkflowAction
from app.docflow.modules.workflow.models import Workflow
from app.docflow.modules.workflow.service import WorkflowEngine, format_review_comment
from app.docflow.rbac import current_user, require_login

bp = Blueprint("workflows", __name__)
_TEXT_FIELDS = ("action", "comment", "audience", "signature")


def workflow_to_dict(wf: Workflow) -> dict:
    return {
        "id": wf.id,
        "documentId": wf.document_id,
        "templateId": wf.template_id,
        "currentStep": wf.current_step,
        "totalSteps": wf.total_steps,
        "stepRoles": list(wf.step_roles),
        "requiredRole": wf.required_role,
        "isCompleted": wf.is_completed,
        "isRejected": wf.is_rejected,
        "createdAt": wf.created_at.isoformat(),
        "updatedAt": wf.updated_at.isoformat(),
    }


def action_to_dict(a: WorkflowAction, signature: str | None) -> dict:
    return {
        "id": a.id,
        "workflowId": a.workflow_id,
        "userId": a.user_id,
        "action": a.action,
        "step": a.step,
        "comment": a.comment,
        "signature": signature,
        "createdAt": a.created_at.isoformat(),
    }


def _parse_expected_step(raw: object) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        abort(400)
    try:
        return int(raw)
    except (TypeError, ValueError):
        abort(400)


@bp.get("/workflows/<int:workflow_id>")
@require_login
def workflow_detail(workflow_id: int):
    s = db_session()
    u = current_user()
    vault = current_vault()
    engine = WorkflowEngine(s, vault)
    wf = engine.get(workflow_id)
    doc = s.get(Document, wf.document_id)
    if u.role != "admin" and doc.owner_user_id != u.id and u.role not in wf.step_roles:
        abort(403)

    actions = []
    for a, actor in engine.ledger.workflow_history(wf.id):
        item = action_to_dict(a, vault.decrypt(a.signature))
        item["user"] = {"id": actor.id, "fullName": actor.full_name, "role": actor.role}
        actions.append(item)
    out = workflow_to_dict(wf)
    out["documentStatus"] = doc.status
    out["actions"] = actions
    return jsonify(out)


@bp.post("/workflows/<int:workflow_id>/actions")
@require_login
def workflow_action(workflow_id: int):
    s = db_session()
    u = current_user()
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        abort(400)
    if not body.get("action"):
        return jsonify({"error": "missing_action", "message": "Action is required"}), 400

    for field in _TEXT_FIELDS:
        value = body.get(field)
        if value is not None and not isinstance(value, str):
            raise InvalidInput(f"{field} must be a string.", field=field)
    visibility = body.get("visibility")
    if visibility is not None and (
        not isinstance(visibility, list) or not all(isinstance(v, str) for v in visibility)
    ):
        raise InvalidInput("visibility must be a list of roles.", field="visibility")

    vault = current_vault()
    engine = WorkflowEngine(s, vault)
    row = engine.advance(
        workflow_id,
        u,
        body["action"],
        comment=format_review_comment(body.get("comment"), body.get("audience"), visibility),
        signature=body.get("signature") or None,
        expected_step=_parse_expected_step(body.get("expected_step")),
    )
    s.commit()

    wf = engine.get(workflow_id)
    current_app.logger.info(
        "workflow action %s on workflow %s by user %s (request_id=%s)",
        row.action,
        workflow_id,
        u.id,
        getattr(g, "request_id", None),
    )
    return jsonify(
        {
            "message": "Action processed successfully",
            "action": action_to_dict(row, vault.decrypt(row.signature)),
            "workflow": workflow_to_dict(wf),
        }
    )


@bp.get("/stats/user")
@require_login
def user_stats():
    s = db_session()
    engine = WorkflowEngine(s, current_vault())
    return jsonify(engine.user_stats(current_user()))


@bp.get("/stats/workflow")
@require_login
def workflow_stats():
    s = db_session()
    engine = WorkflowEngine(s, current_vault())
    return jsonify(engine.workflow_stats(current_user().role))
