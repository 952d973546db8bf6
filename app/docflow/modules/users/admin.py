from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request

from app.docflow.audit import record_event
from app.docflow.constants import APPROVER_ROLES
from app.docflow.db import db_session
from app.docflow.models import User
from app.docflow.modules.integrity.vault import current_vault
from app.docflow.modules.users.service import (
    create_user,
    get_user,
    list_users,
    set_active,
    store_signature,
    user_to_dict,
)
from app.docflow.rbac import current_user, require_role

bp = Blueprint("users", __name__)


def _upload_signature(target: User) -> User | None:
    f = request.files.get("signature")
    if not f or not f.filename:
        return None
    store_signature(target, current_vault(), f.read(), f.mimetype)
    return target


@bp.get("/admin/users")
@require_role("admin")
def admin_list_users():
    s = db_session()
    return jsonify([user_to_dict(u) for u in list_users(s)])


@bp.post("/admin/users")
@require_role("admin")
def admin_create_user():
    s = db_session()
    actor = current_user()
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        abort(400)
    u = create_user(
        s,
        email=body.get("email"),
        password=body.get("password"),
        full_name=body.get("fullName"),
        role=body.get("role"),
    )
    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(u.id),
        metadata={"email": u.email, "role": u.role},
    )
    s.commit()
    return jsonify(user_to_dict(u)), 201


def _change_status(user_id: int, active: bool):
    s = db_session()
    actor = current_user()
    u = get_user(s, user_id)
    before = u.is_active
    set_active(u, active, actor=actor)
    record_event(
        s,
        actor=actor,
        action="user.activate" if active else "user.deactivate",
        entity_type="User",
        entity_id=str(u.id),
        metadata={"before": {"is_active": before}, "after": {"is_active": u.is_active}},
    )
    s.commit()
    return jsonify(user_to_dict(u))


@bp.patch("/admin/users/<int:user_id>/activate")
@require_role("admin")
def admin_activate_user(user_id: int):
    return _change_status(user_id, True)


@bp.patch("/admin/users/<int:user_id>/deactivate")
@require_role("admin")
def admin_deactivate_user(user_id: int):
    return _change_status(user_id, False)


@bp.post("/admin/users/<int:user_id>/signature")
@require_role("admin")
def admin_upload_signature(user_id: int):
    s = db_session()
    actor = current_user()
    u = get_user(s, user_id)
    if _upload_signature(u) is None:
        return jsonify({"error": "missing_file", "message": "No file uploaded"}), 400
    record_event(s, actor=actor, action="user.signature_upload", entity_type="User", entity_id=str(u.id))
    s.commit()
    current_app.logger.info("signature stored for user %s by admin %s", u.id, actor.id)
    return jsonify(user_to_dict(u, current_vault()))


@bp.post("/profile/signature")
@require_role(*sorted(APPROVER_ROLES))
def profile_upload_signature():
    s = db_session()
    u = current_user()
    if _upload_signature(u) is None:
        return jsonify({"error": "missing_file", "message": "No file uploaded"}), 400
    record_event(s, actor=u, action="user.signature_upload", entity_type="User", entity_id=str(u.id))
    s.commit()
    return jsonify(user_to_dict(u, current_vault()))
