import json
from typing import Any

from flask import g, has_app_context, has_request_context, request
from sqlalchemy.orm import Session

from app.docflow.models import AuditEvent, User


def _request_context() -> tuple[str | None, str | None]:
    rid = getattr(g, "request_id", None) if has_app_context() else None
    ip = request.remote_addr if has_request_context() else None
    return rid, ip


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    rid, ip = _request_context()
    ev = AuditEvent(
        request_id=request_id or rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=ip,
    )
    s.add(ev)
    return ev
