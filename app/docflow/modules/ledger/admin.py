from __future__ import annotations

from itertools import islice

from flask import Blueprint, abort, jsonify, request

from app.docflow.db import db_session
from app.docflow.modules.ledger.service import AuditLedger, LedgerFilter
from app.docflow.rbac import require_role

bp = Blueprint("ledger", __name__)

_MAX_LIMIT = 1000


def _int_arg(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        abort(400)
    return int(raw)


@bp.get("/admin/audit")
@require_role("admin")
def audit_log():
    limit = _int_arg("limit") or 100
    flt = LedgerFilter(
        document_id=_int_arg("document_id"),
        workflow_id=_int_arg("workflow_id"),
        actor_id=_int_arg("actor_id"),
        newest_first=(request.args.get("order") or "desc").lower() != "asc",
    )
    entries = AuditLedger(db_session()).query(flt)
    return jsonify([e.to_dict() for e in islice(entries, min(limit, _MAX_LIMIT))])
