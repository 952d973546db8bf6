from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.docflow.db import db_session
from app.docflow.modules.integrity.hashing import is_valid_digest
from app.docflow.modules.verification.service import RequestMetadata, VerificationPortal

bp = Blueprint("public", __name__)


@bp.post("/verify")
def verify_document():
    """
    Public verification route; no account needed. The attempt is recorded
    whatever the outcome, including malformed input.
    """
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        digest = body.get("hash")
    else:
        digest = request.form.get("hash")
    digest = digest if isinstance(digest, str) else ""

    s = db_session()
    result = VerificationPortal(s).check_hash(
        digest,
        RequestMetadata(ip_address=request.remote_addr, user_agent=request.headers.get("User-Agent")),
    )
    s.commit()
    return jsonify(result), (200 if is_valid_digest(digest) else 400)
