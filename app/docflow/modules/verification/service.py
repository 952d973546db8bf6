from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.docflow.modules.integrity.hashing import HashService, is_valid_digest, normalize_digest
from app.docflow.modules.ledger.service import AuditLedger, VerificationAttemptEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMetadata:
    ip_address: str | None = None
    user_agent: str | None = None


class VerificationPortal:
    """
    Public, unauthenticated hash check.

    Every call appends exactly one VerificationAttempt, matched or not, and
    the answer never includes who owns the document or what it contains.
    """

    def __init__(self, s: Session, ledger: AuditLedger | None = None) -> None:
        self.s = s
        self.hashes = HashService(s)
        self.ledger = ledger or AuditLedger(s)

    def check_hash(self, digest: str, request_metadata: RequestMetadata | None = None) -> dict[str, Any]:
        meta = request_metadata or RequestMetadata()
        well_formed = is_valid_digest(digest)
        queried = normalize_digest(digest) if well_formed else (digest or "").strip()

        result = self.hashes.verify(queried)
        self.ledger.append(
            VerificationAttemptEntry(
                document_hash=queried,
                is_verified=result.found,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        )
        logger.info("verification attempt hash=%s verified=%s ip=%s", queried[:16], result.found, meta.ip_address)

        out: dict[str, Any] = {
            "isVerified": result.found,
            "checkedAt": datetime.utcnow().isoformat(),
        }
        if not well_formed:
            out["message"] = "Invalid hash format"
        elif result.found and result.document is not None:
            out["document"] = {
                "type": result.document.doc_type,
                "status": result.document.status,
                "issueDate": result.document.issued_at.isoformat(),
            }
        else:
            out["message"] = "Document not found"
        return out
