from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.docflow.modules.documents.models import Document

_DIGEST_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class DocumentSummary:
    """What a verification lookup may reveal about a document. No owner, no content."""

    document_id: int
    doc_type: str
    status: str
    issued_at: datetime


@dataclass(frozen=True)
class VerificationResult:
    found: bool
    document: DocumentSummary | None = None


def is_valid_digest(value: str | None) -> bool:
    return bool(value) and bool(_DIGEST_RE.fullmatch(value.strip()))


def normalize_digest(value: str) -> str:
    return (value or "").strip().lower()


class HashService:
    """
    Content fingerprints (SHA-256, lowercase hex) and lookup by fingerprint.
    """

    def __init__(self, s: Session) -> None:
        self.s = s

    @staticmethod
    def fingerprint(data: bytes) -> str:
        h = hashlib.sha256()
        h.update(data)
        return h.hexdigest()

    def find(self, digest: str) -> Document | None:
        if not is_valid_digest(digest):
            return None
        return self.s.scalars(
            select(Document).where(Document.fingerprint == normalize_digest(digest))
        ).one_or_none()

    def verify(self, digest: str) -> VerificationResult:
        doc = self.find(digest)
        if doc is None:
            return VerificationResult(found=False)
        return VerificationResult(
            found=True,
            document=DocumentSummary(
                document_id=doc.id,
                doc_type=doc.doc_type,
                status=doc.status,
                issued_at=doc.created_at,
            ),
        )
