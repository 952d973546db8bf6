from __future__ import annotations

import logging
import os

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.utils import secure_filename

from app.docflow.constants import DEFAULT_APPROVAL_PATH, DOCUMENT_TYPES
from app.docflow.errors import HashCollision, InvalidTemplate, NotFound
from app.docflow.models import User
from app.docflow.modules.documents.models import Document, DocumentTemplate
from app.docflow.modules.integrity.hashing import HashService
from app.docflow.modules.ledger.service import DocumentCreatedEntry
from app.docflow.modules.workflow.models import Workflow
from app.docflow.modules.workflow.service import WorkflowEngine, validate_approval_path
from app.docflow.storage import Storage, StorageError

logger = logging.getLogger(__name__)


def sanitize_upload_filename(filename: str) -> str:
    fn = secure_filename(filename or "")
    return fn or "document.bin"


def normalize_doc_type(doc_type: str | None) -> str:
    dt = (doc_type or "").strip().lower()
    return dt if dt in DOCUMENT_TYPES else "other"


def storage_key_for(fingerprint: str, filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return f"documents/{fingerprint[:2]}/{fingerprint}{ext}"


def create_document(
    s: Session,
    engine: WorkflowEngine,
    storage: Storage,
    *,
    owner: User,
    title: str,
    data: bytes,
    filename: str,
    content_type: str | None = None,
    description: str | None = None,
    template: DocumentTemplate | None = None,
) -> tuple[Document, Workflow]:
    """
    Fingerprint the bytes, persist the document and its workflow in the
    caller's transaction, store the bytes and record the creation in the ledger.
    """
    fingerprint = HashService.fingerprint(data)
    if HashService(s).find(fingerprint) is not None:
        # Uniqueness is global; never resolved automatically.
        logger.error("hash collision on upload fingerprint=%s owner=%s", fingerprint, owner.id)
        raise HashCollision(f"A document with fingerprint {fingerprint} already exists.")

    if template is not None:
        doc_type = normalize_doc_type(template.doc_type)
        approval_source: DocumentTemplate | tuple[str, ...] = template
    else:
        doc_type = "other"
        approval_source = DEFAULT_APPROVAL_PATH

    safe_name = sanitize_upload_filename(filename)
    doc = Document(
        title=title.strip(),
        description=(description or "").strip() or None,
        doc_type=doc_type,
        filename=safe_name,
        content_type=(content_type or "application/octet-stream").strip(),
        size_bytes=len(data),
        storage_key=storage_key_for(fingerprint, safe_name),
        fingerprint=fingerprint,
        status="pending",
        owner_user_id=owner.id,
    )
    s.add(doc)
    try:
        s.flush()
    except IntegrityError as e:
        # Lost a concurrent upload of the same bytes.
        raise HashCollision(f"A document with fingerprint {fingerprint} already exists.") from e

    wf = engine.instantiate(approval_source, doc)
    engine.ledger.append(DocumentCreatedEntry(document=doc, actor=owner, workflow_id=wf.id))

    storage.put_bytes(doc.storage_key, data, content_type=doc.content_type)
    return doc, wf


def read_document_bytes(storage: Storage, doc: Document) -> bytes:
    """Fetch stored bytes and check them against the recorded fingerprint."""
    data = storage.get_bytes(doc.storage_key)
    actual = HashService.fingerprint(data)
    if actual != doc.fingerprint:
        logger.error("stored bytes do not match fingerprint document=%s expected=%s got=%s", doc.id, doc.fingerprint, actual)
        raise StorageError(f"Stored content for document {doc.id} does not match its fingerprint.")
    return data


def get_template(s: Session, template_id: int) -> DocumentTemplate:
    t = s.get(DocumentTemplate, template_id)
    if t is None:
        raise NotFound(f"Template {template_id} not found.")
    return t


def create_template(
    s: Session,
    *,
    name: str,
    doc_type: str,
    approval_path: object,
    description: str | None = None,
    is_active: bool = True,
) -> DocumentTemplate:
    name = (name or "").strip()
    if not name:
        raise InvalidTemplate("Template name is required.")
    t = DocumentTemplate(
        name=name,
        doc_type=normalize_doc_type(doc_type),
        description=(description or "").strip() or None,
        approval_path=validate_approval_path(approval_path),
        is_active=bool(is_active),
    )
    s.add(t)
    s.flush()
    return t


def update_template(s: Session, t: DocumentTemplate, changes: dict) -> DocumentTemplate:
    """Template edits never reach workflows that already snapshotted the path."""
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise InvalidTemplate("Template name is required.")
        t.name = name
    if "doc_type" in changes:
        t.doc_type = normalize_doc_type(changes["doc_type"])
    if "description" in changes:
        t.description = (changes["description"] or "").strip() or None
    if "approval_path" in changes:
        t.approval_path = validate_approval_path(changes["approval_path"])
    if "is_active" in changes:
        t.is_active = bool(changes["is_active"])
    s.flush()
    return t


def templates_for_role(s: Session, role: str) -> list[DocumentTemplate]:
    templates = s.scalars(
        select(DocumentTemplate).where(DocumentTemplate.is_active.is_(True)).order_by(DocumentTemplate.name.asc())
    ).all()
    if role == "admin":
        return list(templates)
    return [t for t in templates if role in (t.approval_path or [])]


def documents_for_owner(s: Session, owner: User) -> list[Document]:
    return list(
        s.scalars(
            select(Document).where(Document.owner_user_id == owner.id).order_by(Document.created_at.desc(), Document.id.desc())
        )
    )
