"""
Append-only audit ledger.

Three streams make up the ledger:
- workflow_actions        (one row per successful advance)
- audit_events            (action="document.created")
- verification_attempts   (one row per public hash check)

append() writes and flushes inside the caller's transaction, so a failed
ledger write fails the whole operation. query() returns a lazy, restartable
view that merges the streams in timestamp order.
"""
from __future__ import annotations

import heapq
import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.docflow.audit import record_event
from app.docflow.models import AuditEvent, User
from app.docflow.modules.documents.models import Document
from app.docflow.modules.ledger.models import VerificationAttempt, WorkflowAction
from app.docflow.modules.workflow.models import Workflow

logger = logging.getLogger(__name__)

DOCUMENT_CREATED = "document.created"

KIND_WORKFLOW_ACTION = "workflow_action"
KIND_DOCUMENT_CREATED = "document_created"
KIND_VERIFICATION = "verification"

# Tie-break for identical timestamps: creation, then actions, then checks.
_KIND_RANK = {KIND_DOCUMENT_CREATED: 0, KIND_WORKFLOW_ACTION: 1, KIND_VERIFICATION: 2}


@dataclass(frozen=True)
class WorkflowActionEntry:
    workflow_id: int
    user_id: int
    action: str
    step: int
    comment: str | None = None
    # Already sealed by SignatureVault (or a passthrough value).
    signature: str | None = None


@dataclass(frozen=True)
class DocumentCreatedEntry:
    document: Document
    actor: User
    workflow_id: int | None = None


@dataclass(frozen=True)
class VerificationAttemptEntry:
    document_hash: str
    is_verified: bool
    ip_address: str | None = None
    user_agent: str | None = None


LedgerInput = Union[WorkflowActionEntry, DocumentCreatedEntry, VerificationAttemptEntry]


@dataclass(frozen=True)
class LedgerEntry:
    kind: str
    id: int
    created_at: datetime
    actor_id: int | None = None
    document_id: int | None = None
    workflow_id: int | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def sort_key(self) -> tuple:
        return (self.created_at, _KIND_RANK[self.kind], self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "id": self.id,
            "timestamp": self.created_at.isoformat(),
            "actorId": self.actor_id,
            "documentId": self.document_id,
            "workflowId": self.workflow_id,
            **self.data,
        }


@dataclass(frozen=True)
class LedgerFilter:
    document_id: int | None = None
    workflow_id: int | None = None
    actor_id: int | None = None
    newest_first: bool = False


class LedgerQuery:
    """
    Iterable over ledger entries matching a filter.

    Nothing is read until iteration starts; each new iteration re-runs the
    underlying queries, so the view always reflects current ledger state.
    """

    def __init__(self, s: Session, flt: LedgerFilter) -> None:
        self.s = s
        self.filter = flt

    def __iter__(self) -> Iterator[LedgerEntry]:
        streams = [self._document_events(), self._workflow_actions(), self._verifications()]
        return heapq.merge(*streams, key=lambda e: e.sort_key, reverse=self.filter.newest_first)

    def _order(self, *cols):
        if self.filter.newest_first:
            return [c.desc() for c in cols]
        return [c.asc() for c in cols]

    def _workflow_actions(self) -> Iterator[LedgerEntry]:
        f = self.filter
        stmt = select(WorkflowAction, Workflow.document_id).join(Workflow, Workflow.id == WorkflowAction.workflow_id)
        if f.workflow_id is not None:
            stmt = stmt.where(WorkflowAction.workflow_id == f.workflow_id)
        if f.document_id is not None:
            stmt = stmt.where(Workflow.document_id == f.document_id)
        if f.actor_id is not None:
            stmt = stmt.where(WorkflowAction.user_id == f.actor_id)
        stmt = stmt.order_by(*self._order(WorkflowAction.created_at, WorkflowAction.id))
        for action, document_id in self.s.execute(stmt):
            yield LedgerEntry(
                kind=KIND_WORKFLOW_ACTION,
                id=action.id,
                created_at=action.created_at,
                actor_id=action.user_id,
                document_id=document_id,
                workflow_id=action.workflow_id,
                data={
                    "action": action.action,
                    "step": action.step,
                    "comment": action.comment,
                    "signed": action.signature is not None,
                },
            )

    def _document_events(self) -> Iterator[LedgerEntry]:
        f = self.filter
        # Creation events carry no workflow-scoped meaning of their own.
        if f.workflow_id is not None:
            return
        stmt = select(AuditEvent).where(AuditEvent.action == DOCUMENT_CREATED)
        if f.document_id is not None:
            stmt = stmt.where(AuditEvent.entity_type == "Document", AuditEvent.entity_id == str(f.document_id))
        if f.actor_id is not None:
            stmt = stmt.where(AuditEvent.actor_user_id == f.actor_id)
        stmt = stmt.order_by(*self._order(AuditEvent.created_at, AuditEvent.id))
        for ev in self.s.scalars(stmt):
            meta = json.loads(ev.metadata_json) if ev.metadata_json else {}
            yield LedgerEntry(
                kind=KIND_DOCUMENT_CREATED,
                id=ev.id,
                created_at=ev.created_at,
                actor_id=ev.actor_user_id,
                document_id=int(ev.entity_id) if ev.entity_id else None,
                workflow_id=meta.get("workflow_id"),
                data={"title": meta.get("title"), "docType": meta.get("doc_type"), "hash": meta.get("fingerprint")},
            )

    def _verifications(self) -> Iterator[LedgerEntry]:
        f = self.filter
        # Verification attempts are anonymous and not tied to a workflow.
        if f.workflow_id is not None or f.actor_id is not None:
            return
        stmt = select(VerificationAttempt)
        document_id = None
        if f.document_id is not None:
            doc = self.s.get(Document, f.document_id)
            if doc is None:
                return
            document_id = doc.id
            stmt = stmt.where(VerificationAttempt.document_hash == doc.fingerprint)
        stmt = stmt.order_by(*self._order(VerificationAttempt.created_at, VerificationAttempt.id))
        for att in self.s.scalars(stmt):
            yield LedgerEntry(
                kind=KIND_VERIFICATION,
                id=att.id,
                created_at=att.created_at,
                document_id=document_id,
                data={
                    "documentHash": att.document_hash,
                    "isVerified": att.is_verified,
                    "ipAddress": att.ip_address,
                    "userAgent": att.user_agent,
                },
            )


class AuditLedger:
    def __init__(self, s: Session) -> None:
        self.s = s

    def append(self, entry: LedgerInput) -> WorkflowAction | AuditEvent | VerificationAttempt:
        if isinstance(entry, WorkflowActionEntry):
            row = WorkflowAction(
                workflow_id=entry.workflow_id,
                user_id=entry.user_id,
                action=entry.action,
                step=entry.step,
                comment=entry.comment,
                signature=entry.signature,
            )
            self.s.add(row)
        elif isinstance(entry, DocumentCreatedEntry):
            doc = entry.document
            row = record_event(
                self.s,
                actor=entry.actor,
                action=DOCUMENT_CREATED,
                entity_type="Document",
                entity_id=str(doc.id),
                metadata={
                    "title": doc.title,
                    "doc_type": doc.doc_type,
                    "fingerprint": doc.fingerprint,
                    "workflow_id": entry.workflow_id,
                },
            )
        elif isinstance(entry, VerificationAttemptEntry):
            row = VerificationAttempt(
                document_hash=entry.document_hash[:128],
                is_verified=entry.is_verified,
                ip_address=entry.ip_address,
                user_agent=(entry.user_agent or None) and entry.user_agent[:512],
            )
            self.s.add(row)
        else:
            raise TypeError(f"Unsupported ledger entry: {type(entry).__name__}")

        # Surface persistence failures here, inside the caller's transaction.
        self.s.flush()
        logger.debug("ledger append %s id=%s", type(entry).__name__, row.id)
        return row

    def query(self, flt: LedgerFilter | None = None) -> LedgerQuery:
        return LedgerQuery(self.s, flt or LedgerFilter())

    def workflow_history(self, workflow_id: int) -> list[tuple[WorkflowAction, User]]:
        stmt = (
            select(WorkflowAction, User)
            .join(User, User.id == WorkflowAction.user_id)
            .where(WorkflowAction.workflow_id == workflow_id)
            .order_by(WorkflowAction.created_at.asc(), WorkflowAction.id.asc())
        )
        return [(a, u) for a, u in self.s.execute(stmt)]
