"""
Workflow state machine.

States: open(step 0 .. N-1), completed, rejected.

    open(k)   --approve-->  open(k+1)     (k+1 < N)
    open(N-1) --approve-->  completed
    open(k)   --reject--->  rejected

completed and rejected are absorbing. "approve" here stands for any
advancing kind (approved / forwarded / signed).

advance() is serialized per workflow with a compare-and-swap UPDATE keyed on
the step value that was read; the action row is inserted in the same
transaction. The loser of a race gets ConcurrentModification and writes
nothing.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import func, not_, select, update
from sqlalchemy.orm import Session

from app.docflow.constants import (
    ACTION_ALIASES,
    ADVANCING_ACTIONS,
    APPROVER_ROLES,
    COMMENT_AUDIENCES,
)
from app.docflow.errors import (
    AlreadyCompleted,
    AlreadyRejected,
    ConcurrentModification,
    InvalidAction,
    InvalidTemplate,
    NotFound,
    RoleMismatch,
)
from app.docflow.models import User
from app.docflow.modules.documents.models import Document, DocumentTemplate
from app.docflow.modules.integrity.vault import SignatureVault
from app.docflow.modules.ledger.models import WorkflowAction
from app.docflow.modules.ledger.service import AuditLedger, WorkflowActionEntry
from app.docflow.modules.workflow.models import Workflow

logger = logging.getLogger(__name__)


def validate_approval_path(path: object) -> list[str]:
    """
    Turn a loosely typed role list into a validated, ordered list of approver
    roles. Unknown roles are rejected here, not at advance() time.
    """
    if isinstance(path, (str, bytes)) or not isinstance(path, Iterable):
        raise InvalidTemplate("Approval path must be a list of roles.")
    roles = list(path)
    if not roles:
        raise InvalidTemplate("Approval path must not be empty.")
    out: list[str] = []
    for role in roles:
        if not isinstance(role, str):
            raise InvalidTemplate(f"Approval path entries must be strings, got {type(role).__name__}.")
        key = role.strip().lower()
        if key not in APPROVER_ROLES:
            raise InvalidTemplate(f"Unknown approver role: {role!r}.")
        out.append(key)
    return out


def normalize_action(action: object) -> str:
    if not isinstance(action, str):
        raise InvalidAction(f"Invalid action: {action!r}.")
    key = action.strip().lower()
    key = ACTION_ALIASES.get(key, key)
    if key not in ADVANCING_ACTIONS and key != "rejected":
        raise InvalidAction(f"Invalid action: {action!r}.")
    return key


def format_review_comment(
    comment: str | None,
    audience: str | None = None,
    visibility: Sequence[str] | None = None,
) -> str | None:
    """
    Prefix a review comment with its audience / visibility tags:
    "[vis:a,b] [aud:student] text".
    """
    text = (comment or "").strip()
    aud = (audience or "").strip().lower()
    if aud in COMMENT_AUDIENCES:
        text = f"[aud:{aud}] {text}".strip()
    if visibility:
        seen: list[str] = []
        for v in visibility:
            v = str(v).strip().lower()
            if v and v not in seen:
                seen.append(v)
        if seen:
            text = f"[vis:{','.join(seen)}] {text}".strip()
    return text or None


def derive_status(wf: Workflow) -> str:
    if wf.is_rejected:
        return "rejected"
    if wf.is_completed:
        return "completed"
    return "in_review"


class WorkflowEngine:
    def __init__(self, s: Session, vault: SignatureVault, ledger: AuditLedger | None = None) -> None:
        self.s = s
        self.vault = vault
        self.ledger = ledger or AuditLedger(s)

    def instantiate(self, template: DocumentTemplate | Sequence[str], document: Document) -> Workflow:
        if isinstance(template, DocumentTemplate):
            if not template.is_active:
                raise InvalidTemplate(f"Template {template.id} is inactive.")
            roles = validate_approval_path(template.approval_path)
            template_id = template.id
        else:
            roles = validate_approval_path(template)
            template_id = None

        if document.id is None:
            self.s.flush()
        existing = self.s.scalars(select(Workflow).where(Workflow.document_id == document.id)).one_or_none()
        if existing is not None:
            raise InvalidTemplate(f"Document {document.id} already has workflow {existing.id}.")

        wf = Workflow(
            document_id=document.id,
            template_id=template_id,
            current_step=0,
            total_steps=len(roles),
            # A copy: later template edits must not reach in-flight workflows.
            step_roles=list(roles),
            is_completed=False,
            is_rejected=False,
        )
        self.s.add(wf)
        document.status = derive_status(wf)
        self.s.flush()
        logger.info("workflow %s created for document %s roles=%s", wf.id, document.id, roles)
        return wf

    def get(self, workflow_id: int) -> Workflow:
        wf = self.s.get(Workflow, workflow_id)
        if wf is None:
            raise NotFound(f"Workflow {workflow_id} not found.")
        return wf

    def get_for_document(self, document_id: int) -> Workflow | None:
        return self.s.scalars(select(Workflow).where(Workflow.document_id == document_id)).one_or_none()

    def advance(
        self,
        workflow_id: int,
        actor: User,
        action: str,
        comment: str | None = None,
        signature: str | None = None,
        expected_step: int | None = None,
    ) -> WorkflowAction:
        wf = self.get(workflow_id)
        if wf.is_completed:
            raise AlreadyCompleted(f"Workflow {wf.id} is already completed.")
        if wf.is_rejected:
            raise AlreadyRejected(f"Workflow {wf.id} was rejected.")

        kind = normalize_action(action)
        observed = wf.current_step
        if expected_step is not None and expected_step != observed:
            raise ConcurrentModification(
                f"Workflow {wf.id} is at step {observed}, not {expected_step}.",
                workflow_id=wf.id,
            )

        required = wf.step_roles[observed]
        if not actor.is_active or actor.role != required:
            raise RoleMismatch(
                f"Step {observed} of workflow {wf.id} requires role {required!r}.",
                workflow_id=wf.id,
                actor_role=actor.role,
            )

        # A plain approval is signed with the approver's name (stored unsealed).
        raw_signature = signature or (actor.full_name if kind == "approved" else None)
        sealed = self.vault.encrypt(raw_signature)

        now = datetime.utcnow()
        if kind == "rejected":
            values: dict[str, object] = {"is_rejected": True, "updated_at": now}
        else:
            next_step = observed + 1
            values = {
                "current_step": next_step,
                "is_completed": next_step == wf.total_steps,
                "updated_at": now,
            }

        result = self.s.execute(
            update(Workflow)
            .where(
                Workflow.id == wf.id,
                Workflow.current_step == observed,
                not_(Workflow.is_completed),
                not_(Workflow.is_rejected),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        # The in-session copy is stale either way; reload on next access.
        self.s.expire(wf)
        if result.rowcount != 1:
            logger.info(
                "workflow %s advance lost race at step %s (user=%s)", workflow_id, observed, actor.id
            )
            raise ConcurrentModification(
                f"Workflow {workflow_id} changed while step {observed} was being processed.",
                workflow_id=workflow_id,
            )

        row = self.ledger.append(
            WorkflowActionEntry(
                workflow_id=workflow_id,
                user_id=actor.id,
                action=kind,
                step=observed,
                comment=comment,
                signature=sealed,
            )
        )

        doc = self.s.get(Document, wf.document_id)
        if doc is not None:
            doc.status = derive_status(wf)
        self.s.flush()

        logger.info(
            "workflow %s %s at step %s by user %s -> step=%s completed=%s rejected=%s",
            wf.id,
            kind,
            observed,
            actor.id,
            wf.current_step,
            wf.is_completed,
            wf.is_rejected,
        )
        return row

    def pending_for_role(self, role: str) -> list[tuple[Document, Workflow]]:
        stmt = (
            select(Document, Workflow)
            .join(Workflow, Workflow.document_id == Document.id)
            .where(not_(Workflow.is_completed), not_(Workflow.is_rejected))
            .order_by(Document.created_at.desc(), Document.id.desc())
        )
        # step_roles is JSON; the current-step match happens here.
        return [(d, wf) for d, wf in self.s.execute(stmt) if wf.required_role == role]

    def workflow_stats(self, role: str) -> dict[str, int]:
        open_count = self.s.scalar(
            select(func.count(Workflow.id)).where(not_(Workflow.is_completed), not_(Workflow.is_rejected))
        )
        today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        approved_today = self.s.scalar(
            select(func.count(WorkflowAction.id))
            .join(User, User.id == WorkflowAction.user_id)
            .where(
                User.role == role,
                WorkflowAction.action.in_(sorted(ADVANCING_ACTIONS)),
                WorkflowAction.created_at >= today,
            )
        )
        return {
            "pendingReview": len(self.pending_for_role(role)),
            "approvedToday": int(approved_today or 0),
            "inWorkflow": int(open_count or 0),
        }

    def user_stats(self, user: User) -> dict[str, int]:
        rows = self.s.execute(
            select(Document.status, func.count(Document.id))
            .where(Document.owner_user_id == user.id)
            .group_by(Document.status)
        ).all()
        counts = {status: n for status, n in rows}
        return {
            "totalDocuments": sum(counts.values()),
            "pendingDocuments": counts.get("pending", 0) + counts.get("in_review", 0),
            "approvedDocuments": counts.get("completed", 0) + counts.get("approved", 0),
            "rejectedDocuments": counts.get("rejected", 0),
        }
