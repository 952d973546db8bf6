from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.docflow.constants import ROLES
from app.docflow.errors import LedgerImmutable


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN (" + ",".join(f"'{r}'" for r in ROLES) + ")",
            name="ck_users_role",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    # Exactly one role from the closed enumeration; no hierarchy.
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    # Sealed image data URL (see modules/integrity/vault.py); never stored in the clear.
    signature: Mapped[str | None] = mapped_column(Text, nullable=True)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Generic sink for document creation, auth and template administration;
    workflow actions and verification attempts have their own ledger tables.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
        Index("idx_audit_events_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "document.created"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Document"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


def _refuse_mutation(mapper, connection, target) -> None:  # noqa: ARG001
    raise LedgerImmutable(f"{type(target).__name__} rows are append-only", id=getattr(target, "id", None))


def make_append_only(cls: type) -> type:
    """Block ORM-level UPDATE and DELETE for a ledger table."""
    event.listen(cls, "before_update", _refuse_mutation)
    event.listen(cls, "before_delete", _refuse_mutation)
    return cls


make_append_only(AuditEvent)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.docflow.modules.documents.models import Document, DocumentTemplate  # noqa: E402,F401
from app.docflow.modules.workflow.models import Workflow  # noqa: E402,F401
from app.docflow.modules.ledger.models import VerificationAttempt, WorkflowAction  # noqa: E402,F401
