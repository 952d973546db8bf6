from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.docflow.constants import ACTION_KINDS
from app.docflow.models import Base, make_append_only


class WorkflowAction(Base):
    __tablename__ = "workflow_actions"
    __table_args__ = (
        CheckConstraint(
            "action IN (" + ",".join(f"'{a}'" for a in ACTION_KINDS) + ")",
            name="ck_workflow_actions_action",
        ),
        Index("idx_workflow_actions_workflow", "workflow_id", "created_at"),
        Index("idx_workflow_actions_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[int] = mapped_column(ForeignKey("workflows.id", ondelete="RESTRICT"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    action: Mapped[str] = mapped_column(String(16), nullable=False)
    # Step index the action was taken at (before any increment).
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Sealed by SignatureVault when it is image data; bare names pass through.
    signature: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class VerificationAttempt(Base):
    __tablename__ = "verification_attempts"
    __table_args__ = (
        Index("idx_verification_attempts_hash", "document_hash"),
        Index("idx_verification_attempts_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


make_append_only(WorkflowAction)
make_append_only(VerificationAttempt)
