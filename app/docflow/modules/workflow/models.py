from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.docflow.models import Base


class Workflow(Base):
    __tablename__ = "workflows"
    __table_args__ = (
        CheckConstraint("total_steps > 0", name="ck_workflows_total_steps"),
        CheckConstraint("current_step >= 0 AND current_step <= total_steps", name="ck_workflows_current_step"),
        CheckConstraint("NOT (is_completed AND is_rejected)", name="ck_workflows_single_terminal"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # 1:1 with the document; the workflow is the source of the document's status.
    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    template_id: Mapped[int | None] = mapped_column(
        ForeignKey("document_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    # Snapshot of the template's approval path at creation; never edited.
    step_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False)

    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.is_completed or self.is_rejected

    @property
    def required_role(self) -> str | None:
        if self.is_terminal or self.current_step >= self.total_steps:
            return None
        return self.step_roles[self.current_step]
