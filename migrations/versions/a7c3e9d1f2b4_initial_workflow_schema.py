"""Initial document workflow schema.

Revision ID: a7c3e9d1f2b4
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a7c3e9d1f2b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ROLES = (
    "student",
    "academic_staff",
    "department_head",
    "dean",
    "vice_chancellor",
    "assistant_registrar",
    "course_unit",
    "admin",
)
_ACTIONS = ("uploaded", "reviewed", "approved", "rejected", "signed", "forwarded", "completed")


def _in_list(column: str, values: Sequence[str]) -> str:
    return f"{column} IN (" + ",".join(f"'{v}'" for v in values) + ")"


def _table_exists(name: str) -> bool:
    return name in sa.inspect(op.get_bind()).get_table_names()


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("full_name", sa.String(255), nullable=False),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role", sa.String(32), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            sa.CheckConstraint(_in_list("role", _ROLES), name="ck_users_role"),
        )

    if not _table_exists("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )
        op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
        op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])

    if not _table_exists("document_templates"):
        op.create_table(
            "document_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("doc_type", sa.String(64), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("approval_path", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists("documents"):
        op.create_table(
            "documents",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("doc_type", sa.String(64), nullable=False, server_default="other"),
            sa.Column("filename", sa.String(255), nullable=False),
            sa.Column("content_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
            sa.Column("size_bytes", sa.Integer(), nullable=False),
            sa.Column("storage_key", sa.String(512), nullable=False),
            sa.Column("fingerprint", sa.String(64), nullable=False, unique=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("owner_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists("workflows"):
        op.create_table(
            "workflows",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "document_id",
                sa.Integer(),
                sa.ForeignKey("documents.id", ondelete="RESTRICT"),
                nullable=False,
                unique=True,
            ),
            sa.Column(
                "template_id",
                sa.Integer(),
                sa.ForeignKey("document_templates.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_steps", sa.Integer(), nullable=False),
            sa.Column("step_roles", sa.JSON(), nullable=False),
            sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_rejected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("total_steps > 0", name="ck_workflows_total_steps"),
            sa.CheckConstraint("current_step >= 0 AND current_step <= total_steps", name="ck_workflows_current_step"),
            sa.CheckConstraint("NOT (is_completed AND is_rejected)", name="ck_workflows_single_terminal"),
        )

    if not _table_exists("workflow_actions"):
        op.create_table(
            "workflow_actions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("workflow_id", sa.Integer(), sa.ForeignKey("workflows.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("action", sa.String(16), nullable=False),
            sa.Column("step", sa.Integer(), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("signature", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(_in_list("action", _ACTIONS), name="ck_workflow_actions_action"),
        )
        op.create_index("idx_workflow_actions_workflow", "workflow_actions", ["workflow_id", "created_at"])
        op.create_index("idx_workflow_actions_user", "workflow_actions", ["user_id"])

    if not _table_exists("verification_attempts"):
        op.create_table(
            "verification_attempts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("document_hash", sa.String(128), nullable=False),
            sa.Column("is_verified", sa.Boolean(), nullable=False),
            sa.Column("ip_address", sa.String(64), nullable=True),
            sa.Column("user_agent", sa.String(512), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_verification_attempts_hash", "verification_attempts", ["document_hash"])
        op.create_index("idx_verification_attempts_created_at", "verification_attempts", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_verification_attempts_created_at", table_name="verification_attempts")
    op.drop_index("idx_verification_attempts_hash", table_name="verification_attempts")
    op.drop_table("verification_attempts")
    op.drop_index("idx_workflow_actions_user", table_name="workflow_actions")
    op.drop_index("idx_workflow_actions_workflow", table_name="workflow_actions")
    op.drop_table("workflow_actions")
    op.drop_table("workflows")
    op.drop_table("documents")
    op.drop_table("document_templates")
    op.drop_index("idx_audit_events_created_at", table_name="audit_events")
    op.drop_index("idx_audit_events_entity", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("users")
