"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("password_hash", sa.String(), nullable=False),
    sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("timezone", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "email_verification_tokens",
    sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("user_id", sa.Uuid(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("otp_hash", sa.String(), nullable=False),
    sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
  )
  op.create_index("ix_email_verification_tokens_user_id", "email_verification_tokens", ["user_id"])

  op.create_table(
    "categories",
    sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("user_id", sa.Uuid(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("name_key", sa.String(), nullable=False),
    sa.Column("color", sa.String(), nullable=False, server_default="#6b7280"),
    sa.Column("icon", sa.String(), nullable=False, server_default="folder"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.UniqueConstraint("user_id", "name_key", name="ux_categories_user_name_key"),
  )
  op.create_index("ix_categories_user_id", "categories", ["user_id"])

  op.create_table(
    "tasks",
    sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("user_id", sa.Uuid(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("category_id", sa.Uuid(as_uuid=False), sa.ForeignKey("categories.id"), nullable=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
    sa.Column("status", sa.String(), nullable=False, server_default="pending"),
    sa.Column("visibility", sa.String(), nullable=False, server_default="private"),
    sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("reminder_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
  )
  op.create_index("ix_tasks_user_id", "tasks", ["user_id"])
  op.create_index("ix_tasks_category_id", "tasks", ["category_id"])
  op.create_index("ix_tasks_due_date", "tasks", ["due_date"])
  op.create_index("ix_tasks_reminder_at", "tasks", ["reminder_at"])

  op.create_table(
    "task_files",
    sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("task_id", sa.Uuid(as_uuid=False), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("path", sa.String(), nullable=False),
    sa.Column("original_name", sa.String(), nullable=False),
    sa.Column("mime_type", sa.String(), nullable=False),
    sa.Column("size_bytes", sa.Integer(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
  )
  op.create_index("ix_task_files_task_id", "task_files", ["task_id"])

  op.create_table(
    "audit_events",
    sa.Column("id", sa.Uuid(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("user_id", sa.Uuid(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("task_id", sa.Uuid(as_uuid=False), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", sa.JSON(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
  )
  op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
  op.create_index("ix_audit_events_task_id", "audit_events", ["task_id"])


def downgrade() -> None:
  op.drop_table("audit_events")
  op.drop_table("task_files")
  op.drop_table("tasks")
  op.drop_table("categories")
  op.drop_table("email_verification_tokens")
  op.drop_table("users")
