from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, TypeDecorator, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _new_id() -> str:
  return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
  """
  Timezone-aware UTC timestamps on every backend.

  SQLite drops tzinfo on the way in and out, so values are normalized to UTC
  before binding and tagged as UTC when read back.
  """

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

  def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_new_id)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  timezone: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class EmailVerificationToken(Base):
  __tablename__ = "email_verification_tokens"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
  otp_hash: Mapped[str] = mapped_column(String, nullable=False)
  used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Category(Base):
  __tablename__ = "categories"
  __table_args__ = (UniqueConstraint("user_id", "name_key", name="ux_categories_user_name_key"),)

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  name_key: Mapped[str] = mapped_column(String, nullable=False)
  color: Mapped[str] = mapped_column(String, nullable=False, default="#6b7280")
  icon: Mapped[str] = mapped_column(String, nullable=False, default="folder")
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=False, index=True)
  category_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("categories.id"), nullable=True, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")  # low | medium | high
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending")  # pending | complete
  visibility: Mapped[str] = mapped_column(String, nullable=False, default="private")  # private | public
  due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
  reminder_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
  reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TaskFile(Base):
  __tablename__ = "task_files"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_new_id)
  task_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("tasks.id"), nullable=False, index=True)
  path: Mapped[str] = mapped_column(String, nullable=False)
  original_name: Mapped[str] = mapped_column(String, nullable=False)
  mime_type: Mapped[str] = mapped_column(String, nullable=False)
  size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_new_id)
  user_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=True, index=True)
  task_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True, index=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
