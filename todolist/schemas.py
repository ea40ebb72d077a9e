from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field
from pydantic import field_validator


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

Priority = Literal["low", "medium", "high"]
Visibility = Literal["private", "public"]


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      # Calendar date without a clock: left naive, the caller's zone decides which instant it is.
      return datetime.fromisoformat(s)
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def _non_blank_title(value: object) -> object:
  if not isinstance(value, str):
    return value
  s = value.strip()
  if not s:
    raise ValueError("title must not be blank")
  return s


def _normalize_email(value: object) -> object:
  if not isinstance(value, str):
    return value
  s = value.strip().lower()
  if not _EMAIL_RE.fullmatch(s):
    raise ValueError("invalid email address")
  return s


# ---- auth / users ----


class RegisterIn(BaseModel):
  name: str = Field(min_length=1, max_length=120)
  email: str = Field(min_length=3, max_length=320)
  password: str = Field(min_length=6, max_length=200)

  @field_validator("email", mode="before")
  @classmethod
  def _email(cls, v: object) -> object:
    return _normalize_email(v)


class LoginIn(BaseModel):
  email: str
  password: str = Field(min_length=1)

  @field_validator("email", mode="before")
  @classmethod
  def _email(cls, v: object) -> object:
    return _normalize_email(v)


class VerifyOtpIn(BaseModel):
  email: str
  otp: str = Field(min_length=1, max_length=12)

  @field_validator("email", mode="before")
  @classmethod
  def _email(cls, v: object) -> object:
    return _normalize_email(v)


class ResendOtpIn(BaseModel):
  email: str

  @field_validator("email", mode="before")
  @classmethod
  def _email(cls, v: object) -> object:
    return _normalize_email(v)


class OtpSentOut(BaseModel):
  status: str = "ok"
  email: str


class StatusOut(BaseModel):
  status: str = "ok"


class TokenOut(BaseModel):
  accessToken: str
  tokenType: str = "bearer"


class UserOut(BaseModel):
  id: str
  name: str
  email: str
  isVerified: bool
  timezone: str | None = None
  createdAt: datetime
  updatedAt: datetime


class UserUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  timezone: str | None = Field(default=None, max_length=64)

  @field_validator("timezone")
  @classmethod
  def _known_zone(cls, v: str | None) -> str | None:
    if v is None or not v.strip():
      return None
    try:
      ZoneInfo(v.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
      raise ValueError("unknown timezone") from exc
    return v.strip()


# ---- categories ----


class CategoryCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=50)
  color: str | None = None
  icon: str | None = Field(default=None, max_length=50)

  @field_validator("name")
  @classmethod
  def _trimmed(cls, v: str) -> str:
    s = v.strip()
    if not s:
      raise ValueError("name must not be blank")
    return s

  @field_validator("color")
  @classmethod
  def _hex(cls, v: str | None) -> str | None:
    if v is None:
      return None
    if not _HEX_COLOR_RE.fullmatch(v):
      raise ValueError("Color must be a valid hex color (e.g., #FF5733)")
    return v


class CategoryOut(BaseModel):
  id: str
  name: str
  color: str
  icon: str
  createdAt: datetime


# ---- tasks ----


class TaskFileOut(BaseModel):
  id: str
  taskId: str
  originalName: str
  mimeType: str
  sizeBytes: int
  url: str
  createdAt: datetime


class TaskOut(BaseModel):
  id: str
  title: str
  description: str | None = None
  priority: str
  status: str
  visibility: str
  dueDate: datetime | None = None
  reminderAt: datetime | None = None
  reminderSent: bool = False
  isOverdue: bool = False
  categoryId: str | None = None
  categoryName: str | None = None
  userId: str
  ownerName: str | None = None
  files: list[TaskFileOut] = []
  createdAt: datetime
  updatedAt: datetime
  completedAt: datetime | None = None


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=500)
  description: str | None = None
  priority: Priority = "medium"
  visibility: Visibility = "private"
  dueDate: datetime | None = None
  categoryId: str | None = None
  reminderAt: datetime | None = None

  @field_validator("dueDate", "reminderAt", mode="before")
  @classmethod
  def _to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)

  @field_validator("title", mode="before")
  @classmethod
  def _title(cls, v: object) -> object:
    return _non_blank_title(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = None
  priority: Priority | None = None
  visibility: Visibility | None = None
  dueDate: datetime | None = None
  categoryId: str | None = None
  reminderAt: datetime | None = None

  @field_validator("dueDate", "reminderAt", mode="before")
  @classmethod
  def _to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)

  @field_validator("title", mode="before")
  @classmethod
  def _title(cls, v: object) -> object:
    return _non_blank_title(v)

  @field_validator("categoryId", mode="before")
  @classmethod
  def _blank_category_clears(cls, v: object) -> object:
    if isinstance(v, str) and not v.strip():
      return None
    return v


class TodayOut(BaseModel):
  today: list[TaskOut]
  overdue: list[TaskOut]


class UpcomingOut(BaseModel):
  overdue: list[TaskOut]
  grouped: dict[str, list[TaskOut]]


class CompletedOut(BaseModel):
  grouped: dict[str, list[TaskOut]]


class CategoryTasksOut(BaseModel):
  tasks: list[TaskOut]
  overdue: list[TaskOut]
  categoryName: str
  categoryColor: str
  categoryIcon: str


class SidebarCategoryOut(BaseModel):
  categoryId: str
  categoryName: str
  taskCount: int
  color: str
  icon: str


class SidebarSummaryOut(BaseModel):
  todayCount: int
  upcomingCount: int
  completedCount: int
  categories: list[SidebarCategoryOut]


class SearchOut(BaseModel):
  results: list[TaskOut]


class FilesUploadOut(BaseModel):
  uploaded: int
  files: list[TaskFileOut]
