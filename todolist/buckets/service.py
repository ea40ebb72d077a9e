from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from todolist.models import Category, Task, TaskFile, User
from todolist.schemas import (
  CategoryTasksOut,
  CompletedOut,
  SearchOut,
  SidebarCategoryOut,
  SidebarSummaryOut,
  TaskFileOut,
  TaskOut,
  TodayOut,
  UpcomingOut,
)
from todolist.timezones import resolve_zone

UPCOMING_DAYS = 7
SEARCH_LIMIT = 50
DEFAULT_CATEGORY_COLOR = "#6b7280"
DEFAULT_CATEGORY_ICON = "folder"

_PRIORITY_RANK = case(
  (Task.priority == "high", 3),
  (Task.priority == "medium", 2),
  (Task.priority == "low", 1),
  else_=0,
)


@dataclass(frozen=True)
class DayWindow:
  """UTC instants bounding the caller's local calendar day and the upcoming week."""

  zone: ZoneInfo
  start_of_today: datetime
  end_of_today: datetime
  end_of_upcoming: datetime

  def date_key(self, value: datetime) -> str:
    return value.astimezone(self.zone).date().isoformat()

  def is_overdue(self, t: Task) -> bool:
    return t.status != "complete" and t.due_date is not None and t.due_date < self.start_of_today


def _local_midnight(d: date, zone: ZoneInfo) -> datetime:
  return datetime.combine(d, time.min, tzinfo=zone).astimezone(timezone.utc)


def day_window(now: datetime, zone: ZoneInfo, *, upcoming_days: int = UPCOMING_DAYS) -> DayWindow:
  if now.tzinfo is None:
    now = now.replace(tzinfo=timezone.utc)
  today = now.astimezone(zone).date()
  one = timedelta(microseconds=1)
  return DayWindow(
    zone=zone,
    start_of_today=_local_midnight(today, zone),
    end_of_today=_local_midnight(today + timedelta(days=1), zone) - one,
    end_of_upcoming=_local_midnight(today + timedelta(days=1 + upcoming_days), zone) - one,
  )


def window_for(user: User, now: datetime | None = None) -> DayWindow:
  return day_window(now or datetime.now(timezone.utc), resolve_zone(getattr(user, "timezone", None)))


def _visible_to(user_id: str):
  return or_(Task.user_id == user_id, and_(Task.visibility == "public", Task.user_id != user_id))


def _open():
  return Task.status != "complete"


def _task_rows():
  return (
    select(Task, User.name, Category.name)
    .join(User, User.id == Task.user_id)
    .outerjoin(Category, Category.id == Task.category_id)
  )


def task_file_out(f: TaskFile) -> TaskFileOut:
  return TaskFileOut(
    id=f.id,
    taskId=f.task_id,
    originalName=f.original_name,
    mimeType=f.mime_type,
    sizeBytes=f.size_bytes,
    url=f"/tasks/{f.task_id}/files/{f.id}",
    createdAt=f.created_at,
  )


def task_out(
  t: Task,
  *,
  owner_name: str | None,
  category_name: str | None,
  files: list[TaskFile] | None = None,
  is_overdue: bool = False,
) -> TaskOut:
  return TaskOut(
    id=t.id,
    title=t.title,
    description=t.description,
    priority=t.priority,
    status=t.status,
    visibility=t.visibility,
    dueDate=t.due_date,
    reminderAt=t.reminder_at,
    reminderSent=bool(t.reminder_sent),
    isOverdue=is_overdue,
    categoryId=t.category_id,
    categoryName=category_name,
    userId=t.user_id,
    ownerName=owner_name,
    files=[task_file_out(f) for f in (files or [])],
    createdAt=t.created_at,
    updatedAt=t.updated_at,
    completedAt=t.completed_at,
  )


async def files_by_task(db: AsyncSession, task_ids: list[str]) -> dict[str, list[TaskFile]]:
  out: dict[str, list[TaskFile]] = defaultdict(list)
  if not task_ids:
    return out
  res = await db.execute(select(TaskFile).where(TaskFile.task_id.in_(task_ids)).order_by(TaskFile.created_at.asc()))
  for f in res.scalars().all():
    out[f.task_id].append(f)
  return out


async def _load(db: AsyncSession, stmt, window: DayWindow | None) -> list[tuple[Task, TaskOut]]:
  rows = (await db.execute(stmt)).all()
  files = await files_by_task(db, [t.id for t, _, _ in rows])
  out: list[tuple[Task, TaskOut]] = []
  for t, owner_name, category_name in rows:
    overdue = window.is_overdue(t) if window is not None else False
    out.append((t, task_out(t, owner_name=owner_name, category_name=category_name, files=files.get(t.id), is_overdue=overdue)))
  return out


async def today_view(db: AsyncSession, user: User, *, now: datetime | None = None) -> TodayOut:
  w = window_for(user, now)
  stmt = (
    _task_rows()
    .where(_visible_to(user.id), _open(), Task.due_date.is_not(None), Task.due_date <= w.end_of_today)
    .order_by(Task.due_date.asc())
  )
  today: list[TaskOut] = []
  overdue: list[TaskOut] = []
  for t, dto in await _load(db, stmt, w):
    if w.is_overdue(t):
      overdue.append(dto)
    else:
      today.append(dto)
  return TodayOut(today=today, overdue=overdue)


async def upcoming_view(db: AsyncSession, user: User, *, now: datetime | None = None) -> UpcomingOut:
  w = window_for(user, now)
  overdue_stmt = (
    _task_rows()
    .where(_visible_to(user.id), _open(), Task.due_date < w.start_of_today)
    .order_by(Task.due_date.asc())
  )
  upcoming_stmt = (
    _task_rows()
    .where(_visible_to(user.id), _open(), Task.due_date > w.end_of_today, Task.due_date <= w.end_of_upcoming)
    .order_by(Task.due_date.asc())
  )
  overdue = [dto for _, dto in await _load(db, overdue_stmt, w)]
  grouped: dict[str, list[TaskOut]] = {}
  for t, dto in await _load(db, upcoming_stmt, w):
    grouped.setdefault(w.date_key(t.due_date), []).append(dto)
  return UpcomingOut(overdue=overdue, grouped=grouped)


async def completed_view(db: AsyncSession, user: User, *, now: datetime | None = None) -> CompletedOut:
  w = window_for(user, now)
  completed_on = func.coalesce(Task.completed_at, Task.updated_at)
  stmt = (
    _task_rows()
    .where(Task.user_id == user.id, Task.status == "complete")
    .order_by(completed_on.desc())
  )
  grouped: dict[str, list[TaskOut]] = {}
  for t, dto in await _load(db, stmt, None):
    grouped.setdefault(w.date_key(t.completed_at or t.updated_at), []).append(dto)
  return CompletedOut(grouped=grouped)


async def category_view(db: AsyncSession, user: User, category_id: str, *, now: datetime | None = None) -> CategoryTasksOut:
  w = window_for(user, now)
  cres = await db.execute(select(Category).where(Category.id == category_id, Category.user_id == user.id))
  c = cres.scalar_one_or_none()
  if not c:
    return CategoryTasksOut(
      tasks=[],
      overdue=[],
      categoryName="Unknown",
      categoryColor=DEFAULT_CATEGORY_COLOR,
      categoryIcon=DEFAULT_CATEGORY_ICON,
    )

  stmt = (
    _task_rows()
    .where(Task.user_id == user.id, Task.category_id == c.id, _open())
    .order_by(Task.due_date.asc().nulls_last(), Task.created_at.asc())
  )
  tasks: list[TaskOut] = []
  overdue: list[TaskOut] = []
  for t, dto in await _load(db, stmt, w):
    (overdue if w.is_overdue(t) else tasks).append(dto)
  return CategoryTasksOut(
    tasks=tasks,
    overdue=overdue,
    categoryName=c.name,
    categoryColor=c.color or DEFAULT_CATEGORY_COLOR,
    categoryIcon=c.icon or DEFAULT_CATEGORY_ICON,
  )


async def sidebar_summary(db: AsyncSession, user: User, *, now: datetime | None = None) -> SidebarSummaryOut:
  w = window_for(user, now)

  async def _count(*where) -> int:
    res = await db.execute(select(func.count()).select_from(Task).where(Task.user_id == user.id, *where))
    return int(res.scalar_one())

  today_count = await _count(_open(), Task.due_date >= w.start_of_today, Task.due_date <= w.end_of_today)
  upcoming_count = await _count(_open(), Task.due_date > w.end_of_today, Task.due_date <= w.end_of_upcoming)
  completed_count = await _count(Task.status == "complete")

  open_counts = (
    select(Task.category_id, func.count(Task.id).label("n"))
    .where(Task.user_id == user.id, _open(), Task.category_id.is_not(None))
    .group_by(Task.category_id)
    .subquery()
  )
  res = await db.execute(
    select(Category, func.coalesce(open_counts.c.n, 0))
    .outerjoin(open_counts, open_counts.c.category_id == Category.id)
    .where(Category.user_id == user.id)
    .order_by(Category.created_at.asc())
  )
  categories = [
    SidebarCategoryOut(
      categoryId=c.id,
      categoryName=c.name,
      taskCount=int(n or 0),
      color=c.color or DEFAULT_CATEGORY_COLOR,
      icon=c.icon or DEFAULT_CATEGORY_ICON,
    )
    for c, n in res.all()
  ]
  return SidebarSummaryOut(
    todayCount=today_count,
    upcomingCount=upcoming_count,
    completedCount=completed_count,
    categories=categories,
  )


async def search_tasks(db: AsyncSession, user: User, query: str, *, now: datetime | None = None) -> SearchOut:
  q = (query or "").strip()
  if not q:
    return SearchOut(results=[])
  w = window_for(user, now)
  stmt = (
    _task_rows()
    .where(
      _visible_to(user.id),
      or_(Task.title.icontains(q, autoescape=True), Task.description.icontains(q, autoescape=True)),
    )
    .order_by(Task.due_date.asc().nulls_last(), _PRIORITY_RANK.desc(), Task.updated_at.desc())
    .limit(SEARCH_LIMIT)
  )
  return SearchOut(results=[dto for _, dto in await _load(db, stmt, w)])
