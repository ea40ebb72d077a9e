from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from todolist.audit import write_audit
from todolist.buckets import service as buckets
from todolist.config import settings
from todolist.deps import get_current_user, get_db
from todolist.models import Category, Task, TaskFile, User
from todolist.schemas import (
  CategoryTasksOut,
  CompletedOut,
  FilesUploadOut,
  SearchOut,
  SidebarSummaryOut,
  TaskCreateIn,
  TaskOut,
  TaskUpdateIn,
  TodayOut,
  UpcomingOut,
)
from todolist.timezones import local_to_utc, resolve_zone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


async def _own_task_or_404(db: AsyncSession, task_id: str, user: User) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id, Task.user_id == user.id))
  t = res.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  return t


async def _visible_task_or_404(db: AsyncSession, task_id: str, user: User) -> Task:
  res = await db.execute(
    select(Task).where(Task.id == task_id, or_(Task.user_id == user.id, Task.visibility == "public"))
  )
  t = res.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  return t


async def _validate_category(db: AsyncSession, category_id: str | None, user: User) -> None:
  if not category_id:
    return
  res = await db.execute(select(Category.id).where(Category.id == category_id, Category.user_id == user.id))
  if res.scalar_one_or_none() is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")


async def _task_out(db: AsyncSession, t: Task, user: User) -> TaskOut:
  owner = await db.get(User, t.user_id)
  category = await db.get(Category, t.category_id) if t.category_id else None
  files = await buckets.files_by_task(db, [t.id])
  return buckets.task_out(
    t,
    owner_name=owner.name if owner else None,
    category_name=category.name if category else None,
    files=files.get(t.id),
    is_overdue=buckets.window_for(user).is_overdue(t),
  )


def _remove_stored_file(path: str) -> None:
  try:
    os.remove(path)
  except FileNotFoundError:
    pass


# ---- read views ----


@router.get("/today", response_model=TodayOut)
async def get_today(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TodayOut:
  return await buckets.today_view(db, user)


@router.get("/upcoming", response_model=UpcomingOut)
async def get_upcoming(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UpcomingOut:
  return await buckets.upcoming_view(db, user)


@router.get("/completed", response_model=CompletedOut)
async def get_completed(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> CompletedOut:
  return await buckets.completed_view(db, user)


@router.get("/sidebar-summary", response_model=SidebarSummaryOut)
async def get_sidebar_summary(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> SidebarSummaryOut:
  return await buckets.sidebar_summary(db, user)


@router.get("/category/{category_id}", response_model=CategoryTasksOut)
async def get_tasks_by_category(category_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> CategoryTasksOut:
  return await buckets.category_view(db, user, category_id)


@router.get("/search", response_model=SearchOut)
async def search(q: str = Query(default=""), user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> SearchOut:
  return await buckets.search_tasks(db, user, q)


# ---- task CRUD ----


@router.post("", response_model=TaskOut)
async def create_task(payload: TaskCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  await _validate_category(db, payload.categoryId, user)
  zone = resolve_zone(user.timezone)
  t = Task(
    user_id=user.id,
    title=payload.title.strip(),
    description=payload.description,
    priority=payload.priority,
    status="pending",
    visibility=payload.visibility,
    due_date=local_to_utc(payload.dueDate, zone),
    category_id=payload.categoryId or None,
    reminder_at=local_to_utc(payload.reminderAt, zone),
    reminder_sent=False,
  )
  db.add(t)
  await db.flush()
  await write_audit(
    db,
    event_type="task.created",
    entity_type="Task",
    entity_id=t.id,
    user_id=user.id,
    task_id=t.id,
    payload={"title": t.title, "dueDate": t.due_date, "reminderAt": t.reminder_at},
  )
  await db.commit()
  return await _task_out(db, t, user)


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await _visible_task_or_404(db, task_id, user)
  return await _task_out(db, t, user)


@router.patch("/{task_id}", response_model=TaskOut)
async def update_task(task_id: str, payload: TaskUpdateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await _own_task_or_404(db, task_id, user)
  fields_set = payload.model_fields_set
  if "categoryId" in fields_set:
    await _validate_category(db, payload.categoryId, user)

  zone = resolve_zone(user.timezone)
  changed: dict = {}
  mapping = [
    ("title", "title"),
    ("description", "description"),
    ("priority", "priority"),
    ("visibility", "visibility"),
    ("due_date", "dueDate"),
    ("category_id", "categoryId"),
  ]
  for model_attr, field_name in mapping:
    if field_name not in fields_set:
      continue
    val = getattr(payload, field_name)
    if val is None and model_attr in ("title", "priority", "visibility"):
      continue
    if model_attr == "due_date":
      val = local_to_utc(val, zone)
    setattr(t, model_attr, val)
    changed[field_name] = val

  if "reminderAt" in fields_set:
    # Any new reminder time re-arms the reminder; clearing it disarms.
    t.reminder_at = local_to_utc(payload.reminderAt, zone)
    t.reminder_sent = False
    changed["reminderAt"] = t.reminder_at

  await write_audit(
    db,
    event_type="task.updated",
    entity_type="Task",
    entity_id=t.id,
    user_id=user.id,
    task_id=t.id,
    payload={"changed": list(changed.keys()), "fields": changed},
  )
  await db.commit()
  return await _task_out(db, t, user)


@router.patch("/{task_id}/complete", response_model=TaskOut)
async def complete_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await _own_task_or_404(db, task_id, user)
  if t.status != "complete":
    t.status = "complete"
    t.completed_at = datetime.now(timezone.utc)
    await write_audit(db, event_type="task.completed", entity_type="Task", entity_id=t.id, user_id=user.id, task_id=t.id, payload={})
    await db.commit()
  return await _task_out(db, t, user)


@router.delete("/{task_id}")
async def delete_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  t = await _own_task_or_404(db, task_id, user)
  tid, title = t.id, t.title
  fres = await db.execute(select(TaskFile).where(TaskFile.task_id == tid))
  paths = [f.path for f in fres.scalars().all()]
  await db.execute(delete(TaskFile).where(TaskFile.task_id == tid))
  await db.execute(delete(Task).where(Task.id == tid))
  await write_audit(db, event_type="task.deleted", entity_type="Task", entity_id=tid, user_id=user.id, task_id=tid, payload={"title": title})
  await db.commit()
  for p in paths:
    _remove_stored_file(p)
  return {"message": "Task deleted successfully"}


# ---- attachments ----


@router.post("/{task_id}/files", response_model=FilesUploadOut)
async def upload_files(
  task_id: str,
  files: list[UploadFile] = File(default=[]),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> FilesUploadOut:
  t = await _own_task_or_404(db, task_id, user)
  if not files:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files uploaded")
  if len(files) > int(settings.max_files_per_upload):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"At most {settings.max_files_per_upload} files per upload")

  limit = int(settings.max_attachment_bytes)
  payloads: list[tuple[UploadFile, bytes]] = []
  for f in files:
    data = await f.read(limit + 1)
    if len(data) > limit:
      raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Attachment too large")
    payloads.append((f, data))

  os.makedirs(settings.upload_dir, exist_ok=True)
  created: list[TaskFile] = []
  written: list[str] = []
  try:
    for f, data in payloads:
      ext = os.path.splitext(f.filename or "")[1]
      out_name = f"{uuid.uuid4().hex}{ext}"
      out_path = os.path.join(settings.upload_dir, out_name)
      with open(out_path, "wb") as fh:
        written.append(out_path)
        fh.write(data)
      tf = TaskFile(
        task_id=t.id,
        path=out_path,
        original_name=f.filename or out_name,
        mime_type=f.content_type or "application/octet-stream",
        size_bytes=len(data),
      )
      db.add(tf)
      created.append(tf)

    await db.flush()
    await write_audit(
      db,
      event_type="file.added",
      entity_type="Task",
      entity_id=t.id,
      user_id=user.id,
      task_id=t.id,
      payload={"files": [c.original_name for c in created]},
    )
    await db.commit()
  except Exception:
    for p in written:
      _remove_stored_file(p)
    logger.warning("Upload to task %s failed; removed %d stored file(s)", task_id, len(written))
    raise
  return FilesUploadOut(uploaded=len(created), files=[buckets.task_file_out(c) for c in created])


@router.get("/{task_id}/files/{file_id}")
async def download_file(task_id: str, file_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> FileResponse:
  t = await _visible_task_or_404(db, task_id, user)
  res = await db.execute(select(TaskFile).where(TaskFile.id == file_id, TaskFile.task_id == t.id))
  f = res.scalar_one_or_none()
  if not f or not os.path.exists(f.path):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
  return FileResponse(path=f.path, media_type=f.mime_type, filename=f.original_name)


@router.delete("/{task_id}/files/{file_id}")
async def delete_file(task_id: str, file_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  t = await _own_task_or_404(db, task_id, user)
  res = await db.execute(select(TaskFile).where(TaskFile.id == file_id, TaskFile.task_id == t.id))
  f = res.scalar_one_or_none()
  if not f:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

  fid, path, name = f.id, f.path, f.original_name
  await db.execute(delete(TaskFile).where(TaskFile.id == fid))
  await write_audit(db, event_type="file.deleted", entity_type="TaskFile", entity_id=fid, user_id=user.id, task_id=t.id, payload={"filename": name})
  await db.commit()
  _remove_stored_file(path)
  logger.info("Deleted file %s from task %s", fid, t.id)
  return {"message": "File deleted successfully"}
