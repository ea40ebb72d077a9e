from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from todolist.audit import write_audit
from todolist.config import settings
from todolist.db import SessionLocal
from todolist.mail.service import MailService, ReminderContent, mailer as default_mailer
from todolist.models import Category, Task, User

logger = logging.getLogger(__name__)

REMINDER_EVENT = "deadline_reminder"


def _utcnow() -> datetime:
  return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _DueReminder:
  task_id: str
  user_id: str
  reminder_at: datetime
  to: str
  user_name: str
  content: ReminderContent


def due_reminders_query(now: datetime):
  return (
    select(Task, User.name, User.email, User.timezone, Category.name)
    .join(User, User.id == Task.user_id)
    .outerjoin(Category, Category.id == Task.category_id)
    .where(
      Task.reminder_at.is_not(None),
      Task.reminder_at <= now,
      Task.reminder_sent.is_(False),
      Task.status == "pending",
    )
    .order_by(Task.reminder_at.asc())
  )


async def dispatch_due_reminders_once(db: AsyncSession, *, mailer: MailService, now: datetime | None = None) -> int:
  """
  Send one reminder email per due task and mark it sent.

  - A task is due when reminder_at <= now, reminder_sent is false and it is still pending.
  - reminder_sent flips only after the mail sender reports success; a failed send
    leaves the task due so the next tick tries again (no backoff, no attempt cap).
  - Failures are isolated per task. A failing query propagates to the caller.

  Returns the number of reminders sent.
  """
  now = now or _utcnow()
  logger.debug("Checking for pending reminders at %s", now.isoformat())

  # Snapshot rows up front: a rollback below expires every ORM instance in the session.
  due = [
    _DueReminder(
      task_id=t.id,
      user_id=t.user_id,
      reminder_at=t.reminder_at,
      to=user_email,
      user_name=user_name,
      content=ReminderContent(
        title=t.title,
        description=t.description,
        due_date=t.due_date,
        priority=t.priority,
        category_name=category_name,
        timezone=user_tz,
      ),
    )
    for t, user_name, user_email, user_tz, category_name in (await db.execute(due_reminders_query(now))).all()
  ]
  if not due:
    return 0
  logger.info("Found %d task(s) to send reminders", len(due))

  sent = 0
  for r in due:
    try:
      ok = await mailer.send_task_reminder_email(r.to, r.user_name, r.content)
      if not ok:
        logger.warning("Reminder for task %s not delivered; will retry next tick", r.task_id)
        continue

      # Guarded on the snapshot: a reminder re-armed while the mail was in flight stays due.
      res = await db.execute(
        update(Task)
        .where(Task.id == r.task_id, Task.reminder_at == r.reminder_at, Task.reminder_sent.is_(False))
        .values(reminder_sent=True)
        .execution_options(synchronize_session=False)
      )
      if res.rowcount == 0:
        await db.rollback()
        logger.info("Task %s was re-armed or changed during send; leaving its reminder due", r.task_id)
        continue
      await write_audit(
        db,
        event_type=REMINDER_EVENT,
        entity_type="Task",
        entity_id=r.task_id,
        user_id=r.user_id,
        task_id=r.task_id,
        payload={"to": r.to, "reminderAt": r.reminder_at},
      )
      await db.commit()
      sent += 1
      logger.info('Reminder sent for task "%s" to %s', r.content.title, r.to)
    except Exception:
      logger.exception("Failed to process reminder for task %s", r.task_id)
      await db.rollback()

  return sent


class ReminderScheduler:
  """
  Owns the background poll loop.

  start() runs one tick immediately and then one every interval_seconds until
  stop(). A tick that fails as a whole is logged and the loop keeps going.
  """

  def __init__(
    self,
    *,
    mailer: MailService | None = None,
    session_factory: async_sessionmaker | None = None,
    interval_seconds: float | None = None,
    clock: Callable[[], datetime] = _utcnow,
  ) -> None:
    self.mailer = mailer or default_mailer
    self.session_factory = session_factory or SessionLocal
    self.interval_seconds = float(interval_seconds if interval_seconds is not None else settings.reminder_poll_seconds)
    self.clock = clock
    self._task: asyncio.Task | None = None

  @property
  def running(self) -> bool:
    return self._task is not None and not self._task.done()

  async def tick(self) -> int:
    async with self.session_factory() as db:
      return await dispatch_due_reminders_once(db, mailer=self.mailer, now=self.clock())

  async def _run(self) -> None:
    while True:
      try:
        await self.tick()
      except Exception:
        logger.exception("Error processing reminders")
      await asyncio.sleep(max(1.0, self.interval_seconds))

  def start(self) -> None:
    if self.running:
      return
    logger.info("Starting reminder scheduler (every %ss)", int(self.interval_seconds))
    self._task = asyncio.create_task(self._run(), name="reminder-scheduler")

  async def stop(self) -> None:
    task, self._task = self._task, None
    if task is None:
      return
    task.cancel()
    with suppress(asyncio.CancelledError):
      await task
    logger.info("Reminder scheduler stopped")
