from __future__ import annotations

from datetime import datetime, timedelta, timezone

import anyio
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update

from todolist.db import SessionLocal
from todolist.mail.service import ReminderContent
from todolist.models import AuditEvent, Task
from todolist.reminders.service import REMINDER_EVENT, ReminderScheduler, dispatch_due_reminders_once

from conftest import FakeMailer, create_user, load_task, login, make_category, make_task

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


async def _tick(mailer: FakeMailer, now: datetime | None = NOW) -> int:
  async with SessionLocal() as db:
    return await dispatch_due_reminders_once(db, mailer=mailer, now=now)


async def _reminder_audit_count(task_id: str) -> int:
  async with SessionLocal() as db:
    res = await db.execute(
      select(func.count()).select_from(AuditEvent).where(AuditEvent.task_id == task_id, AuditEvent.event_type == REMINDER_EVENT)
    )
    return int(res.scalar_one())


@pytest.mark.anyio
async def test_due_reminder_is_sent_exactly_once() -> None:
  uid = await create_user("owner@example.com", name="Owner")
  cat = await make_category(uid, "Work")
  tid = await make_task(
    uid,
    "Pay invoice",
    description="Vendor #42",
    priority="high",
    due=NOW + timedelta(hours=2),
    category_id=cat,
    reminder_at=NOW - timedelta(minutes=5),
  )
  mailer = FakeMailer()

  assert await _tick(mailer) == 1
  assert await _tick(mailer) == 0

  assert len(mailer.sent) == 1
  to, name, content = mailer.sent[0]
  assert to == "owner@example.com"
  assert name == "Owner"
  assert content.title == "Pay invoice"
  assert content.description == "Vendor #42"
  assert content.priority == "high"
  assert content.category_name == "Work"
  assert content.due_date == NOW + timedelta(hours=2)

  t = await load_task(tid)
  assert t.reminder_sent is True
  assert await _reminder_audit_count(tid) == 1


@pytest.mark.anyio
async def test_armed_reminder_waits_for_its_time() -> None:
  uid = await create_user("owner@example.com")
  tid = await make_task(uid, "Later", reminder_at=NOW + timedelta(hours=1))
  mailer = FakeMailer()

  assert await _tick(mailer) == 0
  assert (await load_task(tid)).reminder_sent is False

  assert await _tick(mailer, NOW + timedelta(hours=1)) == 1
  assert (await load_task(tid)).reminder_sent is True


@pytest.mark.anyio
async def test_failed_send_leaves_reminder_due_until_it_succeeds() -> None:
  uid = await create_user("owner@example.com")
  tid = await make_task(uid, "Flaky", reminder_at=NOW - timedelta(minutes=1))
  mailer = FakeMailer(ok=False)

  assert await _tick(mailer) == 0
  assert await _tick(mailer) == 0
  assert (await load_task(tid)).reminder_sent is False
  assert await _reminder_audit_count(tid) == 0

  mailer.ok = True
  assert await _tick(mailer) == 1
  assert (await load_task(tid)).reminder_sent is True


@pytest.mark.anyio
async def test_one_failing_task_does_not_block_the_batch() -> None:
  uid = await create_user("owner@example.com")
  boom = await make_task(uid, "boom", reminder_at=NOW - timedelta(minutes=10))
  fine = await make_task(uid, "fine", reminder_at=NOW - timedelta(minutes=5))
  mailer = FakeMailer(explode={"boom"})

  assert await _tick(mailer) == 1

  assert [c.title for _, _, c in mailer.sent] == ["fine"]
  assert (await load_task(boom)).reminder_sent is False
  assert (await load_task(fine)).reminder_sent is True


class _RearmingMailer(FakeMailer):
  """Moves the task's reminder to a later time while the first mail is in flight."""

  def __init__(self, task_id: str, new_reminder_at: datetime) -> None:
    super().__init__()
    self.task_id = task_id
    self.new_reminder_at = new_reminder_at

  async def send_task_reminder_email(self, to: str, user_name: str, content: ReminderContent) -> bool:
    if not self.sent:
      async with SessionLocal() as other:
        await other.execute(
          update(Task).where(Task.id == self.task_id).values(reminder_at=self.new_reminder_at, reminder_sent=False)
        )
        await other.commit()
    return await super().send_task_reminder_email(to, user_name, content)


@pytest.mark.anyio
async def test_reminder_rearmed_during_send_stays_due() -> None:
  uid = await create_user("owner@example.com")
  tid = await make_task(uid, "Moving target", reminder_at=NOW - timedelta(minutes=5))
  later = NOW + timedelta(hours=1)
  mailer = _RearmingMailer(tid, later)

  assert await _tick(mailer) == 0
  t = await load_task(tid)
  assert t.reminder_sent is False
  assert t.reminder_at == later
  assert await _reminder_audit_count(tid) == 0

  assert await _tick(mailer, later) == 1
  assert (await load_task(tid)).reminder_sent is True
  assert await _reminder_audit_count(tid) == 1
  assert len(mailer.sent) == 2


@pytest.mark.anyio
async def test_reminder_content_carries_the_owners_timezone() -> None:
  uid = await create_user("owner@example.com", timezone="Asia/Jakarta")
  await make_task(uid, "Local time", due=NOW + timedelta(hours=3), reminder_at=NOW - timedelta(minutes=1))
  mailer = FakeMailer()

  assert await _tick(mailer) == 1
  assert mailer.sent[0][2].timezone == "Asia/Jakarta"


@pytest.mark.anyio
async def test_completed_and_unset_reminders_are_ignored() -> None:
  uid = await create_user("owner@example.com")
  await make_task(uid, "Done already", status="complete", reminder_at=NOW - timedelta(minutes=5))
  await make_task(uid, "No reminder")
  await make_task(uid, "Sent before", reminder_at=NOW - timedelta(days=1), reminder_sent=True)
  mailer = FakeMailer()

  assert await _tick(mailer) == 0
  assert mailer.sent == []


@pytest.mark.anyio
async def test_new_reminder_time_rearms_a_sent_reminder(client: AsyncClient) -> None:
  await create_user("owner@example.com")
  headers = await login(client, "owner@example.com")
  now = datetime.now(timezone.utc)

  created = await client.post(
    "/tasks",
    headers=headers,
    json={"title": "Water plants", "reminderAt": (now - timedelta(minutes=5)).isoformat()},
  )
  assert created.status_code == 200, created.text
  tid = created.json()["id"]
  mailer = FakeMailer()

  assert await _tick(mailer, None) == 1
  res = await client.get(f"/tasks/{tid}", headers=headers)
  assert res.json()["reminderSent"] is True

  patched = await client.patch(f"/tasks/{tid}", headers=headers, json={"reminderAt": (now - timedelta(minutes=1)).isoformat()})
  assert patched.status_code == 200, patched.text
  assert patched.json()["reminderSent"] is False

  assert await _tick(mailer, None) == 1
  assert len(mailer.sent) == 2
  assert await _reminder_audit_count(tid) == 2


@pytest.mark.anyio
async def test_editing_other_fields_keeps_reminder_sent(client: AsyncClient) -> None:
  uid = await create_user("owner@example.com")
  tid = await make_task(uid, "Sent", reminder_at=NOW - timedelta(days=1), reminder_sent=True)
  headers = await login(client, "owner@example.com")

  res = await client.patch(f"/tasks/{tid}", headers=headers, json={"title": "Renamed"})
  assert res.status_code == 200, res.text
  assert res.json()["reminderSent"] is True


async def _wait_until(predicate, *, timeout: float = 5.0) -> bool:
  with anyio.move_on_after(timeout):
    while True:
      if await predicate():
        return True
      await anyio.sleep(0.02)
  return False


@pytest.mark.anyio
async def test_scheduler_ticks_immediately_on_start_and_stops_cleanly() -> None:
  uid = await create_user("owner@example.com")
  tid = await make_task(uid, "On start", reminder_at=NOW - timedelta(minutes=5))
  mailer = FakeMailer()
  scheduler = ReminderScheduler(mailer=mailer, session_factory=SessionLocal, interval_seconds=3600, clock=lambda: NOW)

  scheduler.start()
  try:
    assert scheduler.running

    async def _marked() -> bool:
      t = await load_task(tid)
      return bool(t and t.reminder_sent)

    assert await _wait_until(_marked)
  finally:
    await scheduler.stop()

  assert not scheduler.running
  assert len(mailer.sent) == 1


@pytest.mark.anyio
async def test_scheduler_survives_a_failing_tick() -> None:
  uid = await create_user("owner@example.com")
  tid = await make_task(uid, "After outage", reminder_at=NOW - timedelta(minutes=5))
  calls = {"n": 0}

  def _flaky_factory():
    calls["n"] += 1
    if calls["n"] == 1:
      raise RuntimeError("database unavailable")
    return SessionLocal()

  mailer = FakeMailer()
  scheduler = ReminderScheduler(mailer=mailer, session_factory=_flaky_factory, interval_seconds=0, clock=lambda: NOW)

  scheduler.start()
  try:

    async def _marked() -> bool:
      t = await load_task(tid)
      return bool(t and t.reminder_sent)

    assert await _wait_until(_marked)
  finally:
    await scheduler.stop()

  assert calls["n"] >= 2
  assert len(mailer.sent) == 1


@pytest.mark.anyio
async def test_stop_without_start_is_a_noop() -> None:
  scheduler = ReminderScheduler(mailer=FakeMailer(), session_factory=SessionLocal)
  await scheduler.stop()
  assert not scheduler.running
