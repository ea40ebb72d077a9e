from __future__ import annotations

import os
import sys
from datetime import datetime
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./todolist_test.db")

from todolist.config import settings
from todolist.db import SessionLocal, engine
from todolist.mail.service import ReminderContent
from todolist.main import app
from todolist.models import AuditEvent, Base, Category, EmailVerificationToken, Task, TaskFile, User
from todolist.rate_limit import limiter
from todolist.security import hash_password


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  limiter.reset_prefix("auth:")
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    await db.execute(delete(AuditEvent))
    await db.execute(delete(TaskFile))
    await db.execute(delete(Task))
    await db.execute(delete(Category))
    await db.execute(delete(EmailVerificationToken))
    await db.execute(delete(User))
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. todolist_test.db)."
    )
  await _reset_db()
  yield
  await _reset_db()


@pytest.fixture
async def client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def create_user(
  email: str,
  *,
  name: str | None = None,
  password: str = "secret123",
  timezone: str | None = None,
  verified: bool = True,
) -> str:
  async with SessionLocal() as db:
    u = User(
      email=email,
      name=name or email.split("@", 1)[0].title(),
      password_hash=hash_password(password),
      is_verified=verified,
      timezone=timezone,
    )
    db.add(u)
    await db.commit()
    return u.id


async def login(client: AsyncClient, email: str, password: str = "secret123") -> dict[str, str]:
  res = await client.post("/auth/login", json={"email": email, "password": password})
  assert res.status_code == 200, res.text
  return {"Authorization": f"Bearer {res.json()['accessToken']}"}


async def make_category(user_id: str, name: str, **fields) -> str:
  async with SessionLocal() as db:
    c = Category(user_id=user_id, name=name, name_key=name.strip().lower(), **fields)
    db.add(c)
    await db.commit()
    return c.id


async def make_task(user_id: str, title: str, *, due: datetime | None = None, **fields) -> str:
  async with SessionLocal() as db:
    t = Task(user_id=user_id, title=title, due_date=due, **fields)
    db.add(t)
    await db.commit()
    return t.id


async def load_user(user_id: str) -> User:
  async with SessionLocal() as db:
    return await db.get(User, user_id)


async def load_task(task_id: str) -> Task | None:
  async with SessionLocal() as db:
    return await db.get(Task, task_id)


class FakeMailer:
  """Records reminder sends; `ok` controls the reported result, `explode` raises for matching titles."""

  def __init__(self, *, ok: bool = True, explode: set[str] | None = None) -> None:
    self.ok = ok
    self.explode = explode or set()
    self.sent: list[tuple[str, str, ReminderContent]] = []

  async def send_task_reminder_email(self, to: str, user_name: str, content: ReminderContent) -> bool:
    if content.title in self.explode:
      raise RuntimeError(f"mail transport blew up for {content.title}")
    if not self.ok:
      return False
    self.sent.append((to, user_name, content))
    return True

  async def send_otp_email(self, to: str, otp: str) -> bool:
    return True
