from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from todolist.models import Category

DEFAULT_CATEGORY_NAME = "Home"


def name_key(name: str) -> str:
  return (name or "").strip().lower()


async def find_by_name(db: AsyncSession, *, user_id: str, name: str) -> Category | None:
  res = await db.execute(select(Category).where(Category.user_id == user_id, Category.name_key == name_key(name)))
  return res.scalar_one_or_none()


async def ensure_default_category(db: AsyncSession, *, user_id: str) -> Category:
  """
  Ensure the user owns a "Home" category. Idempotent; the caller commits.
  """
  existing = await find_by_name(db, user_id=user_id, name=DEFAULT_CATEGORY_NAME)
  if existing:
    return existing
  c = Category(user_id=user_id, name=DEFAULT_CATEGORY_NAME, name_key=name_key(DEFAULT_CATEGORY_NAME))
  db.add(c)
  await db.flush()
  return c
