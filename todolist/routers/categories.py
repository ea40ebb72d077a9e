from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from todolist.audit import write_audit
from todolist.buckets.service import DEFAULT_CATEGORY_COLOR, DEFAULT_CATEGORY_ICON
from todolist.categories import find_by_name, name_key
from todolist.deps import get_current_user, get_db
from todolist.models import Category, Task, User
from todolist.schemas import CategoryCreateIn, CategoryOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/categories", tags=["categories"])


def _category_out(c: Category) -> CategoryOut:
  return CategoryOut(
    id=c.id,
    name=c.name,
    color=c.color or DEFAULT_CATEGORY_COLOR,
    icon=c.icon or DEFAULT_CATEGORY_ICON,
    createdAt=c.created_at,
  )


@router.get("", response_model=list[CategoryOut])
async def list_categories(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[CategoryOut]:
  res = await db.execute(select(Category).where(Category.user_id == user.id).order_by(Category.created_at.asc()))
  return [_category_out(c) for c in res.scalars().all()]


@router.post("", response_model=CategoryOut)
async def create_category(payload: CategoryCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> CategoryOut:
  duplicate = await find_by_name(db, user_id=user.id, name=payload.name)
  if duplicate:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f'Category "{payload.name}" already exists')

  c = Category(
    user_id=user.id,
    name=payload.name,
    name_key=name_key(payload.name),
    color=payload.color or DEFAULT_CATEGORY_COLOR,
    icon=payload.icon or DEFAULT_CATEGORY_ICON,
  )
  db.add(c)
  try:
    await db.flush()
  except IntegrityError as exc:
    # Lost a race against a concurrent create of the same name.
    await db.rollback()
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f'Category "{payload.name}" already exists') from exc
  await write_audit(db, event_type="category.created", entity_type="Category", entity_id=c.id, user_id=user.id, payload={"name": c.name})
  await db.commit()
  logger.info("User %s created category %r", user.id, c.name)
  return _category_out(c)


@router.delete("/{category_id}")
async def delete_category(category_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  res = await db.execute(select(Category).where(Category.id == category_id, Category.user_id == user.id))
  c = res.scalar_one_or_none()
  if not c:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")

  count = (await db.execute(select(func.count()).select_from(Task).where(Task.category_id == c.id))).scalar_one()
  if int(count) > 0:
    raise HTTPException(
      status_code=status.HTTP_409_CONFLICT,
      detail="Cannot delete category with existing tasks. Please move or delete the tasks first.",
    )

  cid, cname = c.id, c.name
  await db.execute(delete(Category).where(Category.id == cid))
  await write_audit(db, event_type="category.deleted", entity_type="Category", entity_id=cid, user_id=user.id, payload={"name": cname})
  await db.commit()
  return {"message": "Category deleted successfully"}
