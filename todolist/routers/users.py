from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from todolist.deps import get_current_user, get_db
from todolist.models import User
from todolist.schemas import UserOut, UserUpdateIn

router = APIRouter(prefix="/users", tags=["users"])


def _user_out(u: User) -> UserOut:
  return UserOut(
    id=u.id,
    name=u.name,
    email=u.email,
    isVerified=bool(u.is_verified),
    timezone=u.timezone,
    createdAt=u.created_at,
    updatedAt=u.updated_at,
  )


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
  return _user_out(user)


@router.patch("/me", response_model=UserOut)
async def update_me(payload: UserUpdateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UserOut:
  fields_set = payload.model_fields_set
  if "name" in fields_set and payload.name is not None:
    user.name = payload.name.strip()
  if "timezone" in fields_set:
    user.timezone = payload.timezone
  await db.commit()
  await db.refresh(user)
  return _user_out(user)
