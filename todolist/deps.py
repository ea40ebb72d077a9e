from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from todolist.db import SessionLocal
from todolist.models import User
from todolist.security import InvalidAccessToken, decode_access_token


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
  auth = request.headers.get("authorization")
  if not auth or not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  try:
    payload = decode_access_token(token)
  except InvalidAccessToken as exc:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

  res = await db.execute(select(User).where(User.id == str(payload["sub"])))
  u = res.scalar_one_or_none()
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
  if not u.is_verified:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Email is not verified")
  return u


def client_ip(request: Request) -> str:
  return request.client.host if request.client else "unknown"
