from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from todolist.audit import write_audit
from todolist.categories import ensure_default_category
from todolist.config import settings
from todolist.deps import client_ip, get_db
from todolist.mail.service import mailer
from todolist.models import EmailVerificationToken, User, utcnow
from todolist.rate_limit import limiter
from todolist.schemas import LoginIn, OtpSentOut, RegisterIn, ResendOtpIn, StatusOut, TokenOut, VerifyOtpIn
from todolist.security import create_access_token, generate_otp, hash_password, otp_expires_at, otp_hash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _rate_limit_or_429(*, key: str, limit: int, window_seconds: int = 60) -> None:
  allowed, retry_after = limiter.hit(key, limit=limit, window_seconds=window_seconds)
  if allowed:
    return
  raise HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail={"code": "rate_limited", "message": "Too many requests", "retryAfterSeconds": retry_after},
    headers={"Retry-After": str(retry_after)},
  )


async def _user_by_email(db: AsyncSession, email: str) -> User | None:
  res = await db.execute(select(User).where(User.email == email))
  return res.scalar_one_or_none()


async def _issue_otp(db: AsyncSession, u: User) -> str:
  otp = generate_otp()
  db.add(EmailVerificationToken(user_id=u.id, otp_hash=otp_hash(u.id, otp), expires_at=otp_expires_at(), used=False))
  return otp


@router.post("/register", response_model=OtpSentOut)
async def register(payload: RegisterIn, request: Request, db: AsyncSession = Depends(get_db)) -> OtpSentOut:
  _rate_limit_or_429(key=f"auth:register:ip:{client_ip(request)}", limit=int(settings.rate_limit_login_ip_per_minute))
  if await _user_by_email(db, payload.email):
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

  u = User(name=payload.name.strip(), email=payload.email, password_hash=hash_password(payload.password), is_verified=False)
  db.add(u)
  await db.flush()
  otp = await _issue_otp(db, u)
  await write_audit(db, event_type="user.registered", entity_type="User", entity_id=u.id, user_id=u.id, payload={"email": u.email})
  await db.commit()

  await mailer.send_otp_email(u.email, otp)
  logger.info("Registered user %s; verification code sent", u.email)
  return OtpSentOut(email=u.email)


@router.post("/verify-otp", response_model=StatusOut)
async def verify_otp(payload: VerifyOtpIn, db: AsyncSession = Depends(get_db)) -> StatusOut:
  _rate_limit_or_429(key=f"auth:otp:email:{payload.email}", limit=int(settings.rate_limit_otp_email_per_minute))
  u = await _user_by_email(db, payload.email)
  if not u:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

  res = await db.execute(
    select(EmailVerificationToken)
    .where(
      EmailVerificationToken.user_id == u.id,
      EmailVerificationToken.otp_hash == otp_hash(u.id, payload.otp),
      EmailVerificationToken.used.is_(False),
      EmailVerificationToken.expires_at > utcnow(),
    )
    .order_by(EmailVerificationToken.created_at.desc())
    .limit(1)
  )
  token = res.scalar_one_or_none()
  if not token:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired OTP")

  token.used = True
  u.is_verified = True
  await ensure_default_category(db, user_id=u.id)
  await write_audit(db, event_type="user.verified", entity_type="User", entity_id=u.id, user_id=u.id, payload={})
  await db.commit()
  logger.info("User %s verified", u.email)
  return StatusOut()


@router.post("/resend-otp", response_model=OtpSentOut)
async def resend_otp(payload: ResendOtpIn, db: AsyncSession = Depends(get_db)) -> OtpSentOut:
  _rate_limit_or_429(key=f"auth:otp:email:{payload.email}", limit=int(settings.rate_limit_otp_email_per_minute))
  u = await _user_by_email(db, payload.email)
  if not u:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
  if u.is_verified:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already verified")

  await db.execute(
    update(EmailVerificationToken)
    .where(EmailVerificationToken.user_id == u.id, EmailVerificationToken.used.is_(False))
    .values(used=True)
  )
  otp = await _issue_otp(db, u)
  await db.commit()

  await mailer.send_otp_email(u.email, otp)
  return OtpSentOut(email=u.email)


@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, request: Request, db: AsyncSession = Depends(get_db)) -> TokenOut:
  _rate_limit_or_429(key=f"auth:login:ip:{client_ip(request)}", limit=int(settings.rate_limit_login_ip_per_minute))
  _rate_limit_or_429(key=f"auth:login:email:{payload.email}", limit=int(settings.rate_limit_login_email_per_minute))

  u = await _user_by_email(db, payload.email)
  if not u or not verify_password(payload.password, u.password_hash):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
  if not u.is_verified:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Email is not verified")
  return TokenOut(accessToken=create_access_token(u.id, u.email))
