from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext

from todolist.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

OTP_DIGITS = 6


class InvalidAccessToken(Exception):
  pass


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  return pwd_context.verify(password, password_hash)


def create_access_token(user_id: str, email: str, *, now: datetime | None = None) -> str:
  issued = now or datetime.now(timezone.utc)
  payload = {
    "sub": str(user_id),
    "email": email,
    "iat": issued,
    "exp": issued + timedelta(minutes=int(settings.jwt_expires_minutes)),
  }
  return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
  try:
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
  except jwt.ExpiredSignatureError as exc:
    raise InvalidAccessToken("Token expired") from exc
  except jwt.InvalidTokenError as exc:
    raise InvalidAccessToken("Invalid token") from exc
  if not payload.get("sub"):
    raise InvalidAccessToken("Token has no subject")
  return payload


def generate_otp() -> str:
  # 100000..999999, never a leading zero
  low = 10 ** (OTP_DIGITS - 1)
  return str(low + secrets.randbelow(9 * low))


def otp_hash(user_id: str, otp: str) -> str:
  # Keyed per user so equal codes for different users never share a hash.
  key = (settings.jwt_secret or "").encode("utf-8")
  msg = f"{user_id}:{(otp or '').strip()}".encode("utf-8")
  return hmac.new(key, msg, hashlib.sha256).hexdigest()


def otp_expires_at(now: datetime | None = None) -> datetime:
  return (now or datetime.now(timezone.utc)) + timedelta(minutes=int(settings.otp_ttl_minutes))
