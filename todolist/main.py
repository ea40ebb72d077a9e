from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from todolist.config import settings
from todolist.logging_setup import setup_logging
from todolist.reminders.service import ReminderScheduler
from todolist.routers.auth import router as auth_router
from todolist.routers.categories import router as categories_router
from todolist.routers.tasks import router as tasks_router
from todolist.routers.users import router as users_router

logger = logging.getLogger(__name__)

app = FastAPI(title="TodoList API", version=settings.app_version)

app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(categories_router)
app.include_router(tasks_router)


@app.middleware("http")
async def _security_headers_middleware(request, call_next):
  response = await call_next(request)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


reminder_scheduler = ReminderScheduler()


def _is_test_db() -> bool:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  return "test" in db_name


@app.on_event("startup")
async def _startup() -> None:
  setup_logging(level=settings.log_level, log_dir=settings.log_dir)
  if _is_test_db():
    return
  if not settings.jwt_secret or settings.jwt_secret.strip().lower() in {"dev-secret-change-me", "replace_with_strong_random_secret"}:
    logger.warning("JWT_SECRET is a placeholder; set a strong secret outside development")
  if settings.reminder_scheduler_enabled:
    reminder_scheduler.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
  await reminder_scheduler.stop()
