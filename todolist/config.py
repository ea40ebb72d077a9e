from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://todolist:todolist@db:5432/todolist"
  app_version: str = "0.1.0"
  build_sha: str = "dev"
  app_url: str = "http://localhost:5173"

  jwt_secret: str = "dev-secret-change-me"
  jwt_algorithm: str = "HS256"
  jwt_expires_minutes: int = 60 * 24 * 7
  otp_ttl_minutes: int = 10

  smtp_host: str | None = None
  smtp_port: int = 587
  smtp_user: str | None = None
  smtp_pass: str | None = None
  smtp_from: str = "no-reply@example.com"
  smtp_starttls: bool = True

  default_timezone: str = "UTC"

  reminder_scheduler_enabled: bool = True
  reminder_poll_seconds: int = 60

  upload_dir: str = "data/uploads"
  max_attachment_bytes: int = 10 * 1024 * 1024
  max_files_per_upload: int = 10

  cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"
  redis_url: str | None = None
  rate_limit_login_ip_per_minute: int = 60
  rate_limit_login_email_per_minute: int = 20
  rate_limit_otp_email_per_minute: int = 5

  log_level: str = "INFO"
  log_dir: str | None = None

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
