from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Protocol

from todolist.config import settings
from todolist.timezones import resolve_zone

logger = logging.getLogger(__name__)

_PRIORITY_COLORS = {
  "high": ("#fee2e2", "#991b1b"),
  "medium": ("#fef3c7", "#92400e"),
  "low": ("#dcfce7", "#166534"),
}


@dataclass(frozen=True)
class ReminderContent:
  title: str
  description: str | None
  due_date: datetime | None
  priority: str
  category_name: str | None
  timezone: str | None = None


@dataclass(frozen=True)
class OutgoingMail:
  to: str
  subject: str
  text: str
  html: str


class MailTransport(Protocol):
  async def send(self, mail: OutgoingMail) -> None: ...


class LogOnlyTransport:
  """Used when no SMTP host is configured; delivery is only logged."""

  async def send(self, mail: OutgoingMail) -> None:
    logger.info("Mail (not delivered, no SMTP host): to=%s subject=%r", mail.to, mail.subject)


class SmtpTransport:
  def __init__(
    self,
    *,
    host: str,
    port: int,
    username: str | None,
    password: str | None,
    from_addr: str,
    starttls: bool = True,
  ) -> None:
    self.host = host
    self.port = port
    self.username = username
    self.password = password
    self.from_addr = from_addr
    self.starttls = starttls

  async def send(self, mail: OutgoingMail) -> None:
    def _send_sync() -> None:
      m = EmailMessage()
      m["Subject"] = mail.subject
      m["From"] = self.from_addr
      m["To"] = mail.to
      m.set_content(mail.text)
      m.add_alternative(mail.html, subtype="html")
      with smtplib.SMTP(host=self.host, port=self.port, timeout=15) as s:
        s.ehlo()
        if self.starttls:
          s.starttls()
          s.ehlo()
        if self.username and self.password:
          s.login(self.username, self.password)
        s.send_message(m)

    await asyncio.to_thread(_send_sync)


def transport_from_settings() -> MailTransport:
  host = (settings.smtp_host or "").strip()
  if not host:
    return LogOnlyTransport()
  return SmtpTransport(
    host=host,
    port=int(settings.smtp_port),
    username=settings.smtp_user,
    password=settings.smtp_pass,
    from_addr=settings.smtp_from,
    starttls=bool(settings.smtp_starttls),
  )


def format_due_date(value: datetime | None, zone_name: str | None = None) -> str:
  if value is None:
    return "No due date"
  return value.astimezone(resolve_zone(zone_name)).strftime("%A, %B %d, %Y %H:%M %Z").strip()


def render_otp_email(to: str, otp: str) -> OutgoingMail:
  minutes = int(settings.otp_ttl_minutes)
  text = (
    f"Here is your verification code: {otp}\n\n"
    f"This code will expire in {minutes} minutes. If you did not request this, you can ignore this email."
  )
  body = (
    '<div style="font-family: system-ui, sans-serif;">'
    "<h2>Email Verification</h2>"
    "<p>Here is your verification code:</p>"
    f'<div style="font-size: 24px; font-weight: 700; letter-spacing: 0.3em;">{html.escape(otp)}</div>'
    f'<p style="color: #6b7280;">This code will expire in {minutes} minutes. '
    "If you did not request this, you can ignore this email.</p>"
    "</div>"
  )
  return OutgoingMail(to=to, subject="Your TodoList Email Verification Code", text=text, html=body)


def render_reminder_email(to: str, user_name: str, content: ReminderContent) -> OutgoingMail:
  bg, fg = _PRIORITY_COLORS.get(content.priority, _PRIORITY_COLORS["medium"])
  due = format_due_date(content.due_date, content.timezone)
  lines = [f"Hey {user_name}, don't forget about this task!", "", content.title]
  if content.description:
    lines.append(content.description)
  lines.append(f"Priority: {content.priority}")
  if content.category_name:
    lines.append(f"Category: {content.category_name}")
  lines.append(f"Due: {due}")
  lines.extend(["", f"Open TodoList: {settings.app_url}/today"])

  parts = [
    '<div style="font-family: system-ui, sans-serif; max-width: 600px;">',
    "<h1>Task Reminder</h1>",
    f"<p>Hey {html.escape(user_name)}, don't forget about this task!</p>",
    f'<div style="border-left: 4px solid {fg}; padding: 16px; background: #f9fafb;">',
    f"<h2>{html.escape(content.title)}</h2>",
  ]
  if content.description:
    parts.append(f'<p style="color: #6b7280;">{html.escape(content.description)}</p>')
  parts.append(
    f'<span style="background: {bg}; color: {fg}; padding: 6px 12px; border-radius: 9999px;">'
    f"{html.escape(content.priority)} Priority</span>"
  )
  if content.category_name:
    parts.append(
      '<span style="background: #e5e7eb; color: #374151; padding: 6px 12px; border-radius: 9999px;">'
      f"{html.escape(content.category_name)}</span>"
    )
  parts.append("</div>")
  if content.due_date is not None:
    parts.append(f'<p style="background: #fef3c7; padding: 16px;"><strong>Due Date</strong><br>{html.escape(due)}</p>')
  parts.append(f'<p><a href="{html.escape(settings.app_url)}/today">Open TodoList App</a></p>')
  parts.append("</div>")
  return OutgoingMail(to=to, subject=f"Reminder: {content.title}", text="\n".join(lines), html="".join(parts))


class MailService:
  """
  Outbound mail for the app. Send methods never raise; they log and return
  False so callers can decide whether to retry.
  """

  def __init__(self, transport: MailTransport | None = None) -> None:
    self._transport = transport

  @property
  def transport(self) -> MailTransport:
    if self._transport is None:
      self._transport = transport_from_settings()
    return self._transport

  async def send_otp_email(self, to: str, otp: str) -> bool:
    try:
      await self.transport.send(render_otp_email(to, otp))
    except Exception:
      logger.exception("Failed to send OTP email to %s", to)
      return False
    logger.info("OTP email sent to %s", to)
    return True

  async def send_task_reminder_email(self, to: str, user_name: str, content: ReminderContent) -> bool:
    try:
      await self.transport.send(render_reminder_email(to, user_name, content))
    except Exception:
      logger.exception("Failed to send task reminder email to %s", to)
      return False
    logger.info("Task reminder email sent to %s for task: %s", to, content.title)
    return True


mailer = MailService()
