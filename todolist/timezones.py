from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from todolist.config import settings


def resolve_zone(name: str | None) -> ZoneInfo:
  for candidate in (name, settings.default_timezone, "UTC"):
    if not candidate:
      continue
    try:
      return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
      continue
  return ZoneInfo("UTC")


def local_to_utc(value: datetime | None, zone: ZoneInfo) -> datetime | None:
  """Naive values are wall-clock time in `zone`; aware values only change representation."""
  if value is None:
    return None
  if value.tzinfo is None:
    value = value.replace(tzinfo=zone)
  return value.astimezone(timezone.utc)
