from __future__ import annotations

import logging
import sys
from pathlib import Path

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _ThirdPartyNoiseFilter(logging.Filter):
  """Keep our own loggers and uvicorn; drop other libraries below WARNING."""

  def filter(self, record: logging.LogRecord) -> bool:
    name = record.name
    if name.startswith("todolist") or name.startswith("uvicorn"):
      return True
    return record.levelno >= logging.WARNING


def setup_logging(*, level: str | int = logging.INFO, log_dir: str | Path | None = None) -> None:
  """
  Configure the root logger once, at application startup.

  Console output is filtered for readability; when log_dir is given, a file
  handler receives everything at DEBUG.
  """
  root = logging.getLogger()
  root.setLevel(logging.DEBUG)

  for h in list(root.handlers):
    root.removeHandler(h)

  fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

  ch = logging.StreamHandler(sys.stderr)
  ch.setLevel(level if isinstance(level, int) else logging.getLevelName(str(level).upper()))
  ch.setFormatter(fmt)
  ch.addFilter(_ThirdPartyNoiseFilter())
  root.addHandler(ch)

  if log_dir:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(str(path / "todolist.log"), encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    root.addHandler(fh)

  logging.captureWarnings(True)
