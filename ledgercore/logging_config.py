"""Structured logging configuration.

JSON formatter + TimedRotatingFileHandler for sweep and report logs.
A run_id attribute on records ties together every line of one cron tick.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import uuid
from pathlib import Path

from ledgercore.config import settings

LOG_DIR = Path(__file__).resolve().parent.parent / "data" / "logs"

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON structured log formatter with run_id support."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "run_id": getattr(record, "run_id", ""),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class RunIdFilter(logging.Filter):
    """Stamp every record passing through a handler with the current run_id."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "run_id", ""):
            record.run_id = self.run_id
        return True


def setup_logging(
    structured: bool = False,
    log_dir: Path | str | None = None,
    filename: str = "ledgercore.log",
) -> str:
    """Configure root logger. Returns the run_id for this process.

    Args:
        structured: If True, the file handler writes JSON lines. Also enabled
            by the STRUCTURED_LOGGING setting.
        log_dir: Override log directory. Defaults to data/logs/.
        filename: Log file name inside log_dir.
    """
    run_id = uuid.uuid4().hex[:12]
    log_path = Path(log_dir) if log_dir else LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.INFO)

    # clear existing handlers so repeated setup does not duplicate lines
    root.handlers.clear()

    run_filter = RunIdFilter(run_id)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    console.addFilter(run_filter)
    root.addHandler(console)

    # daily rotation, 30 days retention
    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_path / filename,
        when="midnight",
        backupCount=30,
        encoding="utf-8",
    )
    if structured or settings.structured_logging:
        file_handler.setFormatter(JSONFormatter())
    else:
        file_handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    file_handler.addFilter(run_filter)
    root.addHandler(file_handler)

    return run_id
