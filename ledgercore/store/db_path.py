"""Resolve the ledger database location."""

from __future__ import annotations

from pathlib import Path

from ledgercore.config import settings
from ledgercore.store.schema import DEFAULT_DB_PATH

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def resolve_db_path(explicit_db_path: str | None = None) -> str:
    """CLI flag first, then the DB_PATH setting, then data/ledger.db.

    Relative paths are anchored at the project root so cron jobs started from
    another directory still hit the same file.
    """
    path = explicit_db_path or settings.db_path
    if not path:
        return str(DEFAULT_DB_PATH)
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = (PROJECT_ROOT / p).resolve()
    return str(p)
