"""Shared fixtures for ledgercore tests.

Fakes and builders (FakePriceFeed, make_candles, etc.) are in tests/helpers.py.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ledgercore.ledger.engine import LedgerEngine


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    """Temporary database path — each test gets an isolated SQLite file."""
    return tmp_path / "test.db"


@pytest.fixture()
def engine(db_path: Path) -> LedgerEngine:
    return LedgerEngine(db_path)
