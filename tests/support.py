"""Shared helpers for the ledger tests (not fixtures)."""

import os
from datetime import datetime, timezone

import pytest


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def is_postgres_url(url: str | None) -> bool:
    return bool(url) and url.startswith("postgresql")


requires_postgres = pytest.mark.skipif(
    not is_postgres_url(os.environ.get("DATABASE_URL")),
    reason="needs PostgreSQL row locks (set DATABASE_URL)",
)
