"""Shared utility functions used across Consensus modules."""
from __future__ import annotations

from datetime import datetime, UTC


def clean_text(value: str | None) -> str:
    """Strip surrounding whitespace; ``None`` becomes the empty string."""
    return (value or "").strip()


def iso(value: datetime | None) -> str | None:
    """ISO timestamp in UTC. SQLite hands back naive datetimes; those are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()
