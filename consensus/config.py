"""Environment configuration for the Consensus service.

Two values make up the whole configurable surface:

- ``CONSENSUS_DATABASE_URL``: SQLAlchemy URL of the store. Defaults to a
  SQLite file under ``consensus/data``.
- ``CONSENSUS_API_KEY``: shared key used to verify session tokens issued by
  the identity provider. Without it no request can authenticate.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_DATABASE_URL = f"sqlite:///{DATA_DIR / 'consensus.db'}"


@dataclass(frozen=True)
class Settings:
    database_url: str
    api_key: str | None


def load_settings() -> Settings:
    """Read settings from the environment on every call so tests can monkeypatch."""
    url = os.environ.get("CONSENSUS_DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL
    key = os.environ.get("CONSENSUS_API_KEY", "").strip() or None
    return Settings(database_url=url, api_key=key)
