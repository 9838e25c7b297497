"""Shared fixtures: in-memory SQLite database and seeded profiles."""
from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from consensus import services
from consensus.db import make_engine
from consensus.models import Base

ALICE = "user-alice"
BOB = "user-bob"
CAROL = "user-carol"


@pytest.fixture()
def engine():
    """In-memory engine shared across connections, with foreign keys enforced."""
    eng = make_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def profiles(session: Session) -> dict[str, str]:
    services.ensure_profile(session, ALICE, email="alice@example.com", full_name="Alice")
    services.ensure_profile(session, BOB, email="bob@example.com")
    services.ensure_profile(session, CAROL, email="carol@example.com", full_name="Carol")
    return {"alice": ALICE, "bob": BOB, "carol": CAROL}
