from __future__ import annotations

from pathlib import Path

import pytest

from passkey_rp.ceremony import CeremonyOrchestrator, SessionContext
from passkey_rp.challenges import InMemorySessionStore
from passkey_rp.config import RPSettings
from passkey_rp.database import Database
from passkey_rp.tests.authenticator import SoftwareAuthenticator

ORIGIN = "https://example.test"
RP_ID = "example.test"


@pytest.fixture
def settings(tmp_path: Path) -> RPSettings:
    return RPSettings(
        database_url=f"sqlite:///{tmp_path / 'rp.db'}",
        rp_id=RP_ID,
        rp_name="Example",
        origin=ORIGIN,
        secret_key="test-secret",
    )


@pytest.fixture
def database(settings: RPSettings) -> Database:
    db = Database(settings)
    db.create_all()
    return db


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def orchestrator(settings, database, session_store) -> CeremonyOrchestrator:
    return CeremonyOrchestrator(settings, database, session_store)


@pytest.fixture
def context() -> SessionContext:
    return SessionContext(session_id="session-1")


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator()
