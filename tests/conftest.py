"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- In-memory stores wired into a RecoveryOrchestrator
- A deterministic attestation engine standing in for WebAuthn crypto
- PostgreSQL connection pool with schema and table cleanup (skips if unreachable)
"""

from collections.abc import Callable, Generator
from typing import Any

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from src.adapters.repository.memory import (
    InMemoryCredentialRegistry,
    InMemoryIdentityStore,
    InMemoryRecoveryTokenStore,
    InMemorySessionService,
)
from src.adapters.repository.postgres import run_migrations
from src.config.settings import get_settings
from src.domain.challenge import ChallengeGenerator
from src.domain.exceptions import AttestationRejected
from src.domain.models import AttestationChallenge, Credential, CredentialEnrolledViaRecovery
from src.domain.recovery import RecoveryOrchestrator


class FakeAttestationEngine:
    """
    Attestation engine that accepts a response iff it echoes the nonce.

    Responses look like {"challenge": <nonce hex>, "id": <credential id hex>}.
    """

    def __init__(self) -> None:
        self.verified: list[AttestationChallenge] = []

    def creation_options(self, challenge: AttestationChallenge) -> dict[str, Any]:
        return {
            "challenge": challenge.nonce.hex(),
            "rp": {"id": challenge.rp_id},
            "user": {"name": challenge.user.email},
            "excludeCredentials": [c.hex() for c in challenge.exclude_credentials],
        }

    def verify(self, challenge: AttestationChallenge, response: dict[str, Any]) -> Credential:
        self.verified.append(challenge)
        if response.get("challenge") != challenge.nonce.hex():
            raise AttestationRejected()
        return Credential(
            id=bytes.fromhex(response["id"]),
            public_key=b"public-key-" + bytes.fromhex(response["id"]),
            transports=frozenset(response.get("transports", ())),
        )


class RecordingEmailSender:
    """Captures recovery tokens instead of sending them."""

    def __init__(self) -> None:
        self.sent: dict[str, str] = {}

    def send_recovery_link(self, email: str, token: str) -> None:
        self.sent[email] = token


class RecordingEventPublisher:
    def __init__(self) -> None:
        self.events: list[CredentialEnrolledViaRecovery] = []

    def publish(self, event: CredentialEnrolledViaRecovery) -> None:
        self.events.append(event)


@pytest.fixture
def identity_store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def token_store() -> InMemoryRecoveryTokenStore:
    # Minimum bcrypt cost keeps the suite fast
    return InMemoryRecoveryTokenStore(ttl_seconds=3600, bcrypt_cost=4)


@pytest.fixture
def credential_registry() -> InMemoryCredentialRegistry:
    return InMemoryCredentialRegistry()


@pytest.fixture
def session_service() -> InMemorySessionService:
    return InMemorySessionService()


@pytest.fixture
def attestation_engine() -> FakeAttestationEngine:
    return FakeAttestationEngine()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def event_publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def orchestrator(
    identity_store: InMemoryIdentityStore,
    token_store: InMemoryRecoveryTokenStore,
    credential_registry: InMemoryCredentialRegistry,
    session_service: InMemorySessionService,
    attestation_engine: FakeAttestationEngine,
    email_sender: RecordingEmailSender,
    event_publisher: RecordingEventPublisher,
) -> RecoveryOrchestrator:
    """Orchestrator wired to in-memory stores and the fake engine."""
    return RecoveryOrchestrator(
        identity_store=identity_store,
        token_store=token_store,
        credentials=credential_registry,
        challenge_generator=ChallengeGenerator(rp_id="example.com", timeout_seconds=60),
        attestation_engine=attestation_engine,
        sessions=session_service,
        events=event_publisher,
        email_sender=email_sender,
    )


@pytest.fixture
def make_attestation() -> Callable[..., dict[str, Any]]:
    """Build a response the fake engine accepts for the given challenge."""

    def _make(challenge: AttestationChallenge, credential_id: bytes = b"\x01" * 16) -> dict[str, Any]:
        return {"challenge": challenge.nonce.hex(), "id": credential_id.hex(), "transports": ["usb"]}

    return _make


@pytest.fixture(scope="session")
def pg_pool() -> Generator[ConnectionPool, None, None]:
    """
    Connection pool for PostgreSQL-backed tests, with migrations applied.

    Skips the requesting test when the database cannot be reached.
    """
    settings = get_settings()
    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=1,
        max_size=10,
        open=True,
    )
    try:
        pool.wait(timeout=3.0)
    except PoolTimeout:
        pool.close()
        pytest.skip("PostgreSQL is not reachable")

    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def clean_pg(pg_pool: ConnectionPool) -> ConnectionPool:
    """Empty all recovery tables before the test."""
    with pg_pool.connection() as conn:
        conn.execute("TRUNCATE sessions, credentials, recovery_tokens, users RESTART IDENTITY")
        conn.commit()
    return pg_pool
