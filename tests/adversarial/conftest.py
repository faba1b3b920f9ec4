"""
Shared fixtures for adversarial tests.

Every scenario runs against both storage backends: in-memory, and
PostgreSQL when reachable.
"""

from collections.abc import Callable

import pytest

from src.api.dependencies import Stores, build_memory_stores, build_postgres_stores
from src.config.settings import get_settings
from src.domain.challenge import ChallengeGenerator
from src.domain.ports import AttestationEngine, EmailSender, EventPublisher
from src.domain.recovery import RecoveryOrchestrator


@pytest.fixture(params=["memory", "postgres"])
def stores(request: pytest.FixtureRequest) -> Stores:
    """Storage adapters for one backend, with a cheap bcrypt cost."""
    settings = get_settings().model_copy(update={"bcrypt_cost": 4})
    if request.param == "memory":
        return build_memory_stores(settings)
    pool = request.getfixturevalue("clean_pg")
    return build_postgres_stores(pool, settings)


@pytest.fixture
def make_orchestrator(
    stores: Stores,
    attestation_engine: AttestationEngine,
    email_sender: EmailSender,
    event_publisher: EventPublisher,
) -> Callable[[], RecoveryOrchestrator]:
    """Build orchestrators that share one set of stores, like separate workers."""

    def _make() -> RecoveryOrchestrator:
        return RecoveryOrchestrator(
            identity_store=stores.identity,
            token_store=stores.tokens,
            credentials=stores.credentials,
            challenge_generator=ChallengeGenerator(rp_id="example.com"),
            attestation_engine=attestation_engine,
            sessions=stores.sessions,
            events=event_publisher,
            email_sender=email_sender,
        )

    return _make


@pytest.fixture
def recovery(make_orchestrator: Callable[[], RecoveryOrchestrator]) -> RecoveryOrchestrator:
    return make_orchestrator()
