"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.
"""

from dataclasses import dataclass

from fastapi import Request
from psycopg_pool import ConnectionPool

from src.adapters.events.log_publisher import LoggingEventPublisher
from src.adapters.repository.memory import (
    InMemoryCredentialRegistry,
    InMemoryIdentityStore,
    InMemoryRecoveryTokenStore,
    InMemorySessionService,
)
from src.adapters.repository.postgres import (
    PostgresCredentialRegistry,
    PostgresIdentityStore,
    PostgresRecoveryTokenStore,
    PostgresSessionService,
)
from src.adapters.smtp.console import ConsoleEmailSender
from src.adapters.webauthn.engine import PyWebAuthnEngine
from src.config.settings import Settings, get_settings
from src.domain.challenge import ChallengeGenerator
from src.domain.ports import CredentialRegistry, IdentityStore, RecoveryTokenStore, SessionService
from src.domain.recovery import RecoveryOrchestrator

# Module-level singletons - both adapters are stateless
_email_sender = ConsoleEmailSender()
_event_publisher = LoggingEventPublisher()


@dataclass(frozen=True)
class Stores:
    """Storage adapters for one backend, built once at startup."""

    identity: IdentityStore
    tokens: RecoveryTokenStore
    credentials: CredentialRegistry
    sessions: SessionService


def build_postgres_stores(pool: ConnectionPool, settings: Settings) -> Stores:
    """Wire PostgreSQL adapters sharing one connection pool."""
    return Stores(
        identity=PostgresIdentityStore(pool),
        tokens=PostgresRecoveryTokenStore(
            pool,
            ttl_seconds=settings.recovery_token_ttl_seconds,
            bcrypt_cost=settings.bcrypt_cost,
        ),
        credentials=PostgresCredentialRegistry(pool),
        sessions=PostgresSessionService(pool),
    )


def build_memory_stores(settings: Settings) -> Stores:
    """Wire process-local adapters (single worker only)."""
    return Stores(
        identity=InMemoryIdentityStore(),
        tokens=InMemoryRecoveryTokenStore(
            ttl_seconds=settings.recovery_token_ttl_seconds,
            bcrypt_cost=settings.bcrypt_cost,
        ),
        credentials=InMemoryCredentialRegistry(),
        sessions=InMemorySessionService(),
    )


def get_stores(request: Request) -> Stores:
    """
    Get storage adapters from app state.

    The stores are created during app lifespan startup and stored in app.state.
    """
    return request.app.state.stores


def get_challenge_generator() -> ChallengeGenerator:
    settings = get_settings()
    return ChallengeGenerator(
        rp_id=settings.rp_id,
        timeout_seconds=settings.challenge_timeout_seconds,
        nonce_bytes=settings.challenge_bytes,
    )


def get_attestation_engine() -> PyWebAuthnEngine:
    settings = get_settings()
    return PyWebAuthnEngine(rp_name=settings.rp_name, expected_origin=settings.expected_origin)


def get_recovery_orchestrator(request: Request) -> RecoveryOrchestrator:
    """
    Create recovery orchestrator with injected dependencies.

    Wires together the stores, challenge generator, attestation engine,
    email sender and event publisher for the domain service.
    """
    stores = get_stores(request)
    return RecoveryOrchestrator(
        identity_store=stores.identity,
        token_store=stores.tokens,
        credentials=stores.credentials,
        challenge_generator=get_challenge_generator(),
        attestation_engine=get_attestation_engine(),
        sessions=stores.sessions,
        events=_event_publisher,
        email_sender=_email_sender,
    )
