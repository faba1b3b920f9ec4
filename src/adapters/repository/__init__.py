"""Repository adapters - Database and in-process implementations."""

from .memory import (
    InMemoryCredentialRegistry,
    InMemoryIdentityStore,
    InMemoryRecoveryTokenStore,
    InMemorySessionService,
)
from .postgres import (
    PostgresCredentialRegistry,
    PostgresIdentityStore,
    PostgresRecoveryTokenStore,
    PostgresSessionService,
    run_migrations,
)

__all__ = [
    "InMemoryCredentialRegistry",
    "InMemoryIdentityStore",
    "InMemoryRecoveryTokenStore",
    "InMemorySessionService",
    "PostgresCredentialRegistry",
    "PostgresIdentityStore",
    "PostgresRecoveryTokenStore",
    "PostgresSessionService",
    "run_migrations",
]
