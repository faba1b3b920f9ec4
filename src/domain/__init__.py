"""
Domain layer - Pure business logic with zero framework imports.

This package contains the core business logic for passkey account
recovery. It defines its own port interfaces for infrastructure
abstraction, ensuring true hexagonal architecture decoupling.
"""

from .challenge import ChallengeGenerator
from .exceptions import (
    AttestationRejected,
    DuplicateCredential,
    IllegalTransition,
    InvalidRecoveryToken,
    RecoveryError,
    RecoveryUnavailable,
    StoreError,
)
from .models import (
    AttestationChallenge,
    Credential,
    CredentialEnrolledViaRecovery,
    RecoveryOutcome,
    ResolvedUser,
)
from .ports import (
    AttestationEngine,
    CredentialRegistry,
    EmailSender,
    EventPublisher,
    IdentityStore,
    RecoveryResult,
    RecoveryState,
    RecoveryTokenStore,
    SessionService,
    TokenState,
)
from .recovery import RecoveryOrchestrator, RecoveryTransaction

__all__ = [
    "AttestationChallenge",
    "AttestationEngine",
    "AttestationRejected",
    "ChallengeGenerator",
    "Credential",
    "CredentialEnrolledViaRecovery",
    "CredentialRegistry",
    "DuplicateCredential",
    "EmailSender",
    "EventPublisher",
    "IdentityStore",
    "IllegalTransition",
    "InvalidRecoveryToken",
    "RecoveryError",
    "RecoveryOrchestrator",
    "RecoveryOutcome",
    "RecoveryResult",
    "RecoveryState",
    "RecoveryTokenStore",
    "RecoveryTransaction",
    "RecoveryUnavailable",
    "ResolvedUser",
    "SessionService",
    "StoreError",
    "TokenState",
]
