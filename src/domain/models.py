"""
Domain models - Value objects exchanged between the orchestrator and its ports.

All models are immutable dataclasses. They carry no persistence logic;
adapters map them to and from their own storage representation.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ports import RecoveryResult

MIN_NONCE_BYTES = 16
MAX_SIGN_COUNT = 2**32 - 1


@dataclass(frozen=True)
class ResolvedUser:
    """Identity resolved from an email address by the identity store."""

    id: int
    email: str


@dataclass(frozen=True)
class Credential:
    """
    Public-key credential record for one enrolled authenticator.

    Created only after a successful attestation verification.
    """

    id: bytes
    public_key: bytes
    sign_count: int = 0
    transports: frozenset[str] = frozenset()
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("credential id must not be empty")
        if not 0 <= self.sign_count <= MAX_SIGN_COUNT:
            raise ValueError("sign_count must fit in an unsigned 32-bit integer")

    def disabled(self) -> "Credential":
        """Return a copy of this credential with enabled=False."""
        return replace(self, enabled=False)


@dataclass(frozen=True)
class AttestationChallenge:
    """
    Server-issued challenge bound to one user for one recovery transaction.

    The nonce is what the authenticator signs over; the exclusion list holds
    the ids the user already owns so a known device cannot be re-enrolled.
    """

    nonce: bytes
    user: ResolvedUser
    rp_id: str
    timeout_seconds: int
    issued_at: datetime
    exclude_credentials: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        if len(self.nonce) < MIN_NONCE_BYTES:
            raise ValueError(f"challenge nonce must be at least {MIN_NONCE_BYTES} bytes")

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.timeout_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


@dataclass(frozen=True)
class RecoveryOutcome:
    """
    Tagged result of complete_recovery: Attached(credential) or Failed(reason).

    Use the attached()/failed() constructors rather than building directly.
    """

    result: "RecoveryResult"
    credential: Credential | None = None
    session_key: str | None = field(default=None, repr=False)

    @classmethod
    def attached(
        cls, credential: Credential, session_key: str | None = None
    ) -> "RecoveryOutcome":
        from .ports import RecoveryResult

        return cls(RecoveryResult.ATTACHED, credential, session_key)

    @classmethod
    def failed(cls, result: "RecoveryResult") -> "RecoveryOutcome":
        from .ports import RecoveryResult

        if result is RecoveryResult.ATTACHED:
            raise ValueError("a failed outcome needs a failure reason")
        return cls(result)

    @property
    def is_attached(self) -> bool:
        return self.credential is not None


@dataclass(frozen=True)
class CredentialEnrolledViaRecovery:
    """Domain event emitted once a recovered user has a new credential."""

    user: ResolvedUser
    credential: Credential
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
