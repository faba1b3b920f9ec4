"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure. Adapters implement these protocols.
"""

from collections.abc import Sequence
from enum import Enum
from typing import Any, Protocol

from .models import (
    AttestationChallenge,
    Credential,
    CredentialEnrolledViaRecovery,
    ResolvedUser,
)


class TokenState(str, Enum):
    """
    Persisted lifecycle of a recovery token.

    State Transitions (forward-only):
    - ISSUED -> CHALLENGED (challenge issued, token can no longer mint another)
    - CHALLENGED -> REDEEMED (completion attempted; burned whatever the outcome)
    - ISSUED -> EXPIRED, CHALLENGED -> EXPIRED (TTL exceeded)

    Terminal States:
    - REDEEMED: Token spent
    - EXPIRED: Token unusable, a new one must be issued

    Note: Forward-only transitions are enforced by the token store via
    conditional updates on the current state.
    """

    ISSUED = "ISSUED"
    CHALLENGED = "CHALLENGED"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


class RecoveryState(Enum):
    """
    States of a single recovery transaction as seen by the orchestrator.

    AWAITING_TOKEN -> TOKEN_VALID -> CHALLENGE_ISSUED -> ATTESTATION_PENDING
    -> ATTACHED, with RECOVERY_FAILED reachable from any non-terminal state.
    """

    AWAITING_TOKEN = "awaiting_token"
    TOKEN_VALID = "token_valid"
    CHALLENGE_ISSUED = "challenge_issued"
    ATTESTATION_PENDING = "attestation_pending"
    ATTACHED = "attached"
    RECOVERY_FAILED = "recovery_failed"


class RecoveryResult(Enum):
    """
    Result of a completion attempt.

    Used by complete_recovery() to indicate success or specific failure.
    """

    ATTACHED = "attached"
    INVALID_TOKEN = "invalid_token"
    INVALID_ATTESTATION = "invalid_attestation"
    DUPLICATE_CREDENTIAL = "duplicate_credential"
    INTERNAL_ERROR = "internal_error"


class IdentityStore(Protocol):
    """Port interface for user lookup."""

    def find_by_email(self, email: str) -> ResolvedUser | None:
        """
        Resolve a user from a normalized email address.

        Returns:
            The user, or None if no account uses this email
        """
        ...


class RecoveryTokenStore(Protocol):
    """
    Port interface for recovery token persistence.

    Every method accepting user_id also accepts None (unknown email). In that
    case the store still performs a token hash comparison against a dummy
    value and returns the failure answer, so unknown users cost the same as
    bad tokens.
    """

    def issue(self, user: ResolvedUser) -> str:
        """
        Issue a fresh token for the user, replacing any outstanding one.

        Returns:
            The plaintext token. Only its hash is stored.
        """
        ...

    def is_valid(self, user_id: int | None, token: str) -> bool:
        """
        Check the token without changing its state.

        True iff the token matches, is unexpired and has not been used to
        issue a challenge or been redeemed.
        """
        ...

    def claim_for_challenge(
        self, user_id: int | None, token: str, challenge: AttestationChallenge
    ) -> bool:
        """
        Atomically consume an ISSUED token and store the challenge on it.

        Returns:
            True if the token moved ISSUED -> CHALLENGED, False otherwise
        """
        ...

    def redeem(self, user_id: int | None, token: str) -> AttestationChallenge | None:
        """
        Atomically move a CHALLENGED token to REDEEMED.

        Check-and-consume: of two concurrent callers with the same token,
        exactly one receives the challenge.

        Returns:
            The challenge stored at claim time, or None if the token is invalid
        """
        ...


class CredentialRegistry(Protocol):
    """Port interface for a user's owned set of credentials."""

    def credentials(self, user: ResolvedUser) -> list[Credential]:
        """Return the user's credentials in enrollment order."""
        ...

    def add_credential(self, user: ResolvedUser, credential: Credential) -> None:
        """
        Append a credential to the user's set.

        Raises:
            DuplicateCredential: If any user already owns the credential id
        """
        ...

    def disable_all_credentials(self, user: ResolvedUser) -> None:
        """Mark every credential of the user disabled. Idempotent, never deletes."""
        ...

    def enroll(
        self, user: ResolvedUser, credential: Credential, *, disable_existing: bool
    ) -> None:
        """
        Optionally disable all existing credentials, then add the new one.

        Both steps are applied atomically: readers never observe the old
        credentials disabled without the new one, nor two enabled credentials
        when disable_existing is set. A duplicate id rolls everything back.

        Raises:
            DuplicateCredential: If any user already owns the credential id
        """
        ...

    def revoke(
        self, user: ResolvedUser, credential_id: bytes, *, restore: Sequence[bytes] = ()
    ) -> None:
        """
        Undo an enrollment: remove the credential and re-enable `restore`.

        Both steps are applied atomically. Unknown ids are ignored.
        """
        ...


class AttestationEngine(Protocol):
    """Port interface for WebAuthn attestation handling."""

    def creation_options(self, challenge: AttestationChallenge) -> dict[str, Any]:
        """Serialize the challenge as PublicKeyCredentialCreationOptions JSON."""
        ...

    def verify(
        self, challenge: AttestationChallenge, response: dict[str, Any]
    ) -> Credential:
        """
        Verify a client attestation response against the challenge.

        Raises:
            AttestationRejected: Signature, challenge, origin or rp id mismatch
        """
        ...


class SessionService(Protocol):
    """Port interface for establishing an authenticated session."""

    def login(self, user: ResolvedUser) -> str:
        """Start a session for the user and return its session key."""
        ...


class EventPublisher(Protocol):
    """Port interface for domain event delivery (at-least-once)."""

    def publish(self, event: CredentialEnrolledViaRecovery) -> None: ...


class EmailSender(Protocol):
    """Port interface for email delivery."""

    def send_recovery_link(self, email: str, token: str) -> None:
        """
        Send a recovery token to the email address.

        Args:
            email: Recipient email address
            token: Plaintext recovery token
        """
        ...
