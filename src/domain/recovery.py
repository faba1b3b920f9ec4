"""
Recovery domain service - Passkey account recovery state machine.

A user who lost their authenticator proves identity with an emailed,
single-use recovery token and enrolls a new public-key credential.

Recovery State Machine (Forward-Only Transitions)
=================================================

States:
- AWAITING_TOKEN: Request received, nothing verified yet
- TOKEN_VALID: Token matched the resolved user and is usable
- CHALLENGE_ISSUED: A challenge is bound to the user through the token
- ATTESTATION_PENDING: Client attestation is being verified
- ATTACHED: Terminal, new credential enrolled and session started
- RECOVERY_FAILED: Terminal, any failure along the way

Token policy:
    begin_recovery consumes the token (ISSUED -> CHALLENGED) at challenge
    issuance, so one token mints exactly one challenge. complete_recovery
    redeems it (CHALLENGED -> REDEEMED) before attestation is verified, so
    a failed attestation burns the token and the client must start over.

Every failure is terminal for the transaction and nothing is retried.
Token problems of any kind look identical to the caller.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .challenge import ChallengeGenerator
from .exceptions import (
    AttestationRejected,
    DuplicateCredential,
    IllegalTransition,
    InvalidRecoveryToken,
    RecoveryUnavailable,
    StoreError,
)
from .models import AttestationChallenge, CredentialEnrolledViaRecovery, RecoveryOutcome
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
)

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[RecoveryState, frozenset[RecoveryState]] = {
    RecoveryState.AWAITING_TOKEN: frozenset({RecoveryState.TOKEN_VALID}),
    RecoveryState.TOKEN_VALID: frozenset({RecoveryState.CHALLENGE_ISSUED}),
    RecoveryState.CHALLENGE_ISSUED: frozenset({RecoveryState.ATTESTATION_PENDING}),
    RecoveryState.ATTESTATION_PENDING: frozenset({RecoveryState.ATTACHED}),
    RecoveryState.ATTACHED: frozenset(),
    RecoveryState.RECOVERY_FAILED: frozenset(),
}

_TERMINAL = frozenset({RecoveryState.ATTACHED, RecoveryState.RECOVERY_FAILED})


def normalize_email(email: str) -> str:
    """Strip whitespace and lowercase, for consistent lookup."""
    return email.strip().lower()


@dataclass
class RecoveryTransaction:
    """
    Tracks one recovery request through RecoveryState.

    Only forward moves listed in the transition table are allowed, plus a
    move to RECOVERY_FAILED from any non-terminal state.
    """

    state: RecoveryState = RecoveryState.AWAITING_TOKEN
    history: list[RecoveryState] = field(default_factory=list)

    def advance(self, target: RecoveryState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} -> {target.value}")
        self._move(target)

    def fail(self) -> None:
        if self.state in _TERMINAL:
            raise IllegalTransition(f"{self.state.value} is terminal")
        self._move(RecoveryState.RECOVERY_FAILED)

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL

    def _move(self, target: RecoveryState) -> None:
        self.history.append(self.state)
        self.state = target


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecoveryOrchestrator:
    """
    Domain service for passkey account recovery.

    Sequences token validation, challenge issuance, attestation
    verification, credential binding and session establishment.
    All collaborators are passed in explicitly.
    """

    identity_store: IdentityStore
    token_store: RecoveryTokenStore
    credentials: CredentialRegistry
    challenge_generator: ChallengeGenerator
    attestation_engine: AttestationEngine
    sessions: SessionService
    events: EventPublisher
    email_sender: EmailSender
    clock: Callable[[], datetime] = field(default=_utcnow, repr=False)

    def request_recovery(self, email: str) -> None:
        """
        Issue a recovery token and email it, if the address has an account.

        Unknown addresses are ignored silently so callers cannot test for
        registered emails.

        Raises:
            RecoveryUnavailable: If a backing store fails
        """
        normalized_email = normalize_email(email)
        try:
            user = self.identity_store.find_by_email(normalized_email)
            if user is None:
                logger.info("Recovery requested for unknown account")
                return
            token = self.token_store.issue(user)
        except StoreError:
            logger.error("Recovery token issuance failed")
            raise RecoveryUnavailable() from None

        self.email_sender.send_recovery_link(user.email, token)
        logger.info("Recovery token issued for user %s", user.id)

    def begin_recovery(self, email: str, token: str) -> AttestationChallenge:
        """
        Validate the recovery token and issue an attestation challenge.

        The token is consumed here: a second call with the same token fails.

        Args:
            email: User's email (will be normalized)
            token: Recovery token received out-of-band

        Returns:
            Fresh challenge bound to the resolved user

        Raises:
            InvalidRecoveryToken: Unknown email or unusable token (identical)
            RecoveryUnavailable: If a backing store fails
        """
        transaction = RecoveryTransaction()
        normalized_email = normalize_email(email)

        try:
            user = self.identity_store.find_by_email(normalized_email)
            if user is None:
                # Same hash work as a real lookup, then the same failure.
                self.token_store.is_valid(None, token)
                claimed = False
            else:
                owned = self.credentials.credentials(user)
                challenge = self.challenge_generator.generate(
                    user, exclude_credentials=[credential.id for credential in owned]
                )
                claimed = self.token_store.claim_for_challenge(user.id, token, challenge)
        except StoreError:
            transaction.fail()
            logger.error("Recovery begin aborted: store failure")
            raise RecoveryUnavailable() from None

        if not claimed:
            transaction.fail()
            logger.info("Recovery begin rejected: invalid token")
            raise InvalidRecoveryToken()

        transaction.advance(RecoveryState.TOKEN_VALID)
        transaction.advance(RecoveryState.CHALLENGE_ISSUED)
        logger.info("Recovery challenge issued for user %s", challenge.user.id)
        return challenge

    def creation_options(self, challenge: AttestationChallenge) -> dict[str, Any]:
        """Render the challenge as WebAuthn credential creation options."""
        return self.attestation_engine.creation_options(challenge)

    def complete_recovery(
        self,
        email: str,
        token: str,
        attestation_response: Mapping[str, Any],
        *,
        force_unique_device: bool = False,
    ) -> RecoveryOutcome:
        """
        Redeem the token, verify the attestation and enroll the credential.

        Re-validates the token on its own, so it works without the
        begin_recovery call having happened in this process. The token is
        redeemed before the attestation is checked; a replay or a losing
        concurrent call gets INVALID_TOKEN whatever it sends.

        The enrollment event is published only once the session has started.
        If login fails the enrollment is revoked and any credentials it
        disabled are re-enabled, leaving the registry as it was.

        Args:
            email: User's email (will be normalized)
            token: Recovery token used for begin_recovery
            attestation_response: Client's navigator.credentials.create() JSON
            force_unique_device: Disable all existing credentials first

        Returns:
            RecoveryOutcome with ATTACHED and the credential, or a failure reason
        """
        transaction = RecoveryTransaction()
        try:
            outcome = self._complete(
                transaction,
                normalize_email(email),
                token,
                dict(attestation_response),
                force_unique_device,
            )
        except StoreError:
            logger.error("Recovery completion aborted: store failure")
            outcome = RecoveryOutcome.failed(RecoveryResult.INTERNAL_ERROR)

        if not outcome.is_attached and not transaction.finished:
            transaction.fail()
        logger.info(
            "Recovery completion finished: %s (state=%s)",
            outcome.result.value,
            transaction.state.value,
        )
        return outcome

    def _complete(
        self,
        transaction: RecoveryTransaction,
        email: str,
        token: str,
        response: dict[str, Any],
        force_unique_device: bool,
    ) -> RecoveryOutcome:
        user = self.identity_store.find_by_email(email)
        challenge = self.token_store.redeem(user.id if user else None, token)
        if user is None or challenge is None or challenge.user.id != user.id:
            return RecoveryOutcome.failed(RecoveryResult.INVALID_TOKEN)

        transaction.advance(RecoveryState.TOKEN_VALID)
        transaction.advance(RecoveryState.CHALLENGE_ISSUED)
        transaction.advance(RecoveryState.ATTESTATION_PENDING)

        if challenge.is_expired(self.clock()):
            return RecoveryOutcome.failed(RecoveryResult.INVALID_ATTESTATION)

        try:
            credential = self.attestation_engine.verify(challenge, response)
        except AttestationRejected:
            return RecoveryOutcome.failed(RecoveryResult.INVALID_ATTESTATION)

        # Credentials a unique enrollment disables, re-enabled if login fails
        restore: tuple[bytes, ...] = ()
        if force_unique_device:
            restore = tuple(c.id for c in self.credentials.credentials(user) if c.enabled)

        try:
            self.credentials.enroll(
                user, credential, disable_existing=force_unique_device
            )
        except DuplicateCredential:
            return RecoveryOutcome.failed(RecoveryResult.DUPLICATE_CREDENTIAL)

        try:
            session_key = self.sessions.login(user)
        except StoreError:
            logger.error("Session start failed for user %s; reverting enrollment", user.id)
            self.credentials.revoke(user, credential.id, restore=restore)
            raise

        self.events.publish(CredentialEnrolledViaRecovery(user, credential))

        transaction.advance(RecoveryState.ATTACHED)
        return RecoveryOutcome.attached(credential, session_key)
