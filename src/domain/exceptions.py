"""
Domain exceptions - Semantic error types for account recovery.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
"""


class RecoveryError(Exception):
    """Base class for recovery domain errors."""

    pass


class InvalidRecoveryToken(RecoveryError):
    """
    Token unknown, expired, already used, or not owned by the email.

    Raised with no arguments: every cause must look identical to the caller.
    """

    pass


class AttestationRejected(RecoveryError):
    """Attestation response failed verification against the challenge."""

    pass


class DuplicateCredential(RecoveryError):
    """Credential id is already registered to some user."""

    pass


class StoreError(RecoveryError):
    """A backing store failed. Carries no user-facing detail."""

    pass


class RecoveryUnavailable(RecoveryError):
    """Recovery could not proceed because of an infrastructure failure."""

    pass


class IllegalTransition(RecoveryError):
    """A recovery transaction was asked to move backwards or skip a step."""

    pass
