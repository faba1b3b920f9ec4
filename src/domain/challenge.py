"""
Challenge generation for credential enrollment.

A challenge is pure data: a random nonce bound to one user, the relying
party id and a timeout. The generator holds only configuration, so one
instance can serve concurrent requests for distinct users.
"""

import secrets
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .models import MIN_NONCE_BYTES, AttestationChallenge, ResolvedUser


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChallengeGenerator:
    """Produces fresh attestation challenges for resolved users."""

    rp_id: str
    timeout_seconds: int = 60
    nonce_bytes: int = 32
    clock: Callable[[], datetime] = field(default=_utcnow, repr=False)

    def __post_init__(self) -> None:
        if self.nonce_bytes < MIN_NONCE_BYTES:
            raise ValueError(f"nonce_bytes must be at least {MIN_NONCE_BYTES}")

    def generate(
        self, user: ResolvedUser, exclude_credentials: Iterable[bytes] = ()
    ) -> AttestationChallenge:
        """
        Generate a challenge bound to the user.

        Args:
            user: User the challenge is issued to
            exclude_credentials: Credential ids the user already owns. The
                client is told not to re-enroll any of them.

        Returns:
            AttestationChallenge with a cryptographically random nonce
        """
        return AttestationChallenge(
            nonce=secrets.token_bytes(self.nonce_bytes),
            user=user,
            rp_id=self.rp_id,
            timeout_seconds=self.timeout_seconds,
            issued_at=self.clock(),
            exclude_credentials=tuple(exclude_credentials),
        )
