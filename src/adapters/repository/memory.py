"""
In-memory repository adapters - Process-local implementations of the storage ports.

Used for local runs (STORAGE_BACKEND=memory) and tests. Each store guards
its state with a single lock, so check-and-mutate operations are atomic
with respect to other threads in the same process. State does not survive
a restart and is not shared between processes.
"""

import hashlib
import logging
import secrets
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import bcrypt

from src.domain.exceptions import DuplicateCredential
from src.domain.models import AttestationChallenge, Credential, ResolvedUser
from src.domain.ports import TokenState
from src.domain.recovery import normalize_email

logger = logging.getLogger(__name__)

_DUMMY_TOKEN = b"dummy_token_for_timing_safety"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryIdentityStore:
    """Implements IdentityStore protocol with a dict keyed by email."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, ResolvedUser] = {}

    def find_by_email(self, email: str) -> ResolvedUser | None:
        with self._lock:
            return self._users.get(email)

    def add_user(self, email: str) -> ResolvedUser:
        """Create the user if missing and return it (seeding and tests)."""
        email = normalize_email(email)
        with self._lock:
            user = self._users.get(email)
            if user is None:
                user = ResolvedUser(id=len(self._users) + 1, email=email)
                self._users[email] = user
            return user


@dataclass
class _TokenRecord:
    token_hash: bytes
    state: TokenState
    created_at: datetime
    challenge: AttestationChallenge | None = None


class InMemoryRecoveryTokenStore:
    """
    Implements RecoveryTokenStore protocol in process memory.

    Same rules as the PostgreSQL store: one token per user, bcrypt hashes
    only, forward-only state moves and lazy expiry.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        bcrypt_cost: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._lock = threading.Lock()
        self._records: dict[int, _TokenRecord] = {}
        self._ttl = timedelta(seconds=ttl_seconds)
        self._bcrypt_cost = bcrypt_cost
        self._dummy_hash = bcrypt.hashpw(_DUMMY_TOKEN, bcrypt.gensalt(rounds=bcrypt_cost))
        self._clock = clock

    def issue(self, user: ResolvedUser) -> str:
        token = secrets.token_urlsafe(32)
        token_hash = bcrypt.hashpw(token.encode(), bcrypt.gensalt(rounds=self._bcrypt_cost))
        with self._lock:
            self._records[user.id] = _TokenRecord(token_hash, TokenState.ISSUED, self._clock())
        return token

    def state_of(self, user: ResolvedUser) -> TokenState | None:
        """Current token state for the user, or None if no token was issued."""
        with self._lock:
            record = self._records.get(user.id)
            return record.state if record else None

    def is_valid(self, user_id: int | None, token: str) -> bool:
        with self._lock:
            record = self._records.get(user_id) if user_id is not None else None
            return self._usable(record, token, TokenState.ISSUED, expire=False)

    def claim_for_challenge(
        self, user_id: int | None, token: str, challenge: AttestationChallenge
    ) -> bool:
        with self._lock:
            record = self._records.get(user_id) if user_id is not None else None
            if not self._usable(record, token, TokenState.ISSUED):
                return False
            record.state = TokenState.CHALLENGED
            record.challenge = challenge
            return True

    def redeem(self, user_id: int | None, token: str) -> AttestationChallenge | None:
        with self._lock:
            record = self._records.get(user_id) if user_id is not None else None
            if not self._usable(record, token, TokenState.CHALLENGED):
                return None
            record.state = TokenState.REDEEMED
            return record.challenge

    def _usable(
        self,
        record: _TokenRecord | None,
        token: str,
        expected: TokenState,
        expire: bool = True,
    ) -> bool:
        stored_hash = record.token_hash if record else self._dummy_hash
        matched = bcrypt.checkpw(token.encode(), stored_hash)
        if record is None or not matched:
            return False

        live = record.state in (TokenState.ISSUED, TokenState.CHALLENGED)
        if live and self._clock() >= record.created_at + self._ttl:
            if expire:
                record.state = TokenState.EXPIRED
            return False
        return record.state == expected


class InMemoryCredentialRegistry:
    """
    Implements CredentialRegistry protocol in process memory.

    A global id index enforces credential id uniqueness across users.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_user: dict[int, list[Credential]] = {}
        self._owner_by_id: dict[bytes, int] = {}

    def credentials(self, user: ResolvedUser) -> list[Credential]:
        with self._lock:
            return list(self._by_user.get(user.id, ()))

    def add_credential(self, user: ResolvedUser, credential: Credential) -> None:
        self.enroll(user, credential, disable_existing=False)

    def disable_all_credentials(self, user: ResolvedUser) -> None:
        with self._lock:
            self._disable_locked(user)

    def enroll(
        self, user: ResolvedUser, credential: Credential, *, disable_existing: bool
    ) -> None:
        with self._lock:
            if credential.id in self._owner_by_id:
                raise DuplicateCredential()
            if disable_existing:
                self._disable_locked(user)
            self._by_user.setdefault(user.id, []).append(credential)
            self._owner_by_id[credential.id] = user.id

    def revoke(
        self, user: ResolvedUser, credential_id: bytes, *, restore: Sequence[bytes] = ()
    ) -> None:
        with self._lock:
            if self._owner_by_id.get(credential_id) == user.id:
                del self._owner_by_id[credential_id]
            owned = self._by_user.get(user.id, [])
            self._by_user[user.id] = [
                replace(credential, enabled=True) if credential.id in restore else credential
                for credential in owned
                if credential.id != credential_id
            ]

    def _disable_locked(self, user: ResolvedUser) -> None:
        owned = self._by_user.get(user.id)
        if owned:
            self._by_user[user.id] = [credential.disabled() for credential in owned]


class InMemorySessionService:
    """Implements SessionService protocol; keeps session key digests per user."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, int] = {}

    def login(self, user: ResolvedUser) -> str:
        session_key = secrets.token_urlsafe(32)
        key_hash = hashlib.sha256(session_key.encode()).hexdigest()
        with self._lock:
            self._sessions[key_hash] = user.id
        logger.info("Session started for user %s", user.id)
        return session_key

    def user_id_for(self, session_key: str) -> int | None:
        key_hash = hashlib.sha256(session_key.encode()).hexdigest()
        with self._lock:
            return self._sessions.get(key_hash)
