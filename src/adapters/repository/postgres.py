"""
PostgreSQL repository adapters - Implement the domain's storage ports.

This module provides PostgreSQL implementations of the identity store,
recovery token store, credential registry and session service using
psycopg3 with raw SQL.

Security Design - Atomic Check-and-Mutate:
------------------------------------------
1. **Token state moves are conditional**: every token transition is an
   ``UPDATE ... WHERE state = <expected>`` issued after ``SELECT ... FOR
   UPDATE`` on the token row. Two concurrent redemptions of the same token
   serialize on the row lock; the second sees REDEEMED and fails.

2. **bcrypt.checkpw() always runs**: when the email is unknown or the user
   has no token, the submitted token is compared against a pre-computed
   dummy hash, so response time does not reveal which case occurred.

3. **Credential ids are a global primary key**: ``ON CONFLICT DO NOTHING``
   plus a rowcount check rejects an id owned by any user. Enrollment takes
   a row lock on the user so disable-then-add runs serialized per user and
   commits as one transaction.

Infrastructure errors are translated to StoreError; psycopg exceptions
never cross into the domain.
"""

import hashlib
import logging
import secrets
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import bcrypt
import psycopg
from psycopg_pool import ConnectionPool

from src.domain.exceptions import DuplicateCredential, StoreError
from src.domain.models import AttestationChallenge, Credential, ResolvedUser
from src.domain.ports import TokenState
from src.domain.recovery import normalize_email

logger = logging.getLogger(__name__)

_DUMMY_TOKEN = b"dummy_token_for_timing_safety"


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Re-raise psycopg errors as StoreError, logging only the error class."""
    try:
        yield
    except psycopg.Error as e:
        logger.error("Database error during %s: %s", operation, type(e).__name__)
        raise StoreError(operation) from e


def _token_matches(stored_hash: bytes | None, token: str, dummy_hash: bytes) -> bool:
    """Constant-time token comparison; always pays for one bcrypt check."""
    expected = stored_hash if stored_hash is not None else dummy_hash
    matched = bcrypt.checkpw(token.encode(), expected)
    return matched and stored_hash is not None


class PostgresIdentityStore:
    """
    Implements IdentityStore protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def find_by_email(self, email: str) -> ResolvedUser | None:
        sql = "SELECT id, email FROM users WHERE email = %s"
        with _translate_errors("find_by_email"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, (email,))
                row = cursor.fetchone()
        if row is None:
            return None
        return ResolvedUser(id=row[0], email=row[1])

    def add_user(self, email: str) -> ResolvedUser:
        """Create the user if missing and return it (seeding and tests)."""
        email = normalize_email(email)
        sql = """
            INSERT INTO users (email) VALUES (%s)
            ON CONFLICT (email) DO UPDATE SET email = EXCLUDED.email
            RETURNING id, email
        """
        with _translate_errors("add_user"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, (email,))
                row = cursor.fetchone()
                conn.commit()
        return ResolvedUser(id=row[0], email=row[1])


class PostgresRecoveryTokenStore:
    """
    Implements RecoveryTokenStore protocol via psycopg3.

    One row per user; issuing a new token overwrites the previous one and
    resets its state to ISSUED. Only bcrypt hashes of tokens are stored.
    """

    def __init__(self, pool: ConnectionPool, ttl_seconds: int = 3600, bcrypt_cost: int = 10) -> None:
        """
        Initialize token store.

        Args:
            pool: psycopg3 ConnectionPool for database connections
            ttl_seconds: Token lifetime, checked against database time
            bcrypt_cost: bcrypt work factor for stored token hashes
        """
        self._pool = pool
        self._ttl_seconds = ttl_seconds
        self._bcrypt_cost = bcrypt_cost
        # Compared against when no token row exists; same cost as issued hashes
        self._dummy_hash = bcrypt.hashpw(_DUMMY_TOKEN, bcrypt.gensalt(rounds=bcrypt_cost))

    def issue(self, user: ResolvedUser) -> str:
        token = secrets.token_urlsafe(32)
        token_hash = bcrypt.hashpw(token.encode(), bcrypt.gensalt(rounds=self._bcrypt_cost))

        sql = """
            INSERT INTO recovery_tokens (user_id, token_hash, state, created_at)
            VALUES (%s, %s, 'ISSUED', NOW())
            ON CONFLICT (user_id) DO UPDATE
            SET token_hash = EXCLUDED.token_hash,
                state = 'ISSUED',
                created_at = NOW(),
                challenge_nonce = NULL,
                challenge_rp_id = NULL,
                challenge_timeout_seconds = NULL,
                challenge_issued_at = NULL,
                challenge_exclude = NULL
        """
        with _translate_errors("issue"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, (user.id, token_hash))
                conn.commit()
        return token

    def is_valid(self, user_id: int | None, token: str) -> bool:
        if user_id is None:
            return _token_matches(None, token, self._dummy_hash)

        sql = """
            SELECT token_hash, state, created_at > NOW() - make_interval(secs => %s)
            FROM recovery_tokens
            WHERE user_id = %s
        """
        with _translate_errors("is_valid"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, (self._ttl_seconds, user_id))
                row = cursor.fetchone()

        matched = _token_matches(bytes(row[0]) if row else None, token, self._dummy_hash)
        return matched and row[1] == TokenState.ISSUED.value and row[2]

    def claim_for_challenge(
        self, user_id: int | None, token: str, challenge: AttestationChallenge
    ) -> bool:
        if user_id is None:
            return _token_matches(None, token, self._dummy_hash)

        claim_sql = """
            UPDATE recovery_tokens
            SET state = %s,
                challenge_nonce = %s,
                challenge_rp_id = %s,
                challenge_timeout_seconds = %s,
                challenge_issued_at = %s,
                challenge_exclude = %s
            WHERE user_id = %s AND state = %s
        """
        with _translate_errors("claim_for_challenge"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                row = self._lock_token(cursor, user_id)
                if not self._usable(conn, cursor, user_id, row, token, TokenState.ISSUED):
                    return False

                cursor.execute(
                    claim_sql,
                    (
                        TokenState.CHALLENGED.value,
                        challenge.nonce,
                        challenge.rp_id,
                        challenge.timeout_seconds,
                        challenge.issued_at,
                        list(challenge.exclude_credentials) or None,
                        user_id,
                        TokenState.ISSUED.value,
                    ),
                )
                conn.commit()
                return cursor.rowcount == 1

    def redeem(self, user_id: int | None, token: str) -> AttestationChallenge | None:
        if user_id is None:
            _token_matches(None, token, self._dummy_hash)
            return None

        redeem_sql = """
            UPDATE recovery_tokens SET state = %s
            WHERE user_id = %s AND state = %s
        """
        with _translate_errors("redeem"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                row = self._lock_token(cursor, user_id)
                if not self._usable(conn, cursor, user_id, row, token, TokenState.CHALLENGED):
                    return None

                cursor.execute(
                    redeem_sql,
                    (TokenState.REDEEMED.value, user_id, TokenState.CHALLENGED.value),
                )
                conn.commit()
                if cursor.rowcount != 1:
                    return None

        return AttestationChallenge(
            nonce=bytes(row[3]),
            user=ResolvedUser(id=user_id, email=row[8]),
            rp_id=row[4],
            timeout_seconds=row[5],
            issued_at=row[6],
            exclude_credentials=tuple(bytes(c) for c in row[7] or ()),
        )

    def _lock_token(self, cursor: psycopg.Cursor, user_id: int) -> tuple | None:
        """Fetch and lock the user's token row."""
        select_sql = """
            SELECT t.token_hash, t.state,
                   t.created_at > NOW() - make_interval(secs => %s),
                   t.challenge_nonce, t.challenge_rp_id, t.challenge_timeout_seconds,
                   t.challenge_issued_at, t.challenge_exclude, u.email
            FROM recovery_tokens t
            JOIN users u ON u.id = t.user_id
            WHERE t.user_id = %s
            FOR UPDATE OF t
        """
        cursor.execute(select_sql, (self._ttl_seconds, user_id))
        return cursor.fetchone()

    def _usable(
        self,
        conn: psycopg.Connection,
        cursor: psycopg.Cursor,
        user_id: int,
        row: tuple | None,
        token: str,
        expected: TokenState,
    ) -> bool:
        """
        Apply the shared validity rule to a locked row.

        Runs the hash comparison before any state-based return. A stale
        live token is lazily moved to EXPIRED.
        """
        matched = _token_matches(bytes(row[0]) if row else None, token, self._dummy_hash)

        if row is None or not matched:
            conn.commit()
            return False

        state, fresh = row[1], row[2]
        if not fresh and state in (TokenState.ISSUED.value, TokenState.CHALLENGED.value):
            cursor.execute(
                "UPDATE recovery_tokens SET state = %s WHERE user_id = %s AND state = %s",
                (TokenState.EXPIRED.value, user_id, state),
            )
            conn.commit()
            return False

        if state != expected.value:
            conn.commit()
            return False
        return True


class PostgresCredentialRegistry:
    """
    Implements CredentialRegistry protocol via psycopg3.

    Disabling flips the enabled flag so sign-count history stays available
    for audit. Rows are only deleted by revoke, which reverts an enrollment
    whose login never completed.
    """

    _INSERT_SQL = """
        INSERT INTO credentials (credential_id, user_id, public_key, sign_count, transports, enabled)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (credential_id) DO NOTHING
    """

    _DISABLE_SQL = "UPDATE credentials SET enabled = FALSE WHERE user_id = %s AND enabled"

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def credentials(self, user: ResolvedUser) -> list[Credential]:
        sql = """
            SELECT credential_id, public_key, sign_count, transports, enabled
            FROM credentials
            WHERE user_id = %s
            ORDER BY position
        """
        with _translate_errors("credentials"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, (user.id,))
                rows = cursor.fetchall()
        return [
            Credential(
                id=bytes(row[0]),
                public_key=bytes(row[1]),
                sign_count=row[2],
                transports=frozenset(row[3] or ()),
                enabled=row[4],
            )
            for row in rows
        ]

    def add_credential(self, user: ResolvedUser, credential: Credential) -> None:
        self.enroll(user, credential, disable_existing=False)

    def disable_all_credentials(self, user: ResolvedUser) -> None:
        with _translate_errors("disable_all_credentials"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(self._DISABLE_SQL, (user.id,))
                conn.commit()

    def enroll(
        self, user: ResolvedUser, credential: Credential, *, disable_existing: bool
    ) -> None:
        with _translate_errors("enroll"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                # Serializes enrollments for the same user.
                cursor.execute("SELECT id FROM users WHERE id = %s FOR UPDATE", (user.id,))

                if disable_existing:
                    cursor.execute(self._DISABLE_SQL, (user.id,))

                cursor.execute(
                    self._INSERT_SQL,
                    (
                        credential.id,
                        user.id,
                        credential.public_key,
                        credential.sign_count,
                        sorted(credential.transports),
                        credential.enabled,
                    ),
                )
                if cursor.rowcount != 1:
                    conn.rollback()
                    raise DuplicateCredential()
                conn.commit()

    def revoke(
        self, user: ResolvedUser, credential_id: bytes, *, restore: Sequence[bytes] = ()
    ) -> None:
        with _translate_errors("revoke"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute("SELECT id FROM users WHERE id = %s FOR UPDATE", (user.id,))
                cursor.execute(
                    "DELETE FROM credentials WHERE credential_id = %s AND user_id = %s",
                    (credential_id, user.id),
                )
                if restore:
                    cursor.execute(
                        "UPDATE credentials SET enabled = TRUE "
                        "WHERE user_id = %s AND credential_id = ANY(%s)",
                        (user.id, list(restore)),
                    )
                conn.commit()
        logger.warning("Enrollment of a credential reverted for user %s", user.id)


class PostgresSessionService:
    """
    Implements SessionService protocol via psycopg3.

    Session keys are random; only their SHA-256 digest is stored.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def login(self, user: ResolvedUser) -> str:
        session_key = secrets.token_urlsafe(32)
        key_hash = hashlib.sha256(session_key.encode()).hexdigest()

        sql = "INSERT INTO sessions (key_hash, user_id, created_at) VALUES (%s, %s, NOW())"
        with _translate_errors("login"):
            with self._pool.connection() as conn, conn.cursor() as cursor:
                cursor.execute(sql, (key_hash, user.id))
                conn.commit()
        logger.info("Session started for user %s", user.id)
        return session_key


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
