"""
Unit tests for the in-memory repository adapters.

Tests verify the stores honour the same rules as the PostgreSQL adapters:
- Forward-only token transitions with lazy expiry
- Global credential id uniqueness
- Idempotent disable-all and atomic enroll
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.adapters.repository.memory import (
    InMemoryCredentialRegistry,
    InMemoryIdentityStore,
    InMemoryRecoveryTokenStore,
    InMemorySessionService,
)
from src.domain.exceptions import DuplicateCredential
from src.domain.models import AttestationChallenge, Credential, ResolvedUser
from src.domain.ports import TokenState

ALICE = ResolvedUser(id=1, email="alice@example.com")
BOB = ResolvedUser(id=2, email="bob@example.com")


def challenge_for(user: ResolvedUser) -> AttestationChallenge:
    return AttestationChallenge(
        nonce=b"x" * 16,
        user=user,
        rp_id="example.com",
        timeout_seconds=60,
        issued_at=datetime.now(timezone.utc),
    )


class TestIdentityStore:
    def test_add_and_find(self) -> None:
        store = InMemoryIdentityStore()
        user = store.add_user("alice@example.com")

        assert store.find_by_email("alice@example.com") == user

    def test_add_is_idempotent(self) -> None:
        store = InMemoryIdentityStore()
        assert store.add_user("alice@example.com") == store.add_user("alice@example.com")

    def test_unknown_email_returns_none(self) -> None:
        assert InMemoryIdentityStore().find_by_email("ghost@example.com") is None

    def test_add_normalizes_email(self) -> None:
        store = InMemoryIdentityStore()
        user = store.add_user("  Alice@Example.COM ")

        assert user.email == "alice@example.com"
        assert store.find_by_email("alice@example.com") == user


class TestTokenStore:
    @pytest.fixture
    def store(self) -> InMemoryRecoveryTokenStore:
        return InMemoryRecoveryTokenStore(bcrypt_cost=4)

    def test_issued_token_is_valid(self, store: InMemoryRecoveryTokenStore) -> None:
        token = store.issue(ALICE)

        assert store.is_valid(ALICE.id, token) is True
        assert store.state_of(ALICE) == TokenState.ISSUED

    def test_tokens_are_unique_and_urlsafe(self, store: InMemoryRecoveryTokenStore) -> None:
        tokens = {store.issue(ALICE) for _ in range(5)}
        assert len(tokens) == 5
        assert all("+" not in t and "/" not in t for t in tokens)

    def test_wrong_token_invalid(self, store: InMemoryRecoveryTokenStore) -> None:
        store.issue(ALICE)
        assert store.is_valid(ALICE.id, "not-the-token") is False

    def test_token_bound_to_owner(self, store: InMemoryRecoveryTokenStore) -> None:
        token = store.issue(ALICE)
        store.issue(BOB)
        assert store.is_valid(BOB.id, token) is False

    def test_unknown_user_invalid(self, store: InMemoryRecoveryTokenStore) -> None:
        token = store.issue(ALICE)
        assert store.is_valid(None, token) is False
        assert store.claim_for_challenge(None, token, challenge_for(ALICE)) is False
        assert store.redeem(None, token) is None

    def test_claim_moves_to_challenged(self, store: InMemoryRecoveryTokenStore) -> None:
        token = store.issue(ALICE)

        assert store.claim_for_challenge(ALICE.id, token, challenge_for(ALICE)) is True
        assert store.state_of(ALICE) == TokenState.CHALLENGED

    def test_claim_only_once(self, store: InMemoryRecoveryTokenStore) -> None:
        token = store.issue(ALICE)
        store.claim_for_challenge(ALICE.id, token, challenge_for(ALICE))

        assert store.claim_for_challenge(ALICE.id, token, challenge_for(ALICE)) is False

    def test_redeem_returns_stored_challenge_once(self, store: InMemoryRecoveryTokenStore) -> None:
        token = store.issue(ALICE)
        challenge = challenge_for(ALICE)
        store.claim_for_challenge(ALICE.id, token, challenge)

        assert store.redeem(ALICE.id, token) == challenge
        assert store.redeem(ALICE.id, token) is None
        assert store.state_of(ALICE) == TokenState.REDEEMED

    def test_redeem_requires_claim(self, store: InMemoryRecoveryTokenStore) -> None:
        token = store.issue(ALICE)

        assert store.redeem(ALICE.id, token) is None
        assert store.state_of(ALICE) == TokenState.ISSUED

    def test_expired_token_lazily_expires(self) -> None:
        now = [datetime(2026, 1, 1, tzinfo=timezone.utc)]
        store = InMemoryRecoveryTokenStore(ttl_seconds=10, bcrypt_cost=4, clock=lambda: now[0])
        token = store.issue(ALICE)
        now[0] += timedelta(seconds=10)

        assert store.is_valid(ALICE.id, token) is False
        assert store.state_of(ALICE) == TokenState.ISSUED
        assert store.claim_for_challenge(ALICE.id, token, challenge_for(ALICE)) is False
        assert store.state_of(ALICE) == TokenState.EXPIRED

    def test_challenged_token_expires(self) -> None:
        now = [datetime(2026, 1, 1, tzinfo=timezone.utc)]
        store = InMemoryRecoveryTokenStore(ttl_seconds=10, bcrypt_cost=4, clock=lambda: now[0])
        token = store.issue(ALICE)
        store.claim_for_challenge(ALICE.id, token, challenge_for(ALICE))
        now[0] += timedelta(seconds=11)

        assert store.redeem(ALICE.id, token) is None
        assert store.state_of(ALICE) == TokenState.EXPIRED

    def test_reissue_resets_state(self, store: InMemoryRecoveryTokenStore) -> None:
        first = store.issue(ALICE)
        store.claim_for_challenge(ALICE.id, first, challenge_for(ALICE))
        second = store.issue(ALICE)

        assert store.state_of(ALICE) == TokenState.ISSUED
        assert store.is_valid(ALICE.id, first) is False
        assert store.is_valid(ALICE.id, second) is True


class TestCredentialRegistry:
    @pytest.fixture
    def registry(self) -> InMemoryCredentialRegistry:
        return InMemoryCredentialRegistry()

    def test_add_appends_in_order(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk"))
        registry.add_credential(ALICE, Credential(id=b"two", public_key=b"pk"))

        assert [c.id for c in registry.credentials(ALICE)] == [b"one", b"two"]

    def test_duplicate_for_same_user_rejected(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk"))

        with pytest.raises(DuplicateCredential):
            registry.add_credential(ALICE, Credential(id=b"one", public_key=b"other"))

    def test_duplicate_across_users_rejected(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk"))

        with pytest.raises(DuplicateCredential):
            registry.add_credential(BOB, Credential(id=b"one", public_key=b"pk"))
        assert registry.credentials(BOB) == []

    def test_disable_all_keeps_records(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk", sign_count=5))
        registry.disable_all_credentials(ALICE)

        [credential] = registry.credentials(ALICE)
        assert credential.enabled is False
        assert credential.sign_count == 5

    def test_disable_all_is_idempotent(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk"))
        registry.add_credential(ALICE, Credential(id=b"two", public_key=b"pk"))

        registry.disable_all_credentials(ALICE)
        once = registry.credentials(ALICE)
        registry.disable_all_credentials(ALICE)

        assert registry.credentials(ALICE) == once

    def test_disable_all_only_affects_user(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk"))
        registry.add_credential(BOB, Credential(id=b"two", public_key=b"pk"))

        registry.disable_all_credentials(ALICE)

        assert registry.credentials(BOB)[0].enabled is True

    def test_disable_all_without_credentials(self, registry: InMemoryCredentialRegistry) -> None:
        registry.disable_all_credentials(ALICE)
        assert registry.credentials(ALICE) == []

    def test_enroll_with_disable(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"old", public_key=b"pk"))

        registry.enroll(ALICE, Credential(id=b"new", public_key=b"pk"), disable_existing=True)

        assert [(c.id, c.enabled) for c in registry.credentials(ALICE)] == [
            (b"old", False),
            (b"new", True),
        ]

    def test_enroll_duplicate_rolls_back_disable(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"old", public_key=b"pk"))
        registry.add_credential(BOB, Credential(id=b"bob", public_key=b"pk"))

        with pytest.raises(DuplicateCredential):
            registry.enroll(ALICE, Credential(id=b"bob", public_key=b"pk"), disable_existing=True)

        assert registry.credentials(ALICE)[0].enabled is True

    def test_revoke_removes_credential(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk"))
        registry.add_credential(ALICE, Credential(id=b"two", public_key=b"pk"))

        registry.revoke(ALICE, b"two")

        assert [c.id for c in registry.credentials(ALICE)] == [b"one"]

    def test_revoke_restores_disabled_credentials(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"old", public_key=b"pk"))
        registry.add_credential(ALICE, Credential(id=b"retired", public_key=b"pk", enabled=False))
        registry.enroll(ALICE, Credential(id=b"new", public_key=b"pk"), disable_existing=True)

        registry.revoke(ALICE, b"new", restore=[b"old"])

        assert [(c.id, c.enabled) for c in registry.credentials(ALICE)] == [
            (b"old", True),
            (b"retired", False),
        ]

    def test_revoked_id_can_be_enrolled_again(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(ALICE, Credential(id=b"one", public_key=b"pk"))
        registry.revoke(ALICE, b"one")

        registry.add_credential(BOB, Credential(id=b"one", public_key=b"pk"))

        assert [c.id for c in registry.credentials(BOB)] == [b"one"]

    def test_revoke_ignores_other_users_credential(self, registry: InMemoryCredentialRegistry) -> None:
        registry.add_credential(BOB, Credential(id=b"bob", public_key=b"pk"))

        registry.revoke(ALICE, b"bob")
        registry.revoke(ALICE, b"unknown")

        assert [c.id for c in registry.credentials(BOB)] == [b"bob"]
        with pytest.raises(DuplicateCredential):
            registry.add_credential(ALICE, Credential(id=b"bob", public_key=b"pk"))


class TestSessionService:
    def test_login_returns_distinct_keys(self) -> None:
        sessions = InMemorySessionService()
        first = sessions.login(ALICE)
        second = sessions.login(ALICE)

        assert first != second
        assert sessions.user_id_for(first) == ALICE.id
        assert sessions.user_id_for(second) == ALICE.id

    def test_unknown_key(self) -> None:
        assert InMemorySessionService().user_id_for("nope") is None
