"""Unit tests for the credential store.

Tests for:
- Registration validation (email shape, uniqueness, password strength)
- Password hashing and verification
- Password updates and the session-invalidation signal
"""

import pytest

from authcore.credentials import CredentialStore
from authcore.crypto import CryptoManager
from authcore.errors import AuthError, AuthErrorKind
from authcore.models import AccountStatus, RevocationReason

from conftest import PASSWORD


@pytest.fixture
def store(config, clock):
    return CredentialStore(config, CryptoManager(config), clock)


class TestRegistration:
    def test_register_creates_pending_user(self, store, clock):
        """New accounts start unverified with no MFA."""
        user = store.register("Bob@Example.com", "bob", PASSWORD)

        assert user.email == "bob@example.com"
        assert user.username == "bob"
        assert user.status is AccountStatus.PENDING_VERIFICATION
        assert not user.mfa_enabled
        assert not user.email_verified
        assert user.created_at == clock.now()

    def test_password_is_not_stored_in_plaintext(self, store):
        user = store.register("bob@example.com", "bob", PASSWORD)

        assert PASSWORD not in user.password_hash
        assert user.password_hash.startswith("$argon2id$")

    def test_same_password_gets_distinct_salts(self, store):
        a = store.register("a@example.com", "a", PASSWORD)
        b = store.register("b@example.com", "b", PASSWORD)

        assert a.password_hash != b.password_hash

    def test_profile_fields_and_metadata(self, store):
        user = store.register(
            "bob@example.com", "bob", PASSWORD,
            {"first_name": "Bob", "last_name": "Builder", "phone_number": "+100", "team": "blue"},
        )

        assert user.display_name == "Bob Builder"
        assert user.phone_number == "+100"
        assert user.metadata == {"team": "blue"}

    def test_display_name_falls_back_to_username(self, store):
        user = store.register("bob@example.com", "bob", PASSWORD)
        assert user.display_name == "bob"

    @pytest.mark.parametrize("email", ["", "plainaddress", "a@b", "a@@example.com", "a@example.c"])
    def test_rejects_malformed_email(self, store, email):
        with pytest.raises(AuthError) as exc:
            store.register(email, "x", PASSWORD)
        assert exc.value.kind is AuthErrorKind.INVALID_EMAIL

    def test_rejects_duplicate_email_case_insensitively(self, store):
        store.register("bob@example.com", "bob", PASSWORD)

        with pytest.raises(AuthError) as exc:
            store.register("BOB@example.COM", "bobby", PASSWORD)
        assert exc.value.kind is AuthErrorKind.EMAIL_ALREADY_EXISTS

    @pytest.mark.parametrize("password", ["Short1", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
    def test_rejects_weak_password(self, store, password):
        with pytest.raises(AuthError) as exc:
            store.register("bob@example.com", "bob", password)
        assert exc.value.kind is AuthErrorKind.WEAK_PASSWORD

    def test_weak_password_does_not_create_user(self, store):
        with pytest.raises(AuthError):
            store.register("bob@example.com", "bob", "weak")
        assert store.get_user_by_email("bob@example.com") is None


class TestVerification:
    def test_verify_correct_password(self, store):
        store.register("bob@example.com", "bob", PASSWORD)
        assert store.verify_password("bob@example.com", PASSWORD)

    def test_verify_is_case_insensitive_on_email(self, store):
        store.register("bob@example.com", "bob", PASSWORD)
        assert store.verify_password("  BOB@example.com ", PASSWORD)

    def test_verify_wrong_password(self, store):
        store.register("bob@example.com", "bob", PASSWORD)
        assert not store.verify_password("bob@example.com", "Wrong1Password")

    def test_verify_unknown_user(self, store):
        assert not store.verify_password("ghost@example.com", PASSWORD)


class TestUpdatePassword:
    def test_update_replaces_hash_and_bumps_timestamps(self, store, clock):
        user = store.register("bob@example.com", "bob", PASSWORD)
        clock.advance(minutes=5)

        updated = store.update_password(user.id, "Another2Secret")

        assert updated.password_hash != user.password_hash
        assert updated.updated_at == clock.now()
        assert updated.password_changed_at == clock.now()
        assert store.verify_password("bob@example.com", "Another2Secret")
        assert not store.verify_password("bob@example.com", PASSWORD)

    def test_update_signals_listeners(self, store):
        calls = []
        store.add_password_listener(lambda user_id, reason: calls.append((user_id, reason)))
        user = store.register("bob@example.com", "bob", PASSWORD)

        store.update_password(user.id, "Another2Secret", RevocationReason.PASSWORD_RESET)

        assert calls == [(user.id, RevocationReason.PASSWORD_RESET)]

    def test_update_rejects_weak_password(self, store):
        user = store.register("bob@example.com", "bob", PASSWORD)
        with pytest.raises(AuthError) as exc:
            store.update_password(user.id, "weak")
        assert exc.value.kind is AuthErrorKind.WEAK_PASSWORD

    def test_update_unknown_user(self, store):
        with pytest.raises(AuthError) as exc:
            store.update_password("missing", "Another2Secret")
        assert exc.value.kind is AuthErrorKind.USER_NOT_FOUND


class TestLookups:
    def test_returned_users_are_snapshots(self, store):
        user = store.register("bob@example.com", "bob", PASSWORD)
        user.status = AccountStatus.SUSPENDED

        assert store.get_user(user.id).status is AccountStatus.PENDING_VERIFICATION

    def test_mark_email_verified_activates(self, store):
        user = store.register("bob@example.com", "bob", PASSWORD)
        verified = store.mark_email_verified(user.id)

        assert verified.email_verified
        assert verified.status is AccountStatus.ACTIVE

    def test_require_user_treats_deleted_as_missing(self, store):
        user = store.register("bob@example.com", "bob", PASSWORD)
        store.set_status(user.id, AccountStatus.DELETED)

        with pytest.raises(AuthError) as exc:
            store.require_user(user.id)
        assert exc.value.kind is AuthErrorKind.USER_NOT_FOUND
