"""Unit tests for token issuance and the session manager."""

import jwt
import pytest

from authcore.errors import AuthError, AuthErrorKind
from authcore.models import AccountStatus, RevocationReason
from authcore.utils import Validator


@pytest.fixture
def sessions(service):
    return service.sessions


class TestAccessTokens:
    def test_access_token_is_signed_jwt_bound_to_session(self, sessions, user, device, config):
        issued = sessions.create_session(user, device)

        claims = jwt.decode(
            issued.access_token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM],
            options={"verify_exp": False, "verify_iat": False}, issuer=config.JWT_ISSUER,
        )
        assert claims["sub"] == user.id
        assert claims["sid"] == issued.session.id
        assert claims["type"] == "access"

    def test_tampered_token_is_rejected(self, service, user, device):
        issued = service.sessions.create_session(user, device)
        forged = jwt.encode({"sub": user.id, "sid": issued.session.id, "exp": 9999999999, "type": "access"},
                            "some-other-key-that-is-long-enough-for-hs256", algorithm="HS256")

        assert not service.sessions.validate_session(forged)
        assert service.tokens.decode_access_token(forged) is None

    def test_only_digests_are_stored(self, sessions, user, device):
        issued = sessions.create_session(user, device)
        record = sessions.get_session(issued.session.id)

        assert record.access_token_hash == Validator.hash_token(issued.access_token)
        assert record.refresh_token_hash == Validator.hash_token(issued.refresh_token)
        assert issued.access_token not in vars(record).values()


class TestSessionLifecycle:
    def test_new_session_is_valid(self, sessions, user, device, clock, config):
        issued = sessions.create_session(user, device, ip_address="10.0.0.1")

        assert sessions.validate_session(issued.access_token)
        assert issued.session.expires_at == clock.now() + config.SESSION_DURATION
        assert issued.session.ip_address == "10.0.0.1"
        assert issued.session.is_active

    def test_unknown_token_is_invalid(self, sessions):
        assert not sessions.validate_session("not-a-token")
        assert not sessions.validate_session("")

    def test_session_expires_lazily(self, sessions, user, device, clock, config):
        issued = sessions.create_session(user, device)
        clock.advance(seconds=config.SESSION_DURATION.total_seconds())

        assert not sessions.validate_session(issued.access_token)
        # Expired records are not swept
        assert sessions.get_session(issued.session.id) is not None

    def test_validation_touches_last_activity(self, sessions, user, device, clock):
        issued = sessions.create_session(user, device)
        clock.advance(minutes=10)

        sessions.validate_session(issued.access_token)

        assert sessions.get_session(issued.session.id).last_activity_at == clock.now()

    def test_logout_is_idempotent(self, sessions, user, device):
        issued = sessions.create_session(user, device)

        assert sessions.logout(issued.session.id) is True
        assert sessions.logout(issued.session.id) is False
        record = sessions.get_session(issued.session.id)
        assert not record.is_active
        assert record.revoked_reason is RevocationReason.LOGOUT

    def test_logout_touches_only_that_session(self, sessions, user, device):
        first = sessions.create_session(user, device)
        second = sessions.create_session(user, device)

        sessions.logout(first.session.id)

        assert not sessions.validate_session(first.access_token)
        assert sessions.validate_session(second.access_token)

    def test_invalidate_all_sessions(self, sessions, user, device, service):
        other = service.register("carol@example.com", "carol", "Correct1Horse")
        a = sessions.create_session(user, device)
        b = sessions.create_session(user, device)
        c = sessions.create_session(other, device)

        assert sessions.invalidate_all_sessions(user.id, RevocationReason.PASSWORD_CHANGE) == 2

        assert not sessions.validate_session(a.access_token)
        assert not sessions.validate_session(b.access_token)
        assert sessions.validate_session(c.access_token)
        assert [s.id for s in sessions.list_active_sessions()] == [c.session.id]


class TestRefresh:
    def test_refresh_rotates_tokens(self, sessions, user, device):
        original = sessions.create_session(user, device)

        rotated = sessions.refresh_session(original.refresh_token)

        assert rotated.session.id != original.session.id
        assert rotated.access_token != original.access_token
        assert rotated.refresh_token != original.refresh_token
        assert rotated.session.user_id == user.id
        assert rotated.session.device_info == device
        assert rotated.session.family_id == original.session.family_id
        assert not sessions.validate_session(original.access_token)
        assert sessions.validate_session(rotated.access_token)
        assert sessions.get_session(original.session.id).revoked_reason is RevocationReason.ROTATED

    def test_refresh_token_is_single_use(self, sessions, user, device):
        original = sessions.create_session(user, device)
        sessions.refresh_session(original.refresh_token)

        with pytest.raises(AuthError) as exc:
            sessions.refresh_session(original.refresh_token)
        assert exc.value.kind in (AuthErrorKind.INVALID_TOKEN, AuthErrorKind.SESSION_EXPIRED)

    def test_reuse_revokes_whole_family(self, sessions, user, device):
        original = sessions.create_session(user, device)
        rotated = sessions.refresh_session(original.refresh_token)

        with pytest.raises(AuthError):
            sessions.refresh_session(original.refresh_token)

        assert not sessions.validate_session(rotated.access_token)
        assert sessions.get_session(rotated.session.id).revoked_reason is RevocationReason.TOKEN_REUSE

    def test_unknown_refresh_token(self, sessions):
        with pytest.raises(AuthError) as exc:
            sessions.refresh_session("bogus")
        assert exc.value.kind is AuthErrorKind.INVALID_TOKEN

    def test_refresh_after_logout(self, sessions, user, device):
        issued = sessions.create_session(user, device)
        sessions.logout(issued.session.id)

        with pytest.raises(AuthError) as exc:
            sessions.refresh_session(issued.refresh_token)
        assert exc.value.kind is AuthErrorKind.SESSION_EXPIRED

    def test_refresh_window_elapsed(self, sessions, user, device, clock, config):
        issued = sessions.create_session(user, device)
        clock.advance(seconds=config.REFRESH_TOKEN_DURATION.total_seconds() + 1)

        with pytest.raises(AuthError) as exc:
            sessions.refresh_session(issued.refresh_token)
        assert exc.value.kind is AuthErrorKind.SESSION_EXPIRED

    def test_refresh_after_access_expiry_within_refresh_window(self, sessions, user, device, clock, config):
        issued = sessions.create_session(user, device)
        clock.advance(seconds=config.SESSION_DURATION.total_seconds() + 60)

        rotated = sessions.refresh_session(issued.refresh_token)

        assert sessions.validate_session(rotated.access_token)

    def test_refresh_for_deleted_user(self, service, user, device):
        issued = service.sessions.create_session(user, device)
        # Bypass the service so the session stays active
        service.credentials.set_status(user.id, AccountStatus.DELETED)

        with pytest.raises(AuthError) as exc:
            service.sessions.refresh_session(issued.refresh_token)
        assert exc.value.kind is AuthErrorKind.USER_NOT_FOUND
