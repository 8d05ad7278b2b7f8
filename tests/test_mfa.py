"""Unit tests for MFA enrollment and verification."""

import base64
from urllib.parse import parse_qs, urlparse

import pytest

from authcore.errors import AuthError, AuthErrorKind
from authcore.models import MFAType

from conftest import totp_code


@pytest.fixture
def mfa(service):
    return service.mfa


@pytest.fixture
def setup(mfa, user):
    return mfa.setup(user, MFAType.TOTP, "Phone")


def confirm(mfa, user, setup, clock):
    mfa.confirm_device(user.id, setup.device_id, totp_code(setup.secret, clock))
    clock.advance(seconds=90)


class TestSetup:
    def test_setup_returns_enrollment_material(self, setup, user, config):
        assert len(setup.secret) >= 16
        assert len(setup.backup_codes) == config.MFA_BACKUP_CODE_COUNT
        assert len(set(setup.backup_codes)) == len(setup.backup_codes)
        for code in setup.backup_codes:
            assert len(code) == config.MFA_BACKUP_CODE_LENGTH + 1
            assert code[4] == "-"

        uri = urlparse(setup.enrollment_uri)
        assert uri.scheme == "otpauth"
        assert uri.netloc == "totp"
        assert parse_qs(uri.query)["secret"] == [setup.secret]
        assert parse_qs(uri.query)["issuer"] == [config.TOTP_ISSUER]

    def test_qr_code_is_png(self, setup):
        assert base64.b64decode(setup.qr_code).startswith(b"\x89PNG")

    def test_device_starts_unverified_with_secrets_protected(self, mfa, setup, user):
        [device] = mfa.list_devices(user.id)

        assert not device.is_verified
        assert device.secret != setup.secret
        assert not set(setup.backup_codes) & set(device.backup_codes)
        assert not mfa.has_verified_device(user.id)

    def test_unverified_device_does_not_accept_codes(self, mfa, setup, user, clock):
        assert not mfa.verify_code(user.id, totp_code(setup.secret, clock))
        assert not mfa.verify_code(user.id, setup.backup_codes[0])


class TestConfirm:
    def test_confirm_with_valid_code(self, mfa, setup, user, clock):
        device = mfa.confirm_device(user.id, setup.device_id, totp_code(setup.secret, clock))

        assert device.is_verified
        assert mfa.has_verified_device(user.id)

    def test_confirm_with_wrong_code(self, mfa, setup, user):
        with pytest.raises(AuthError) as exc:
            mfa.confirm_device(user.id, setup.device_id, "000000")
        assert exc.value.kind is AuthErrorKind.INVALID_MFA_CODE

    def test_confirm_unknown_device(self, mfa, user):
        with pytest.raises(AuthError) as exc:
            mfa.confirm_device(user.id, "missing", "123456")
        assert exc.value.kind is AuthErrorKind.USER_NOT_FOUND


class TestVerifyCode:
    def test_current_totp_accepted(self, mfa, setup, user, clock):
        confirm(mfa, user, setup, clock)
        assert mfa.verify_code(user.id, totp_code(setup.secret, clock))

    def test_totp_replay_rejected(self, mfa, setup, user, clock):
        confirm(mfa, user, setup, clock)
        code = totp_code(setup.secret, clock)

        assert mfa.verify_code(user.id, code)
        assert not mfa.verify_code(user.id, code)

    def test_drift_window(self, mfa, setup, user, clock, config):
        confirm(mfa, user, setup, clock)
        code = totp_code(setup.secret, clock)
        clock.advance(seconds=config.TOTP_INTERVAL)

        assert mfa.verify_code(user.id, code)

    def test_stale_code_rejected(self, mfa, setup, user, clock, config):
        confirm(mfa, user, setup, clock)
        code = totp_code(setup.secret, clock)
        clock.advance(seconds=config.TOTP_INTERVAL * (config.TOTP_VALID_WINDOW + 2))

        assert not mfa.verify_code(user.id, code)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None, 123456, ["123456"]])
    def test_malformed_codes_rejected(self, mfa, setup, user, clock, code):
        confirm(mfa, user, setup, clock)
        assert not mfa.verify_code(user.id, code)

    def test_backup_code_works_once(self, mfa, setup, user, clock):
        confirm(mfa, user, setup, clock)
        code = setup.backup_codes[0]

        assert mfa.verify_code(user.id, code)
        assert not mfa.verify_code(user.id, code)
        [device] = mfa.list_devices(user.id)
        assert len(device.backup_codes) == len(setup.backup_codes) - 1

    def test_backup_code_input_is_normalized(self, mfa, setup, user, clock):
        confirm(mfa, user, setup, clock)
        code = setup.backup_codes[1].replace("-", "").lower()

        assert mfa.verify_code(user.id, code)

    def test_codes_of_other_users_rejected(self, service, mfa, setup, user, clock):
        confirm(mfa, user, setup, clock)
        other = service.register("carol@example.com", "carol", "Correct1Horse")

        assert not mfa.verify_code(other.id, setup.backup_codes[0])

    def test_remove_all(self, mfa, setup, user, clock):
        confirm(mfa, user, setup, clock)

        assert mfa.remove_all(user.id) == 1
        assert not mfa.has_verified_device(user.id)

    def test_current_code_matches_totp(self, mfa, setup, user, clock):
        assert mfa.current_code(user.id, setup.device_id) == totp_code(setup.secret, clock)

    def test_non_string_code_fails_confirmation(self, mfa, setup, user, clock):
        with pytest.raises(AuthError) as exc:
            mfa.confirm_device(user.id, setup.device_id, int(totp_code(setup.secret, clock)))
        assert exc.value.kind is AuthErrorKind.INVALID_MFA_CODE


class TestRemoveDevice:
    def test_remove_one_of_two_devices(self, mfa, user, clock):
        phone = mfa.setup(user, MFAType.TOTP, "Phone")
        tablet = mfa.setup(user, MFAType.TOTP, "Tablet")
        mfa.confirm_device(user.id, phone.device_id, totp_code(phone.secret, clock))
        mfa.confirm_device(user.id, tablet.device_id, totp_code(tablet.secret, clock))
        clock.advance(seconds=90)

        assert mfa.remove_device(user.id, phone.device_id)

        assert mfa.has_verified_device(user.id)
        assert [d.id for d in mfa.list_devices(user.id)] == [tablet.device_id]
        assert not mfa.verify_code(user.id, phone.backup_codes[0])
        assert not mfa.verify_code(user.id, totp_code(phone.secret, clock))
        assert mfa.verify_code(user.id, totp_code(tablet.secret, clock))

    def test_removing_last_device_drops_verification(self, mfa, setup, user, clock):
        confirm(mfa, user, setup, clock)

        assert mfa.remove_device(user.id, setup.device_id)

        assert not mfa.has_verified_device(user.id)
        assert not mfa.verify_code(user.id, setup.backup_codes[0])

    def test_remove_unknown_device(self, mfa, setup, user):
        assert not mfa.remove_device(user.id, "missing")
        assert len(mfa.list_devices(user.id)) == 1
