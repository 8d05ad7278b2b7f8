"""
Multi-Factor Authentication (MFA) Module

Implements TOTP-based MFA (Time-based One-Time Password):
- Enrollment with provisioning URI and QR code for authenticator apps
- TOTP validation (6-digit codes) with replay protection
- Single-use backup codes, stored hashed
"""

import base64
import io
import logging
import re
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

import pyotp
import qrcode

from .config import SecurityConfig
from .crypto import CryptoManager
from .errors import AuthError, AuthErrorKind
from .models import MFADevice, MFASetup, MFAType, User, new_id
from .utils import Clock, TokenGenerator, Validator

logger = logging.getLogger(__name__)


class MFAService:
    """
    Manages second-factor devices.

    Compatible with: Google Authenticator, Authy, Microsoft Authenticator, etc.
    Uses RFC 6238 TOTP.
    """

    def __init__(
        self,
        config: SecurityConfig,
        crypto: CryptoManager,
        clock: Clock,
        generator: TokenGenerator,
    ):
        self.config = config
        self.crypto = crypto
        self.clock = clock
        self.generator = generator
        self._lock = threading.RLock()
        self._devices: Dict[str, List[MFADevice]] = {}
        self._totp_re = re.compile(rf"\d{{{config.TOTP_DIGITS}}}")

    def setup(self, user: User, type: MFAType, name: str) -> MFASetup:
        """
        Enroll a new, unverified device.

        The plaintext secret and backup codes are returned once and never stored.
        """
        secret = self.generator.base32_secret()
        backup_codes = self.generate_backup_codes()
        uri = self.get_provisioning_uri(secret, user.email)

        device = MFADevice(
            id=new_id(),
            user_id=user.id,
            type=MFAType(type),
            name=name,
            secret=self.crypto.encrypt(secret),
            backup_codes=[self._hash_backup_code(c) for c in backup_codes],
            created_at=self.clock.now(),
        )
        with self._lock:
            self._devices.setdefault(user.id, []).append(device)

        return MFASetup(
            device_id=device.id,
            secret=secret,
            backup_codes=backup_codes,
            enrollment_uri=uri,
            qr_code=self.generate_qr_code(uri),
        )

    def confirm_device(self, user_id: str, device_id: str, code: str) -> MFADevice:
        """Proves possession of a freshly enrolled device and marks it verified."""
        with self._lock:
            device = self._find_device(user_id, device_id)
            if device is None:
                raise AuthError(AuthErrorKind.USER_NOT_FOUND, "MFA device not found")
            if not self._check_totp(device, code):
                raise AuthError(AuthErrorKind.INVALID_MFA_CODE)
            device.is_verified = True
            return replace(device)

    def verify_code(self, user_id: str, code: str) -> bool:
        """
        Accepts a current TOTP for any verified device, or an unused backup
        code which is consumed. Each code succeeds at most once.
        """
        if not isinstance(code, str) or not code:
            return False
        code = code.strip()

        with self._lock:
            devices = [d for d in self._devices.get(user_id, []) if d.is_verified]
            if not devices:
                return False

            if self._totp_re.fullmatch(code):
                for device in devices:
                    if self._check_totp(device, code):
                        return True
                return False

            digest = self._hash_backup_code(code)
            for device in devices:
                for stored in device.backup_codes:
                    if Validator.constant_time_equals(stored, digest):
                        device.backup_codes.remove(stored)
                        device.last_used_at = self.clock.now()
                        logger.info(
                            "Backup code used for user %s; %d remaining on device %s",
                            user_id, len(device.backup_codes), device.id,
                        )
                        return True
        return False

    def has_verified_device(self, user_id: str) -> bool:
        with self._lock:
            return any(d.is_verified for d in self._devices.get(user_id, []))

    def list_devices(self, user_id: str) -> List[MFADevice]:
        with self._lock:
            return [replace(d) for d in self._devices.get(user_id, [])]

    def remove_device(self, user_id: str, device_id: str) -> bool:
        with self._lock:
            devices = self._devices.get(user_id, [])
            kept = [d for d in devices if d.id != device_id]
            self._devices[user_id] = kept
            return len(kept) != len(devices)

    def remove_all(self, user_id: str) -> int:
        with self._lock:
            return len(self._devices.pop(user_id, []))

    def get_provisioning_uri(self, secret: str, account_identifier: str) -> str:
        """Format: otpauth://totp/Issuer:account?secret=SECRET&issuer=Issuer"""
        return self._totp(secret).provisioning_uri(
            name=account_identifier,
            issuer_name=self.config.TOTP_ISSUER
        )

    def generate_qr_code(self, provisioning_uri: str) -> str:
        """
        Generate QR code image for TOTP setup.

        Returns:
            Base64-encoded PNG image
        """
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer)
        return base64.b64encode(buffer.getvalue()).decode()

    def generate_backup_codes(self, count: Optional[int] = None) -> List[str]:
        """Backup codes formatted XXXX-XXXX, drawn from an unambiguous alphabet."""
        if count is None:
            count = self.config.MFA_BACKUP_CODE_COUNT
        half = self.config.MFA_BACKUP_CODE_LENGTH // 2
        codes = []
        for _ in range(count):
            raw = self.generator.alphanumeric_code(self.config.MFA_BACKUP_CODE_LENGTH)
            codes.append(f"{raw[:half]}-{raw[half:]}")
        return codes

    def current_code(self, user_id: str, device_id: str, at: Optional[datetime] = None) -> str:
        """Current TOTP value for a device (out-of-band delivery for sms/email devices)."""
        with self._lock:
            device = self._find_device(user_id, device_id)
            if device is None:
                raise AuthError(AuthErrorKind.USER_NOT_FOUND, "MFA device not found")
            secret = self.crypto.decrypt(device.secret)
        return self._totp(secret).at(at or self.clock.now())

    def _check_totp(self, device: MFADevice, code: str) -> bool:
        """
        Constant-time TOTP check within the configured drift window.
        A matched time step is remembered so the same code cannot be replayed.
        """
        if not isinstance(code, str) or not self._totp_re.fullmatch(code.strip()):
            return False
        code = code.strip()
        totp = self._totp(self.crypto.decrypt(device.secret))
        now = self.clock.now()
        current = totp.timecode(now)

        for offset in range(-self.config.TOTP_VALID_WINDOW, self.config.TOTP_VALID_WINDOW + 1):
            counter = current + offset
            if Validator.constant_time_equals(totp.generate_otp(counter), code):
                if device.last_used_counter is not None and counter <= device.last_used_counter:
                    logger.warning("Replayed TOTP code rejected for device %s", device.id)
                    return False
                device.last_used_counter = counter
                device.last_used_at = now
                return True
        return False

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(
            secret,
            interval=self.config.TOTP_INTERVAL,
            digits=self.config.TOTP_DIGITS,
            issuer=self.config.TOTP_ISSUER,
        )

    def _find_device(self, user_id: str, device_id: str) -> Optional[MFADevice]:
        for device in self._devices.get(user_id, []):
            if device.id == device_id:
                return device
        return None

    @staticmethod
    def _hash_backup_code(code: str) -> str:
        normalized = code.replace('-', '').replace(' ', '').upper()
        return Validator.hash_token(normalized)
