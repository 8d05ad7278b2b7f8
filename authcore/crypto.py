import base64
import os

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import SecurityConfig

GCM_TAG_SIZE = 16


class CryptoManager:
    """
    AES-256-GCM for secrets kept at rest (MFA seeds) and Argon2id for passwords.
    """

    def __init__(self, config: SecurityConfig):
        try:
            key = base64.urlsafe_b64decode(config.DATA_ENCRYPTION_KEY)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid Encryption Key configuration: {e}")
        if len(key) != config.AES_KEY_SIZE:
            raise ValueError(f"Invalid Encryption Key configuration: expected {config.AES_KEY_SIZE} bytes")
        self._aead = AESGCM(key)
        self.nonce_size = config.AES_NONCE_SIZE

        self.ph = PasswordHasher(
            time_cost=config.ARGON2_TIME_COST,
            memory_cost=config.ARGON2_MEMORY_COST,
            parallelism=config.ARGON2_PARALLELISM,
            hash_len=config.ARGON2_HASH_LENGTH,
            salt_len=config.ARGON2_SALT_LENGTH,
            type=Type.ID,
        )
        # Verified against when the account does not exist so both paths cost the same
        self._dummy_hash = self.ph.hash(base64.b64encode(os.urandom(12)).decode())

    def encrypt(self, plaintext: str) -> str:
        """
        Fresh random nonce per call.
        Returns: nonce_hex:ciphertext_hex:tag_hex
        """
        nonce = os.urandom(self.nonce_size)
        sealed = self._aead.encrypt(nonce, plaintext.encode(), None)
        ciphertext, tag = sealed[:-GCM_TAG_SIZE], sealed[-GCM_TAG_SIZE:]
        return f"{nonce.hex()}:{ciphertext.hex()}:{tag.hex()}"

    def decrypt(self, payload: str) -> str:
        """Raises ValueError when the payload is malformed or fails authentication."""
        try:
            nonce_hex, ct_hex, tag_hex = payload.split(':')
            sealed = bytes.fromhex(ct_hex) + bytes.fromhex(tag_hex)
            return self._aead.decrypt(bytes.fromhex(nonce_hex), sealed, None).decode()
        except (ValueError, InvalidTag) as e:
            raise ValueError("Decryption failed or data tampered") from e

    def hash_password(self, password: str) -> str:
        return self.ph.hash(password)

    def verify_password(self, hash: str, password: str) -> bool:
        try:
            return self.ph.verify(hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hash: str) -> bool:
        return self.ph.check_needs_rehash(hash)

    def burn_verification(self, password: str) -> None:
        """Spends one verification's worth of work; the result is discarded."""
        self.verify_password(self._dummy_hash, password)
