"""
AES-256-GCM encryption for OAuth tokens stored in the database.

Ciphertexts are hex strings in the form salt:iv:tag:data. The key is derived
from HUBSPOT_ENCRYPTION_KEY with PBKDF2-SHA512 and a fresh random salt per
value, so the same token never encrypts to the same string twice.
"""
import os
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy.types import Text, TypeDecorator

from .config import Config
from .errors import ApiError

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
MIN_PASSPHRASE_LENGTH = 32
PBKDF2_ITERATIONS = 100000


class EncryptionError(ApiError):
	status_code = 500


def _passphrase(passphrase: Optional[str]) -> str:
	value = passphrase if passphrase is not None else Config.HUBSPOT_ENCRYPTION_KEY
	if not value:
		raise EncryptionError("HUBSPOT_ENCRYPTION_KEY environment variable is not set")
	if len(value) < MIN_PASSPHRASE_LENGTH:
		raise EncryptionError(f"HUBSPOT_ENCRYPTION_KEY must be at least {MIN_PASSPHRASE_LENGTH} characters")
	return value


@lru_cache(maxsize=256)
def _derive_key(passphrase: str, salt: bytes) -> bytes:
	kdf = PBKDF2HMAC(algorithm=hashes.SHA512(), length=KEY_LENGTH, salt=salt, iterations=PBKDF2_ITERATIONS)
	return kdf.derive(passphrase.encode("utf-8"))


def encrypt(text: str, passphrase: Optional[str] = None) -> str:
	salt = os.urandom(SALT_LENGTH)
	iv = os.urandom(IV_LENGTH)
	key = _derive_key(_passphrase(passphrase), salt)
	sealed = AESGCM(key).encrypt(iv, text.encode("utf-8"), None)
	data, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
	return ":".join((salt.hex(), iv.hex(), tag.hex(), data.hex()))


def decrypt(value: str, passphrase: Optional[str] = None) -> str:
	parts = value.split(":")
	if len(parts) != 4:
		raise EncryptionError("Invalid encrypted text format")
	try:
		salt, iv, tag, data = (bytes.fromhex(p) for p in parts)
	except ValueError:
		raise EncryptionError("Invalid encrypted text format")
	key = _derive_key(_passphrase(passphrase), salt)
	try:
		return AESGCM(key).decrypt(iv, data + tag, None).decode("utf-8")
	except InvalidTag:
		raise EncryptionError("Decryption failed")


def generate_encryption_key() -> str:
	"""Random passphrase suitable for HUBSPOT_ENCRYPTION_KEY."""
	return os.urandom(32).hex()


class EncryptedText(TypeDecorator):
	"""Text column holding an encrypted string; Python code only sees plaintext."""

	impl = Text
	cache_ok = True

	def process_bind_param(self, value, dialect):
		if value is None:
			return None
		return encrypt(value)

	def process_result_value(self, value, dialect):
		if value is None:
			return None
		return decrypt(value)
