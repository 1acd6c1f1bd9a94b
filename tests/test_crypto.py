"""Tests for token encryption at rest."""
from datetime import datetime

import pytest
from sqlalchemy import select, text

from conftest import TOKEN_KEY
from superschema.crypto import EncryptionError, decrypt, encrypt, generate_encryption_key
from superschema.models import GA4Connection, HubSpotConnection
from superschema.users import UserService


def test_encrypt_round_trip():
	sealed = encrypt("hs-access-token")

	assert decrypt(sealed) == "hs-access-token"
	assert "hs-access-token" not in sealed
	salt, iv, tag, data = sealed.split(":")
	assert (len(salt), len(iv), len(tag)) == (128, 32, 32)
	assert encrypt("hs-access-token") != sealed


def test_decrypt_with_the_wrong_key_fails():
	sealed = encrypt("secret", passphrase=TOKEN_KEY)

	with pytest.raises(EncryptionError, match="Decryption failed"):
		decrypt(sealed, passphrase="another-key-of-at-least-32-characters!!")


def test_tampered_ciphertext_is_rejected():
	salt, iv, tag, data = encrypt("secret").split(":")
	flipped = format(int(data[:2], 16) ^ 1, "02x") + data[2:]

	with pytest.raises(EncryptionError):
		decrypt(":".join((salt, iv, tag, flipped)))
	with pytest.raises(EncryptionError, match="Invalid encrypted text format"):
		decrypt("not-encrypted")


def test_key_must_be_configured_and_long_enough(monkeypatch):
	monkeypatch.setattr("superschema.config.Config.HUBSPOT_ENCRYPTION_KEY", "")
	with pytest.raises(EncryptionError, match="not set"):
		encrypt("secret")

	with pytest.raises(EncryptionError, match="at least 32 characters"):
		encrypt("secret", passphrase="short")


def test_generated_key_is_usable():
	key = generate_encryption_key()

	assert len(key) == 64
	assert decrypt(encrypt("secret", key), key) == "secret"


def test_tokens_are_stored_encrypted(db):
	UserService(db).get_or_create("user_1", "user_1@example.test")
	with db.get_session() as session:
		session.add(HubSpotConnection(
			user_id="user_1",
			portal_id="4242",
			access_token="hs-access",
			refresh_token="hs-refresh",
			token_expires_at=datetime(2024, 6, 1, 12, 30, 0),
		))
		session.add(GA4Connection(user_id="user_1", access_token="ga-access", refresh_token="ga-refresh"))

	with db.get_session() as session:
		raw = session.execute(text("SELECT access_token, refresh_token FROM hubspot_connections")).one()
		assert "hs-access" not in raw[0]
		assert decrypt(raw[0]) == "hs-access"
		assert decrypt(raw[1]) == "hs-refresh"

		raw_ga4 = session.execute(text("SELECT access_token FROM ga4_connections")).scalar_one()
		assert decrypt(raw_ga4) == "ga-access"

		conn = session.execute(select(HubSpotConnection)).scalar_one()
		assert conn.access_token == "hs-access"
		assert conn.refresh_token == "hs-refresh"
