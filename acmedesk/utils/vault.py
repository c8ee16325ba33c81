#!/usr/bin/env python3
#
# acmedesk/utils/vault.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""
Sealing of private key material before it reaches the database.

Both the ACME account key and every issued certificate key pass through a
``KeyMaterialCodec``. Orchestration code never knows which codec is active,
so the storage backend can be swapped without touching issuance logic.

``VaultCodec`` encrypts each value with a unique Fernet key derived from:
  - A random 16-byte salt (stored alongside the ciphertext)
  - The application secret key (pepper) from ACMEDESK_SECRET_KEY

Storage format:  "vault:1:<salt_hex>:<fernet_token>"
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

_log = logging.getLogger(__name__)

_VAULT_PREFIX = "vault:1:"


class KeyMaterialCodec(Protocol):
	"""Capability for storing private key PEMs at rest."""

	def seal(self, pem: str) -> str: ...

	def unseal(self, stored: str) -> str: ...


class PlaintextCodec:
	"""Store PEMs as-is. Development only."""

	def seal(self, pem: str) -> str:
		return pem

	def unseal(self, stored: str) -> str:
		return stored


class VaultCodec:
	"""Fernet encryption keyed by the application secret."""

	def __init__(self, pepper: str) -> None:
		if not pepper:
			raise ValueError("ACMEDESK_SECRET_KEY is not set")
		self._pepper = pepper

	def seal(self, pem: str) -> str:
		return encrypt(pem, self._pepper)

	def unseal(self, stored: str) -> str:
		return decrypt(stored, self._pepper)


def _derive_key(pepper: str, salt: bytes) -> bytes:
	"""Derive a 32-byte Fernet key from pepper + salt via PBKDF2-SHA256."""
	dk = hashlib.pbkdf2_hmac(
		"sha256",
		pepper.encode("utf-8"),
		salt,
		iterations=480_000,
	)
	return base64.urlsafe_b64encode(dk)


def encrypt(plaintext: str, pepper: str) -> str:
	"""Encrypt a plaintext secret into the vault format."""
	salt = os.urandom(16)
	f = Fernet(_derive_key(pepper, salt))
	token = f.encrypt(plaintext.encode("utf-8"))
	return f"{_VAULT_PREFIX}{salt.hex()}:{token.decode('ascii')}"


def decrypt(stored: str, pepper: str) -> str:
	"""Decrypt a vault-formatted string back to plaintext.

	Values without the vault prefix were written by ``PlaintextCodec`` and
	are returned unchanged.
	"""
	if not stored or not stored.startswith(_VAULT_PREFIX):
		return stored

	try:
		rest = stored[len(_VAULT_PREFIX):]
		salt_hex, fernet_token = rest.split(":", 1)
		salt = bytes.fromhex(salt_hex)
		if len(salt) != 16:
			raise ValueError("Invalid salt length")
		f = Fernet(_derive_key(pepper, salt))
		return f.decrypt(fernet_token.encode("ascii")).decode("utf-8")
	except (InvalidToken, ValueError) as exc:
		_log.exception("vault decrypt failed")
		raise ValueError("Cannot decrypt key material - wrong ACMEDESK_SECRET_KEY?") from exc


def codec_for(secret_key: str, *, encrypt_keys: bool = True) -> KeyMaterialCodec:
	"""Pick the codec for the configured deployment."""
	if encrypt_keys:
		return VaultCodec(secret_key)
	_log.warning("Key material encryption disabled - private keys are stored in plaintext")
	return PlaintextCodec()
