#!/usr/bin/env python3
#
# acmedesk/services/account_keys.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Lazily created singleton ACME account key."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Optional

from ..acme import crypto
from ..acme.protocol import AcmeClientFactory
from ..db.sqlite_accounts import get_account, insert_account_if_absent, set_account_url
from ..db.sqlite_runtime import run_db
from ..models.acme import AccountKey
from ..utils.vault import KeyMaterialCodec

_log = logging.getLogger(__name__)

ACCOUNT_ID = "default_acme_account_v1"


class AccountKeyStore:
	"""Owns the one ACME account this deployment issues under.

	First-use creation is serialized by an in-process lock; the conditional
	insert keyed by ``ACCOUNT_ID`` resolves races between worker processes.
	"""

	def __init__(
		self,
		db_path: Path,
		directory_url: str,
		contact_email: str,
		client_factory: AcmeClientFactory,
		codec: KeyMaterialCodec,
	) -> None:
		self.db_path = db_path
		self.directory_url = directory_url
		self.contact_email = contact_email
		self.client_factory = client_factory
		self.codec = codec
		self._lock = asyncio.Lock()

	def _to_model(self, row) -> AccountKey:
		return AccountKey(
			id=row["id"],
			contact_email=row["email"],
			private_key_pem=self.codec.unseal(row["private_key_pem"]),
			account_url=row["account_url"] or None,
		)

	def _read(self, conn: sqlite3.Connection) -> Optional[AccountKey]:
		# Runs in the run_db worker: unsealing derives a key via PBKDF2
		row = get_account(conn, ACCOUNT_ID)
		return self._to_model(row) if row is not None else None

	async def _load(self) -> Optional[AccountKey]:
		return await run_db(self.db_path, self._read)

	async def _register(self, key_pem: str) -> str:
		key = crypto.load_private_key(key_pem)
		async with self.client_factory(self.directory_url, key) as client:
			return await client.create_account(self.contact_email)

	async def get_or_create_account_key(self) -> AccountKey:
		"""Return the stored account, registering a new one on first use."""
		account = await self._load()
		if account is not None and account.account_url:
			return account

		async with self._lock:
			account = await self._load()
			if account is not None:
				if account.account_url:
					return account
				# Row without URL: re-register the same key to learn it
				account_url = await self._register(account.private_key_pem)
				await run_db(self.db_path, set_account_url, ACCOUNT_ID, account_url)
				_log.info("ACME_ACCOUNT_URL_BACKFILLED account_id=%s", ACCOUNT_ID)
				account = await self._load()
				if account is None:
					raise RuntimeError("ACME account row missing after backfill")
				return account

			key_pem = await asyncio.to_thread(_new_account_key_pem)
			# Nothing is stored if registration raises
			account_url = await self._register(key_pem)

			sealed = await asyncio.to_thread(self.codec.seal, key_pem)
			created = await run_db(
				self.db_path,
				insert_account_if_absent,
				ACCOUNT_ID,
				self.contact_email,
				sealed,
				account_url,
			)
			if created:
				_log.info("ACME_ACCOUNT_REGISTERED account_id=%s url=%s", ACCOUNT_ID, account_url)
			else:
				_log.warning(
					"ACME_ACCOUNT_RACE_LOST account_id=%s discarded_url=%s",
					ACCOUNT_ID,
					account_url,
				)

			account = await self._load()
			if account is None:
				raise RuntimeError("ACME account row missing after insert")
			return account


def _new_account_key_pem() -> str:
	return crypto.private_key_to_pem(crypto.generate_account_key())
