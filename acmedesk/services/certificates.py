#!/usr/bin/env python3
#
# acmedesk/services/certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Issuance attempt records and the derived domain status."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..db.sqlite_certificates import get_certificate, insert_certificate, list_certificates_for_domain
from ..db.sqlite_domains import DOMAIN_STATUS_ACTIVE, DOMAIN_STATUS_ISSUANCE_FAILED, update_domain_status
from ..db.sqlite_runtime import run_db
from ..models.acme import CertificateRecord
from ..utils.time import utcnow
from ..utils.vault import KeyMaterialCodec

_log = logging.getLogger(__name__)

FAILURE_KEY_MARKER = "error"


class CertificateRecordStore:
	"""Append-only attempt log. The attempt row is written before the domain status."""

	def __init__(self, db_path: Path, codec: KeyMaterialCodec) -> None:
		self.db_path = db_path
		self.codec = codec

	def _to_model(self, row: sqlite3.Row) -> CertificateRecord:
		key = row["private_key_pem"]
		if key and row["status"] == "issued":
			key = self.codec.unseal(key)
		return CertificateRecord(
			id=row["id"],
			domain_id=row["domain_id"],
			user_id=row["user_id"],
			common_name=row["common_name"],
			status=row["status"],
			certificate_pem=row["certificate_pem"],
			private_key_pem=key,
			chain_pem=row["chain_pem"],
			issued_at=row["issued_at"],
			expires_at=row["expires_at"],
			acme_order_url=row["acme_order_url"],
			acme_challenge_type=row["acme_challenge_type"],
		)

	async def _record(self, domain_id: str, domain_status: str, **fields) -> str:
		certificate_id = str(uuid.uuid4())
		await run_db(self.db_path, insert_certificate, certificate_id=certificate_id, domain_id=domain_id, **fields)
		if not await run_db(self.db_path, update_domain_status, domain_id, domain_status):
			_log.warning("DOMAIN_STATUS_SKIPPED domain_id=%s status=%s reason=not_found", domain_id, domain_status)
		return certificate_id

	async def record_issued(
		self,
		*,
		domain_id: str,
		user_id: str,
		common_name: str,
		certificate_pem: str,
		private_key_pem: str,
		chain_pem: Optional[str],
		issued_at: datetime,
		expires_at: datetime,
		acme_order_url: Optional[str],
		acme_challenge_type: Optional[str],
	) -> str:
		"""Store a successful issuance and mark the domain active."""
		# Sealing derives a key via PBKDF2, keep it off the event loop
		sealed_key = await asyncio.to_thread(self.codec.seal, private_key_pem)
		return await self._record(
			domain_id,
			DOMAIN_STATUS_ACTIVE,
			user_id=user_id,
			common_name=common_name,
			status="issued",
			certificate_pem=certificate_pem,
			private_key_pem=sealed_key,
			chain_pem=chain_pem,
			issued_at=issued_at,
			expires_at=expires_at,
			acme_order_url=acme_order_url,
			acme_challenge_type=acme_challenge_type,
		)

	async def record_failure(
		self,
		*,
		domain_id: str,
		user_id: str,
		common_name: str,
		error: str,
		acme_order_url: Optional[str] = None,
		acme_challenge_type: Optional[str] = None,
	) -> str:
		"""Store a failed attempt (error text in ``certificate_pem``) and mark the domain failed."""
		now = utcnow()
		return await self._record(
			domain_id,
			DOMAIN_STATUS_ISSUANCE_FAILED,
			user_id=user_id,
			common_name=common_name,
			status="issuance_error",
			certificate_pem=error,
			private_key_pem=FAILURE_KEY_MARKER,
			chain_pem=None,
			issued_at=now,
			expires_at=now,
			acme_order_url=acme_order_url,
			acme_challenge_type=acme_challenge_type,
		)

	async def get(self, certificate_id: str) -> Optional[CertificateRecord]:
		def _read(conn: sqlite3.Connection) -> Optional[CertificateRecord]:
			row = get_certificate(conn, certificate_id)
			return self._to_model(row) if row else None

		return await run_db(self.db_path, _read)

	async def list_for_domain(self, domain_id: str) -> list[CertificateRecord]:
		def _read(conn: sqlite3.Connection) -> list[CertificateRecord]:
			return [self._to_model(row) for row in list_certificates_for_domain(conn, domain_id)]

		return await run_db(self.db_path, _read)
