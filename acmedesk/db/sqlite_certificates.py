#!/usr/bin/env python3
#
# acmedesk/db/sqlite_certificates.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Certificate issuance attempt records (append-only)."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from ..utils.time import utcnow
from .sqlite_runtime import transaction


def insert_certificate(
	conn: sqlite3.Connection,
	*,
	certificate_id: str,
	domain_id: str,
	user_id: str,
	common_name: str,
	status: str,
	certificate_pem: str | None,
	private_key_pem: str | None,
	chain_pem: str | None,
	issued_at: datetime,
	expires_at: datetime,
	acme_order_url: str | None,
	acme_challenge_type: str | None,
) -> None:
	"""Insert one issuance attempt row."""
	with transaction(conn):
		conn.execute(
			"""
			INSERT INTO certificates (
				id, domain_id, user_id, common_name, certificate_pem, private_key_pem,
				chain_pem, issued_at, expires_at, status, acme_order_url,
				acme_challenge_type, created_at
			)
			VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
			""",
			(
				certificate_id, domain_id, user_id, common_name, certificate_pem, private_key_pem,
				chain_pem, issued_at, expires_at, status, acme_order_url,
				acme_challenge_type, utcnow(),
			),
		)


def get_certificate(conn: sqlite3.Connection, certificate_id: str) -> sqlite3.Row | None:
	"""Get an issuance attempt by ID."""
	cur = conn.execute("SELECT * FROM certificates WHERE id = ?", (certificate_id,))
	return cur.fetchone()


def list_certificates_for_domain(conn: sqlite3.Connection, domain_id: str) -> list[sqlite3.Row]:
	"""List all attempts for a domain, newest first."""
	cur = conn.execute(
		"SELECT * FROM certificates WHERE domain_id = ? ORDER BY created_at DESC, rowid DESC",
		(domain_id,),
	)
	return cur.fetchall()
