#!/usr/bin/env python3
#
# acmedesk/db/sqlite_challenges.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""HTTP-01 challenge response records."""

from __future__ import annotations

import sqlite3
from datetime import datetime

from ..utils.time import utcnow
from .sqlite_runtime import transaction


def insert_challenge(
	conn: sqlite3.Connection,
	token: str,
	content: str,
	domain_fqdn: str,
	expires_at: datetime,
) -> None:
	"""Store a challenge response.

	A token the CA hands out twice (retry of the same authorization)
	replaces the earlier record.
	"""
	with transaction(conn):
		conn.execute(
			"""
			INSERT INTO acme_http_challenges (token, content, domain_fqdn, expires_at, created_at)
			VALUES (?, ?, ?, ?, ?)
			ON CONFLICT(token) DO UPDATE SET
				content = excluded.content,
				domain_fqdn = excluded.domain_fqdn,
				expires_at = excluded.expires_at
			""",
			(token, content, domain_fqdn, expires_at, utcnow()),
		)


def get_active_challenge(
	conn: sqlite3.Connection,
	token: str,
	now: datetime | None = None,
) -> sqlite3.Row | None:
	"""Get an unexpired challenge by token (expired rows read as absent)."""
	cur = conn.execute(
		"SELECT * FROM acme_http_challenges WHERE token = ? AND expires_at > ?",
		(token, now or utcnow()),
	)
	return cur.fetchone()


def delete_challenge(conn: sqlite3.Connection, token: str) -> bool:
	"""Delete a challenge by token."""
	with transaction(conn):
		cur = conn.execute("DELETE FROM acme_http_challenges WHERE token = ?", (token,))
		return cur.rowcount > 0
