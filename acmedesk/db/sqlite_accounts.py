#!/usr/bin/env python3
#
# acmedesk/db/sqlite_accounts.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME account key persistence (singleton row)."""

from __future__ import annotations

import sqlite3

from ..utils.time import utcnow
from .sqlite_runtime import transaction


def get_account(conn: sqlite3.Connection, account_id: str) -> sqlite3.Row | None:
	"""Get the ACME account row by its fixed identifier."""
	cur = conn.execute("SELECT * FROM acme_accounts WHERE id = ?", (account_id,))
	return cur.fetchone()


def insert_account_if_absent(
	conn: sqlite3.Connection,
	account_id: str,
	email: str,
	private_key_pem: str,
	account_url: str,
) -> bool:
	"""Insert the account row unless one already exists.

	Returns True if this call created the row, False if another writer
	got there first (the existing row is left untouched).
	"""
	with transaction(conn, immediate=True):
		cur = conn.execute(
			"""
			INSERT INTO acme_accounts (id, email, private_key_pem, account_url, created_at)
			VALUES (?, ?, ?, ?, ?)
			ON CONFLICT(id) DO NOTHING
			""",
			(account_id, email, private_key_pem, account_url, utcnow()),
		)
		return cur.rowcount > 0


def set_account_url(conn: sqlite3.Connection, account_id: str, account_url: str) -> bool:
	"""Backfill the CA-assigned account URL. Never overwrites an existing one."""
	with transaction(conn):
		cur = conn.execute(
			"UPDATE acme_accounts SET account_url = ? WHERE id = ? AND (account_url IS NULL OR account_url = '')",
			(account_url, account_id),
		)
		return cur.rowcount > 0
