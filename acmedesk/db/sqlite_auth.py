#!/usr/bin/env python3
#
# acmedesk/db/sqlite_auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Session token lookups (tokens are issued by the login service)."""

from __future__ import annotations

import hashlib
import sqlite3

from ..utils.time import utcnow


def hash_token(token: str) -> str:
	"""Hash a session token the way it is stored (SHA-256 hex)."""
	return hashlib.sha256(token.encode("utf-8")).hexdigest()


def get_user_id_by_session_token(conn: sqlite3.Connection, token: str) -> str | None:
	"""Resolve a bearer token to its user ID (validates expiry)."""
	cur = conn.execute(
		"SELECT user_id FROM user_sessions WHERE token_hash = ? AND expires_at > ?",
		(hash_token(token), utcnow()),
	)
	row = cur.fetchone()
	return row["user_id"] if row else None
