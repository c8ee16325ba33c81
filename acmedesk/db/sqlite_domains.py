#!/usr/bin/env python3
#
# acmedesk/db/sqlite_domains.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Domain lookups and status transitions."""

from __future__ import annotations

import sqlite3

from ..utils.time import utcnow
from .sqlite_runtime import transaction

DOMAIN_STATUS_ACTIVE = "active"
DOMAIN_STATUS_ISSUANCE_FAILED = "issuance_failed"


def get_domain_for_user(conn: sqlite3.Connection, domain_id: str, user_id: str) -> sqlite3.Row | None:
	"""Get a domain by ID, only if it belongs to the given user."""
	cur = conn.execute(
		"SELECT * FROM domains WHERE id = ? AND user_id = ?",
		(domain_id, user_id),
	)
	return cur.fetchone()


def update_domain_status(conn: sqlite3.Connection, domain_id: str, status: str) -> bool:
	"""Set the domain status. Last write wins."""
	with transaction(conn):
		cur = conn.execute(
			"UPDATE domains SET status = ?, updated_at = ? WHERE id = ?",
			(status, utcnow(), domain_id),
		)
		return cur.rowcount > 0
