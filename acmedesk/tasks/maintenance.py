#!/usr/bin/env python3
#
# acmedesk/tasks/maintenance.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Periodic maintenance tasks for database health and cleanup."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from ..db.sqlite_runtime import db_timestamp
from ..utils.time import utcnow

_log = logging.getLogger(__name__)

__all__ = [
	"sqlite_maintenance",
	"sweep_expired_challenges",
]


async def sweep_expired_challenges(db_path: Path) -> int:
	"""Reclaim challenge rows past their ``expires_at``.

	Reads already treat these rows as absent; this only frees storage.
	"""
	if not Path(db_path).exists():
		_log.warning("MAINTENANCE SQLite database not found at %s", db_path)
		return 0

	try:
		async with aiosqlite.connect(db_path) as db:
			cursor = await db.execute(
				"DELETE FROM acme_http_challenges WHERE expires_at <= ?",
				(db_timestamp(utcnow()),),
			)
			await db.commit()
			deleted_count = cursor.rowcount
	except Exception:
		_log.exception("MAINTENANCE challenge sweep failed")
		raise

	if deleted_count > 0:
		_log.info("MAINTENANCE removed %d expired ACME challenges", deleted_count)
	else:
		_log.debug("MAINTENANCE no expired ACME challenges")
	return deleted_count


async def sqlite_maintenance(db_path: Path) -> None:
	"""Periodic SQLite maintenance: WAL checkpoint, analyze, optimize.

	VACUUM is omitted (heavy I/O, run manually if needed).
	"""
	if not Path(db_path).exists():
		_log.warning("MAINTENANCE SQLite database not found at %s", db_path)
		return

	try:
		async with aiosqlite.connect(db_path) as db:
			# TRUNCATE resets the WAL file to 0 bytes
			await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
			await db.execute("ANALYZE")
			await db.execute("PRAGMA optimize")
	except Exception:
		_log.exception("MAINTENANCE SQLite maintenance failed")
		raise
	_log.info("MAINTENANCE SQLite maintenance completed")
