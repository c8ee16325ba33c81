#!/usr/bin/env python3
#
# acmedesk/db/sqlite_runtime.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite runtime helpers: adapters, connections, and transactions."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

_log = logging.getLogger(__name__)

T = TypeVar("T")


def _adapt_datetime(value: datetime) -> str:
	if value.tzinfo is None:
		raise ValueError("Naive datetime not allowed in SQLite")
	# Fixed-width microseconds keep stored values lexicographically ordered
	return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _convert_datetime(value: bytes) -> datetime:
	s = value.decode("utf-8")
	if s.endswith("Z"):
		s = s[:-1] + "+00:00"
	try:
		dt = datetime.fromisoformat(s)
		if dt.tzinfo is None:
			dt = dt.replace(tzinfo=timezone.utc)
		return dt.astimezone(timezone.utc)
	except ValueError:
		_log.error(
			"Corrupt timestamp in database: %r - returning epoch",
			value.decode("utf-8", errors="replace"),
		)
		return datetime(1970, 1, 1, tzinfo=timezone.utc)


# NOTE: sqlite3 adapter/converter registration is process-global.
sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("timestamp", _convert_datetime)


# ---------------------------------------------------------------------------
# Connection Registry
# ---------------------------------------------------------------------------

_OPEN_CONNECTIONS: set[sqlite3.Connection] = set()
_CONNECTIONS_LOCK = threading.Lock()


def connect(db_path: Path) -> sqlite3.Connection:
	"""Create a SQLite connection configured for this application.

	Multi-worker safe: retries WAL mode activation if database is temporarily locked.
	"""
	db_path.parent.mkdir(parents=True, exist_ok=True)
	conn = sqlite3.connect(
		str(db_path),
		detect_types=sqlite3.PARSE_DECLTYPES,
		check_same_thread=False,
		timeout=30.0,
		isolation_level=None,  # transactions are explicit, see transaction()
	)
	conn.row_factory = sqlite3.Row

	max_retries = 5
	for attempt in range(max_retries):
		try:
			current_mode = conn.execute("PRAGMA journal_mode").fetchone()[0].upper()
			if current_mode != "WAL":
				conn.execute("PRAGMA journal_mode=WAL")
				_log.debug("Enabled WAL mode for database")
			break
		except sqlite3.OperationalError as e:
			if "locked" in str(e).lower() and attempt < max_retries - 1:
				wait = 0.1 * (2 ** attempt)
				_log.debug(
					"Database locked during WAL activation (attempt %d/%d), retrying in %.1fs",
					attempt + 1,
					max_retries,
					wait,
				)
				time.sleep(wait)
			else:
				conn.close()
				raise

	conn.execute("PRAGMA foreign_keys=ON")

	with _CONNECTIONS_LOCK:
		_OPEN_CONNECTIONS.add(conn)

	return conn


def close_connection(conn: sqlite3.Connection) -> None:
	"""Close and untrack a SQLite connection."""
	with _CONNECTIONS_LOCK:
		_OPEN_CONNECTIONS.discard(conn)
	conn.close()


def close_all_connections() -> int:
	"""Close all tracked connections for graceful shutdown."""
	with _CONNECTIONS_LOCK:
		connections = list(_OPEN_CONNECTIONS)
		_OPEN_CONNECTIONS.clear()

	success_count = 0
	for conn in connections:
		try:
			conn.close()
			success_count += 1
		except sqlite3.Error as e:
			_log.warning("Failed to close SQLite connection: %s", e)

	return success_count


def checkpoint_wal(db_path: Path, mode: str = "TRUNCATE") -> dict[str, int | str]:
	"""Run a WAL checkpoint using a dedicated short-lived connection."""
	mode_upper = mode.strip().upper()
	if mode_upper not in {"PASSIVE", "FULL", "RESTART", "TRUNCATE"}:
		mode_upper = "TRUNCATE"

	result: dict[str, int | str] = {
		"mode": mode_upper,
		"busy": -1,
		"log_frames": -1,
		"checkpointed_frames": -1,
	}
	conn: sqlite3.Connection | None = None
	try:
		conn = sqlite3.connect(str(db_path), timeout=30.0, check_same_thread=False)
		conn.execute("PRAGMA busy_timeout=30000")
		row = conn.execute(f"PRAGMA wal_checkpoint({mode_upper})").fetchone()
		if row:
			result.update(busy=int(row[0]), log_frames=int(row[1]), checkpointed_frames=int(row[2]))
	except sqlite3.Error as e:
		_log.warning("WAL checkpoint failed (%s): %s", mode_upper, e)
	finally:
		if conn is not None:
			conn.close()
	return result


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = False):
	"""Transaction context manager that commits or rolls back on error.

	If already inside a transaction, this is a no-op (the outer transaction
	controls commit/rollback).
	"""
	started_tx = False
	if not conn.in_transaction:
		conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
		started_tx = True
	try:
		yield
		if started_tx:
			conn.execute("COMMIT")
	except Exception:
		if started_tx and conn.in_transaction:
			conn.execute("ROLLBACK")
		raise


@contextmanager
def open_db(db_path: Path):
	"""Open a tracked connection for the duration of a block."""
	conn = connect(db_path)
	try:
		yield conn
	finally:
		close_connection(conn)


async def run_db(db_path: Path, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
	"""Run ``func(conn, *args, **kwargs)`` on a fresh connection in a worker thread.

	Keeps blocking SQLite I/O off the event loop for async callers.
	"""
	def _call() -> T:
		with open_db(db_path) as conn:
			return func(conn, *args, **kwargs)

	return await asyncio.to_thread(_call)


def db_timestamp(value: datetime) -> str:
	"""Render an aware datetime exactly as the adapter stores it."""
	return _adapt_datetime(value)
