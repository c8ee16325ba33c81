#!/usr/bin/env python3
#
# acmedesk/db/sqlite_schema.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""SQLite schema initialization."""

from __future__ import annotations

import logging
import sqlite3

from .sqlite_runtime import transaction

_log = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Schema Initialization
# ─────────────────────────────────────────────────────────────────────────────


def init_schema(conn: sqlite3.Connection) -> None:
	"""Create the required database schema.

	``users``, ``user_sessions`` and ``domains`` belong to the account and
	domain management layer; they are created here so a fresh database is
	usable, but this service only reads them (and writes ``domains.status``).
	"""
	with transaction(conn):
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS users (
				id TEXT PRIMARY KEY,
				email TEXT NOT NULL UNIQUE,
				password_hash TEXT NOT NULL,
				created_at timestamp NOT NULL
			)
			"""
		)

		# Session tokens are stored as SHA-256 hex digests
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS user_sessions (
				id TEXT PRIMARY KEY,
				user_id TEXT NOT NULL,
				token_hash TEXT NOT NULL UNIQUE,
				expires_at timestamp NOT NULL,
				created_at timestamp NOT NULL,
				FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_user_sessions_expires_at ON user_sessions(expires_at)")

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS domains (
				id TEXT PRIMARY KEY,
				user_id TEXT NOT NULL,
				fqdn TEXT NOT NULL,
				status TEXT NOT NULL DEFAULT 'pending',
				created_at timestamp NOT NULL,
				updated_at timestamp NOT NULL,
				UNIQUE(user_id, fqdn),
				FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
			)
			"""
		)

		# Singleton ACME account (fixed id)
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS acme_accounts (
				id TEXT PRIMARY KEY,
				email TEXT NOT NULL,
				private_key_pem TEXT NOT NULL,
				account_url TEXT,
				created_at timestamp NOT NULL
			)
			"""
		)

		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS acme_http_challenges (
				token TEXT PRIMARY KEY,
				content TEXT NOT NULL,
				domain_fqdn TEXT NOT NULL,
				expires_at timestamp NOT NULL,
				created_at timestamp NOT NULL
			)
			"""
		)
		conn.execute(
			"CREATE INDEX IF NOT EXISTS idx_acme_http_challenges_expires_at ON acme_http_challenges(expires_at)"
		)

		# Append-only: one row per terminal issuance outcome.
		# No FK on domain_id so attempt history survives domain deletion.
		conn.execute(
			"""
			CREATE TABLE IF NOT EXISTS certificates (
				id TEXT PRIMARY KEY,
				domain_id TEXT NOT NULL,
				user_id TEXT NOT NULL,
				common_name TEXT NOT NULL,
				certificate_pem TEXT,
				private_key_pem TEXT,
				chain_pem TEXT,
				issued_at timestamp NOT NULL,
				expires_at timestamp NOT NULL,
				status TEXT NOT NULL CHECK (status IN ('issued', 'issuance_error')),
				acme_order_url TEXT,
				acme_challenge_type TEXT,
				created_at timestamp NOT NULL
			)
			"""
		)
		conn.execute("CREATE INDEX IF NOT EXISTS idx_certificates_domain_id ON certificates(domain_id)")
	_log.debug("Database schema ready")
