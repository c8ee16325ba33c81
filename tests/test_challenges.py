#!/usr/bin/env python3
#
# tests/test_challenges.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

from datetime import timedelta

from acmedesk.db.sqlite_challenges import get_active_challenge
from acmedesk.db.sqlite_runtime import open_db
from acmedesk.services.challenges import ChallengePublisher
from acmedesk.tasks.maintenance import sqlite_maintenance, sweep_expired_challenges
from acmedesk.utils.time import utcnow


async def test_published_challenge_is_immediately_servable(db_path):
	publisher = ChallengePublisher(db_path)

	await publisher.publish("tok-1", "tok-1.thumb", "example.com", 300)

	assert await publisher.lookup("tok-1") == "tok-1.thumb"
	assert await publisher.lookup("unknown") is None


async def test_expired_challenge_reads_as_absent(db_path):
	publisher = ChallengePublisher(db_path)

	await publisher.publish("tok-1", "tok-1.thumb", "example.com", 300)

	with open_db(db_path) as conn:
		assert get_active_challenge(conn, "tok-1", utcnow() + timedelta(seconds=299)) is not None
		assert get_active_challenge(conn, "tok-1", utcnow() + timedelta(seconds=301)) is None


async def test_already_expired_publish_is_never_served(db_path):
	publisher = ChallengePublisher(db_path)

	await publisher.publish("tok-old", "content", "example.com", -1)

	assert await publisher.lookup("tok-old") is None


async def test_republish_replaces_content(db_path):
	publisher = ChallengePublisher(db_path)

	await publisher.publish("tok-1", "first", "example.com", 300)
	await publisher.publish("tok-1", "second", "example.com", 300)

	assert await publisher.lookup("tok-1") == "second"


async def test_withdraw_removes_challenge(db_path):
	publisher = ChallengePublisher(db_path)
	await publisher.publish("tok-1", "content", "example.com", 300)

	assert await publisher.withdraw("tok-1") is True
	assert await publisher.lookup("tok-1") is None
	assert await publisher.withdraw("tok-1") is False


async def test_sweep_removes_only_expired_rows(db_path, rows):
	publisher = ChallengePublisher(db_path)
	await publisher.publish("tok-old", "old", "example.com", -5)
	await publisher.publish("tok-new", "new", "example.com", 300)

	removed = await sweep_expired_challenges(db_path)

	assert removed == 1
	assert [r["token"] for r in rows("SELECT token FROM acme_http_challenges")] == ["tok-new"]


async def test_sweep_and_maintenance_tolerate_missing_database(tmp_path):
	missing = tmp_path / "missing.db"

	assert await sweep_expired_challenges(missing) == 0
	await sqlite_maintenance(missing)
	assert not missing.exists()


async def test_sqlite_maintenance_runs(db_path):
	await sqlite_maintenance(db_path)
