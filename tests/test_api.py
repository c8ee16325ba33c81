#!/usr/bin/env python3
#
# tests/test_api.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""HTTP surface: public challenge route, issuance endpoint, health."""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from acmedesk.db.sqlite_challenges import insert_challenge
from acmedesk.db import sqlite_runtime
from acmedesk.db.sqlite_runtime import open_db
from acmedesk.main import create_app
from acmedesk.utils.time import utc_in


@pytest.fixture()
def ca(make_ca):
	return make_ca(challenge_statuses=["pending", "valid"])


@pytest.fixture()
def app(cfg, db_path, ca):
	return create_app(replace(cfg, poll_interval_seconds=0.0), client_factory=ca.factory)


@pytest.fixture()
def client(app):
	with TestClient(app) as c:
		yield c


def _auth(token: str) -> dict:
	return {"Authorization": f"Bearer {token}"}


# ─── /.well-known/acme-challenge ──────────────────────────────────────────────

def test_challenge_hit_returns_plain_text(client, db_path):
	with open_db(db_path) as conn:
		insert_challenge(conn, "abc_DEF-123", "abc_DEF-123.thumbprint", "example.com", utc_in(seconds=300))

	resp = client.get("/.well-known/acme-challenge/abc_DEF-123")

	assert resp.status_code == 200
	assert resp.text == "abc_DEF-123.thumbprint"
	assert resp.headers["content-type"].startswith("text/plain")


def test_challenge_miss_is_404(client):
	resp = client.get("/.well-known/acme-challenge/unknown")
	assert resp.status_code == 404


def test_expired_challenge_is_404(client, db_path):
	with open_db(db_path) as conn:
		insert_challenge(conn, "stale", "stale.thumbprint", "example.com", utc_in(seconds=-1))

	assert client.get("/.well-known/acme-challenge/stale").status_code == 404


def test_malformed_token_is_404(client):
	assert client.get("/.well-known/acme-challenge/bad.token").status_code == 404


def test_challenge_storage_error_is_500(client, app, monkeypatch):
	async def _broken(token):
		raise sqlite3.OperationalError("disk I/O error")

	monkeypatch.setattr(app.state.orchestrator.challenges, "lookup", _broken)

	resp = client.get("/.well-known/acme-challenge/abc")

	assert resp.status_code == 500
	assert "disk I/O error" not in resp.text


# ─── POST /api/domains/{id}/issue-certificate ─────────────────────────────────

def test_issue_requires_bearer_token(client, seeded):
	resp = client.post(f"/api/domains/{seeded.domain_id}/issue-certificate")
	assert resp.status_code == 401


def test_issue_rejects_unknown_token(client, seeded):
	resp = client.post(f"/api/domains/{seeded.domain_id}/issue-certificate", headers=_auth("nope"))
	assert resp.status_code == 401


def test_issue_rejects_expired_session(client, seed):
	stale = seed("stale.example.com", session_ttl=timedelta(seconds=-1))
	resp = client.post(f"/api/domains/{stale.domain_id}/issue-certificate", headers=_auth(stale.token))
	assert resp.status_code == 401


def test_issue_hides_other_users_domains(client, seeded, seed):
	other = seed("other.example.com")
	resp = client.post(f"/api/domains/{other.domain_id}/issue-certificate", headers=_auth(seeded.token))
	assert resp.status_code == 404


def test_issue_success_returns_201(client, seeded, rows):
	resp = client.post(f"/api/domains/{seeded.domain_id}/issue-certificate", headers=_auth(seeded.token))

	assert resp.status_code == 201
	body = resp.json()
	assert body["status"] == "ok"
	assert body["message"] == "Certificate issued successfully"
	cert = rows("SELECT * FROM certificates WHERE id = ?", (body["certificateId"],))[0]
	assert cert["common_name"] == "example.com"
	assert cert["user_id"] == seeded.user_id
	assert cert["status"] == "issued"


def test_issue_holds_no_connection_during_the_order(client, ca, seeded):
	open_during_order: list[int] = []
	ca.on_verify = lambda: open_during_order.append(len(sqlite_runtime._OPEN_CONNECTIONS))

	resp = client.post(f"/api/domains/{seeded.domain_id}/issue-certificate", headers=_auth(seeded.token))

	assert resp.status_code == 201
	assert open_during_order == [0]


def test_issue_failure_returns_500_with_details(client, ca, seeded, rows):
	ca.challenge_statuses = ["invalid"]
	ca.challenge_error = "DNS problem"

	resp = client.post(f"/api/domains/{seeded.domain_id}/issue-certificate", headers=_auth(seeded.token))

	assert resp.status_code == 500
	body = resp.json()
	assert "DNS problem" in body["error"]
	assert body["details"] == "Challenge failed for example.com: DNS problem"
	assert rows("SELECT status FROM domains WHERE id = ?", (seeded.domain_id,))[0]["status"] == "issuance_failed"


def test_issue_is_rate_limited(client, seeded):
	url = "/api/domains/does-not-exist/issue-certificate"
	codes = [client.post(url, headers=_auth(seeded.token)).status_code for _ in range(11)]

	assert codes[:10] == [404] * 10
	assert codes[10] == 429


def test_challenge_route_is_not_rate_limited(client):
	codes = {client.get("/.well-known/acme-challenge/unknown").status_code for _ in range(30)}
	assert codes == {404}


# ─── Misc ─────────────────────────────────────────────────────────────────────

def test_health_lists_maintenance_jobs(client):
	resp = client.get("/api/health")

	assert resp.status_code == 200
	body = resp.json()
	assert body["status"] == "ok"
	assert {job["name"] for job in body["jobs"]} == {"challenge-sweep", "sqlite-maintenance"}


def test_request_id_is_echoed(client):
	resp = client.get("/api/health", headers={"X-Request-ID": "req-42"})
	assert resp.headers["X-Request-ID"] == "req-42"
