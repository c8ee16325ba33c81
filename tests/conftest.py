#!/usr/bin/env python3
#
# tests/conftest.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""
Shared pytest fixtures.

``make_ca`` builds a scripted in-memory ACME CA whose ``factory`` plugs into
the orchestrator in place of ``HttpAcmeClient``. Challenge polls walk
through ``challenge_statuses`` (the last entry repeats), so scenarios like
pending -> pending -> valid are one line in a test.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from acmedesk.acme import crypto
from acmedesk.acme.errors import AcmeProtocolError
from acmedesk.acme.protocol import AcmeAuthorization, AcmeChallenge, AcmeOrder, ChallengeDetails
from acmedesk.db.sqlite_runtime import open_db
from acmedesk.db.sqlite_schema import init_schema
from acmedesk.services.issuance import build_orchestrator
from acmedesk.utils.config import Config
from acmedesk.utils.rate_limit import limiter
from acmedesk.utils.time import utcnow


# ─── Certificates ─────────────────────────────────────────────────────────────

def make_certificate_pem(common_name: str, *, days: int = 90, not_before: Optional[datetime] = None) -> str:
	"""Self-signed EC certificate, good enough for validity parsing."""
	key = ec.generate_private_key(ec.SECP256R1())
	name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
	start = (not_before or datetime.now(timezone.utc)).replace(microsecond=0)
	cert = (
		x509.CertificateBuilder()
		.subject_name(name)
		.issuer_name(name)
		.public_key(key.public_key())
		.serial_number(x509.random_serial_number())
		.not_valid_before(start)
		.not_valid_after(start + timedelta(days=days))
		.sign(key, hashes.SHA256())
	)
	return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture(scope="session")
def leaf_pem() -> str:
	return make_certificate_pem("example.com", days=90)


@pytest.fixture(scope="session")
def intermediate_pem() -> str:
	return make_certificate_pem("Fake Intermediate R1", days=365)


@pytest.fixture(scope="session")
def chain_pem(leaf_pem, intermediate_pem) -> str:
	return leaf_pem + intermediate_pem


# ─── Config & database ────────────────────────────────────────────────────────

@pytest.fixture()
def cfg(tmp_path: Path) -> Config:
	return Config(
		base_dir=tmp_path,
		data_dir=tmp_path,
		db_path=tmp_path / "acmedesk.db",
		acme_directory_url="https://ca.test/directory",
		acme_contact_email="ops@example.com",
		acme_self_check=False,
		poll_interval_seconds=3.0,
		poll_max_attempts=20,
		encrypt_key_material=False,
		secret_key="test-secret",
	)


@pytest.fixture()
def db_path(cfg: Config) -> Path:
	with open_db(cfg.db_path) as conn:
		init_schema(conn)
	return cfg.db_path


@dataclass
class Seeded:
	user_id: str
	domain_id: str
	fqdn: str
	token: str


def seed_user_domain(db_path: Path, fqdn: str = "example.com", *, session_ttl: timedelta = timedelta(hours=1)) -> Seeded:
	"""Insert a user, a session token and a domain owned by that user."""
	from acmedesk.db.sqlite_auth import hash_token

	user_id = f"user-{uuid.uuid4().hex[:8]}"
	domain_id = f"dom-{uuid.uuid4().hex[:8]}"
	token = uuid.uuid4().hex
	now = utcnow()
	with open_db(db_path) as conn:
		conn.execute(
			"INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
			(user_id, f"{user_id}@example.com", "x", now),
		)
		conn.execute(
			"INSERT INTO user_sessions (id, user_id, token_hash, expires_at, created_at) VALUES (?, ?, ?, ?, ?)",
			(uuid.uuid4().hex, user_id, hash_token(token), now + session_ttl, now),
		)
		conn.execute(
			"INSERT INTO domains (id, user_id, fqdn, status, created_at, updated_at) VALUES (?, ?, ?, 'pending', ?, ?)",
			(domain_id, user_id, fqdn, now, now),
		)
	return Seeded(user_id=user_id, domain_id=domain_id, fqdn=fqdn, token=token)


@pytest.fixture()
def seeded(db_path: Path) -> Seeded:
	return seed_user_domain(db_path)


def fetch_rows(db_path: Path, sql: str, params: tuple = ()) -> list:
	with open_db(db_path) as conn:
		return conn.execute(sql, params).fetchall()


# ─── Key codec ────────────────────────────────────────────────────────────────

class ThreadRecordingCodec:
	"""Plaintext codec that notes which thread each seal/unseal ran on."""

	def __init__(self) -> None:
		self.threads: list[int] = []

	def seal(self, pem: str) -> str:
		self.threads.append(threading.get_ident())
		return pem

	def unseal(self, stored: str) -> str:
		self.threads.append(threading.get_ident())
		return stored


@pytest.fixture()
def recording_codec() -> ThreadRecordingCodec:
	return ThreadRecordingCodec()


# ─── Fake CA ──────────────────────────────────────────────────────────────────

@dataclass
class FakeCA:
	"""Scripted CA state shared by every client session it hands out."""
	certificate_pem: str = ""
	challenge_statuses: list[str] = field(default_factory=lambda: ["valid"])
	challenge_error: Optional[str] = None
	order_status: str = "ready"
	extra_identifiers: list[str] = field(default_factory=list)
	extra_challenge_statuses: list[str] = field(default_factory=lambda: ["valid"])
	offer_http01: bool = True
	no_authorizations: bool = False
	registration_error: Optional[AcmeProtocolError] = None
	on_register: Optional[Callable[[], Awaitable[None]]] = None
	lookup: Optional[Callable[[str], Awaitable[Optional[str]]]] = None
	verify_error: Optional[Exception] = None
	on_verify: Optional[Callable[[], None]] = None

	registrations: int = 0
	bound_account_urls: list[Optional[str]] = field(default_factory=list)
	polls: dict[str, int] = field(default_factory=dict)
	seen_at_verify: dict[str, Optional[str]] = field(default_factory=dict)
	completed: list[str] = field(default_factory=list)
	finalized: bool = False

	def factory(self, directory_url: str, account_key, account_url: Optional[str] = None) -> "FakeAcmeClient":
		self.bound_account_urls.append(account_url)
		return FakeAcmeClient(self, account_key)


class FakeAcmeClient:
	def __init__(self, ca: FakeCA, account_key) -> None:
		self.ca = ca
		self.account_key = account_key

	async def __aenter__(self) -> "FakeAcmeClient":
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		return None

	async def create_account(self, contact_email: str) -> str:
		self.ca.registrations += 1
		# Yield so concurrent callers can interleave
		await asyncio.sleep(0)
		if self.ca.on_register is not None:
			await self.ca.on_register()
		if self.ca.registration_error is not None:
			raise self.ca.registration_error
		return f"https://ca.test/acct/{self.ca.registrations}"

	async def create_order(self, domains: list[str]) -> AcmeOrder:
		identifiers = list(domains) + list(self.ca.extra_identifiers)
		return AcmeOrder(
			url="https://ca.test/order/1",
			status="pending",
			identifiers=identifiers,
			authorizations=[] if self.ca.no_authorizations else [f"https://ca.test/authz/{i}" for i in range(len(identifiers))],
			finalize="https://ca.test/order/1/finalize",
		)

	async def get_authorizations(self, order: AcmeOrder) -> list[AcmeAuthorization]:
		result = []
		for i, (url, identifier) in enumerate(zip(order.authorizations, order.identifiers)):
			challenges = [AcmeChallenge(type="dns-01", url=f"https://ca.test/chall/{i}/dns", token=f"dns-token-{i}")]
			if self.ca.offer_http01:
				challenges.append(AcmeChallenge(type="http-01", url=f"https://ca.test/chall/{i}", token=f"token-{i}"))
			result.append(AcmeAuthorization(url=url, identifier=identifier, status="pending", challenges=challenges))
		return result

	async def get_challenge_key_authorization(self, challenge: AcmeChallenge) -> str:
		return crypto.key_authorization(challenge.token, self.account_key)

	async def verify_challenge(self, authz: AcmeAuthorization, challenge: AcmeChallenge) -> None:
		if self.ca.lookup is not None:
			self.ca.seen_at_verify[challenge.token] = await self.ca.lookup(challenge.token)
		if self.ca.on_verify is not None:
			self.ca.on_verify()
		if self.ca.verify_error is not None:
			raise self.ca.verify_error

	async def complete_challenge(self, challenge: AcmeChallenge) -> None:
		self.ca.completed.append(challenge.url)

	async def get_challenge_details(self, challenge_url: str) -> ChallengeDetails:
		count = self.ca.polls.get(challenge_url, 0)
		self.ca.polls[challenge_url] = count + 1
		script = self.ca.challenge_statuses if challenge_url.endswith("/0") else self.ca.extra_challenge_statuses
		status = script[min(count, len(script) - 1)]
		error = None
		if status == "invalid":
			error = {"type": "urn:ietf:params:acme:error:dns", "detail": self.ca.challenge_error}
		return ChallengeDetails(status=status, error=error)

	async def get_order(self, order: AcmeOrder) -> AcmeOrder:
		return replace(order, status=self.ca.order_status)

	async def create_csr(self, common_name: str):
		return crypto.create_csr(common_name)

	async def finalize_order(self, order: AcmeOrder, csr_pem: str) -> AcmeOrder:
		self.ca.finalized = True
		return replace(order, status="valid", certificate="https://ca.test/cert/1")

	async def get_certificate(self, order: AcmeOrder) -> str:
		return self.ca.certificate_pem


@pytest.fixture()
def make_ca(chain_pem):
	def _make(**kwargs) -> FakeCA:
		kwargs.setdefault("certificate_pem", chain_pem)
		return FakeCA(**kwargs)
	return _make


# ─── Orchestrator ─────────────────────────────────────────────────────────────

@pytest.fixture()
def sleeps() -> list[float]:
	return []


@pytest.fixture()
def make_orchestrator(cfg: Config, db_path: Path, sleeps: list[float]):
	"""Build an orchestrator over the fake CA with a recording no-op sleep."""

	async def _sleep(seconds: float) -> None:
		sleeps.append(seconds)

	def _make(ca: FakeCA, config: Optional[Config] = None):
		orchestrator = build_orchestrator(config or cfg, ca.factory, sleep=_sleep)
		ca.lookup = orchestrator.challenges.lookup
		return orchestrator

	return _make


@pytest.fixture(autouse=True)
def _reset_rate_limits():
	limiter.reset()
	yield


@pytest.fixture()
def seed(db_path: Path):
	"""Seed another user/session/domain: ``seed(fqdn, session_ttl=...)``."""
	def _seed(fqdn: str = "example.com", **kwargs) -> Seeded:
		return seed_user_domain(db_path, fqdn, **kwargs)
	return _seed


@pytest.fixture()
def rows(db_path: Path):
	"""Run a read query against the test database."""
	def _rows(sql: str, params: tuple = ()) -> list:
		return fetch_rows(db_path, sql, params)
	return _rows
