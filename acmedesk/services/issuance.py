#!/usr/bin/env python3
#
# acmedesk/services/issuance.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""
Certificate issuance orchestration.

One ``issue()`` call drives a complete ACME order for a domain:

  1. account    - load (or lazily register) the singleton account key
  2. order      - create an order for the single identifier
  3. authz      - fetch the order's authorizations
  4. challenges - fulfil every HTTP-01 challenge concurrently and poll
                  until each one is valid, invalid or out of attempts
  5. finalize   - require the order to be ``ready``, submit a fresh CSR,
                  download the certificate
  6. commit     - write one ``issued`` attempt, then mark the domain active

Any failure is caught once at the top, recorded as an ``issuance_error``
attempt and returned as a failure result. Nothing is retried here; callers
re-run ``issue()`` from scratch.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from ..acme import crypto
from ..acme.client import make_client_factory
from ..acme.errors import (
	AcmeIssuanceError,
	AcmePreconditionError,
	ChallengeInvalidError,
	ChallengeTimeoutError,
)
from ..acme.protocol import (
	CHALLENGE_TYPE_HTTP01,
	AcmeAuthorization,
	AcmeClientFactory,
	AcmeProtocolClient,
)
from ..models.acme import IssuanceResult
from ..utils.config import Config
from ..utils.time import utcnow
from ..utils.vault import codec_for
from .account_keys import AccountKeyStore
from .certificates import CertificateRecordStore
from .challenges import ChallengePublisher

_log = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class _Attempt:
	"""What is known about the order so far, for the failure record."""
	fqdn: str
	user_id: str
	domain_id: str
	order_url: Optional[str] = None


class IssuanceOrchestrator:
	def __init__(
		self,
		*,
		directory_url: str,
		account_keys: AccountKeyStore,
		challenges: ChallengePublisher,
		certificates: CertificateRecordStore,
		client_factory: AcmeClientFactory,
		poll_interval: float = 3.0,
		max_attempts: int = 20,
		challenge_ttl: float = 300,
		validity_days: int = 90,
		sleep: SleepFunc = asyncio.sleep,
	) -> None:
		self.directory_url = directory_url
		self.account_keys = account_keys
		self.challenges = challenges
		self.certificates = certificates
		self.client_factory = client_factory
		self.poll_interval = poll_interval
		self.max_attempts = max_attempts
		self.challenge_ttl = challenge_ttl
		self.validity_days = validity_days
		self._sleep = sleep

	# ── Entry point ───────────────────────────────────────────────────────

	async def issue(self, fqdn: str, user_id: str, domain_id: str) -> IssuanceResult:
		"""Run one issuance attempt. Never raises for issuance failures."""
		attempt = _Attempt(fqdn=fqdn, user_id=user_id, domain_id=domain_id)
		_log.info("ISSUANCE_START fqdn=%s domain_id=%s user_id=%s", fqdn, domain_id, user_id)
		try:
			certificate_id = await self._run(attempt)
		except Exception as exc:
			return await self._fail(attempt, exc)

		_log.info("ISSUANCE_OK fqdn=%s domain_id=%s certificate_id=%s", fqdn, domain_id, certificate_id)
		return IssuanceResult(
			success=True,
			message="Certificate issued successfully",
			certificate_id=certificate_id,
		)

	async def _fail(self, attempt: _Attempt, exc: Exception) -> IssuanceResult:
		error = str(exc) or type(exc).__name__
		if isinstance(exc, AcmeIssuanceError):
			_log.warning(
				"ISSUANCE_FAILED fqdn=%s domain_id=%s cause=%s error=%s",
				attempt.fqdn,
				attempt.domain_id,
				type(exc).__name__,
				error,
			)
		else:
			_log.exception("ISSUANCE_FAILED fqdn=%s domain_id=%s unexpected error", attempt.fqdn, attempt.domain_id)

		try:
			await self.certificates.record_failure(
				domain_id=attempt.domain_id,
				user_id=attempt.user_id,
				common_name=attempt.fqdn,
				error=error,
				acme_order_url=attempt.order_url,
				acme_challenge_type=CHALLENGE_TYPE_HTTP01,
			)
		except Exception:
			# The caller still gets a determinate failure result
			_log.exception("ISSUANCE_RECORD_FAILED fqdn=%s domain_id=%s", attempt.fqdn, attempt.domain_id)

		return IssuanceResult(
			success=False,
			message=f"Failed to issue certificate: {error}",
			error=error,
		)

	# ── Phases ────────────────────────────────────────────────────────────

	async def _run(self, attempt: _Attempt) -> str:
		account = await self.account_keys.get_or_create_account_key()
		account_key = crypto.load_private_key(account.private_key_pem)

		async with self.client_factory(self.directory_url, account_key, account.account_url) as client:
			order = await client.create_order([attempt.fqdn])
			attempt.order_url = order.url
			_log.info("ACME_ORDER_CREATED fqdn=%s order=%s", attempt.fqdn, order.url)

			authorizations = await client.get_authorizations(order)
			if not authorizations:
				raise AcmePreconditionError("No authorizations found for the order.")

			# Every task reaches a terminal state before the first failure is raised
			results = await asyncio.gather(
				*(self._fulfil_authorization(client, authz) for authz in authorizations),
				return_exceptions=True,
			)
			for result in results:
				if isinstance(result, BaseException):
					raise result

			order = await client.get_order(order)
			if order.status != "ready":
				raise AcmePreconditionError(
					f"Order not ready for finalization. Current status: {order.status}"
				)

			certificate_key, csr_pem = await client.create_csr(attempt.fqdn)
			order = await client.finalize_order(order, csr_pem)
			certificate_pem = await client.get_certificate(order)

		return await self._commit(attempt, certificate_pem, certificate_key)

	async def _fulfil_authorization(self, client: AcmeProtocolClient, authz: AcmeAuthorization) -> None:
		fqdn = authz.identifier
		if authz.status == "valid":
			# CA reused an authorization validated by an earlier order
			_log.info("CHALLENGE_REUSED fqdn=%s authz=%s", fqdn, authz.url)
			return

		challenge = authz.find_challenge(CHALLENGE_TYPE_HTTP01)
		if challenge is None:
			raise AcmePreconditionError(f"No HTTP-01 challenge found for {fqdn}")

		content = await client.get_challenge_key_authorization(challenge)
		await self.challenges.publish(challenge.token, content, fqdn, self.challenge_ttl)
		try:
			await client.verify_challenge(authz, challenge)
			await client.complete_challenge(challenge)
			await self._poll_challenge(client, fqdn, challenge.url, challenge.status)
		finally:
			try:
				await self.challenges.withdraw(challenge.token)
			except sqlite3.Error as exc:
				# Expired rows are ignored on read and swept later
				_log.warning("CHALLENGE_WITHDRAW_FAILED token=%s error=%s", challenge.token, exc)

	async def _poll_challenge(
		self,
		client: AcmeProtocolClient,
		fqdn: str,
		challenge_url: str,
		last_status: str,
	) -> None:
		"""Wait for the CA's verdict: valid returns, invalid and timeout raise."""
		for attempt in range(1, self.max_attempts + 1):
			await self._sleep(self.poll_interval)
			details = await client.get_challenge_details(challenge_url)
			last_status = details.status
			_log.debug("CHALLENGE_POLL fqdn=%s attempt=%d status=%s", fqdn, attempt, last_status)

			if last_status == "valid":
				_log.info("CHALLENGE_VALID fqdn=%s attempts=%d", fqdn, attempt)
				return
			if last_status == "invalid":
				_log.warning("CHALLENGE_INVALID fqdn=%s detail=%s", fqdn, details.error_detail)
				raise ChallengeInvalidError(fqdn, details.error_detail)

		_log.warning(
			"CHALLENGE_TIMEOUT fqdn=%s attempts=%d last_status=%s",
			fqdn,
			self.max_attempts,
			last_status,
		)
		raise ChallengeTimeoutError(fqdn, self.max_attempts, last_status)

	async def _commit(self, attempt: _Attempt, certificate_pem: str, certificate_key) -> str:
		validity = crypto.certificate_validity(certificate_pem)
		if validity is not None:
			issued_at, expires_at = validity
		else:
			issued_at = utcnow()
			expires_at = issued_at + timedelta(days=self.validity_days)
			_log.warning(
				"CERT_VALIDITY_ASSUMED fqdn=%s days=%d reason=unparseable_pem",
				attempt.fqdn,
				self.validity_days,
			)

		_, chain_pem = crypto.split_pem_chain(certificate_pem)
		return await self.certificates.record_issued(
			domain_id=attempt.domain_id,
			user_id=attempt.user_id,
			common_name=attempt.fqdn,
			certificate_pem=certificate_pem,
			private_key_pem=crypto.private_key_to_pem(certificate_key),
			chain_pem=chain_pem,
			issued_at=issued_at,
			expires_at=expires_at,
			acme_order_url=attempt.order_url,
			acme_challenge_type=CHALLENGE_TYPE_HTTP01,
		)


def build_orchestrator(
	config: Config,
	client_factory: Optional[AcmeClientFactory] = None,
	*,
	sleep: SleepFunc = asyncio.sleep,
) -> IssuanceOrchestrator:
	"""Wire an orchestrator and its stores from the resolved configuration."""
	codec = codec_for(config.secret_key, encrypt_keys=config.encrypt_key_material)
	client_factory = client_factory or make_client_factory(self_check=config.acme_self_check)
	return IssuanceOrchestrator(
		directory_url=config.acme_directory_url,
		account_keys=AccountKeyStore(
			config.db_path,
			config.acme_directory_url,
			config.acme_contact_email,
			client_factory,
			codec,
		),
		challenges=ChallengePublisher(config.db_path),
		certificates=CertificateRecordStore(config.db_path, codec),
		client_factory=client_factory,
		poll_interval=config.poll_interval_seconds,
		max_attempts=config.poll_max_attempts,
		challenge_ttl=config.challenge_ttl_seconds,
		validity_days=config.cert_validity_days,
		sleep=sleep,
	)
