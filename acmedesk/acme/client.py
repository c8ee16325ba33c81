#!/usr/bin/env python3
#
# acmedesk/acme/client.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Lightweight async ACME v2 (RFC 8555) client."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from . import crypto
from .errors import AcmePreconditionError, AcmeProtocolError
from .protocol import (
	AcmeAuthorization,
	AcmeChallenge,
	AcmeOrder,
	ChallengeDetails,
)

_log = logging.getLogger(__name__)

_BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
_USER_AGENT = "acmedesk/0.1"
_SELF_CHECK_ATTEMPTS = 3


def _problem(resp: httpx.Response) -> dict[str, Any]:
	"""Parse an RFC 7807 problem document, falling back to the raw body."""
	try:
		body = resp.json()
		if isinstance(body, dict):
			return body
	except ValueError:
		pass
	return {"detail": resp.text.strip() or f"HTTP {resp.status_code}"}


def _parse_order(url: str, body: dict[str, Any]) -> AcmeOrder:
	return AcmeOrder(
		url=url,
		status=body.get("status", "unknown"),
		identifiers=[i.get("value", "") for i in body.get("identifiers", [])],
		authorizations=list(body.get("authorizations", [])),
		finalize=body.get("finalize"),
		certificate=body.get("certificate"),
	)


def _parse_authorization(url: str, body: dict[str, Any]) -> AcmeAuthorization:
	challenges = [
		AcmeChallenge(
			type=c.get("type", ""),
			url=c.get("url", ""),
			token=c.get("token", ""),
			status=c.get("status", "pending"),
		)
		for c in body.get("challenges", [])
	]
	return AcmeAuthorization(
		url=url,
		identifier=body.get("identifier", {}).get("value", ""),
		status=body.get("status", "unknown"),
		challenges=challenges,
	)


class HttpAcmeClient:
	"""ACME client bound to one account key.

	Usage::

		async with HttpAcmeClient(directory_url, key, account_url) as client:
			order = await client.create_order(["example.com"])
	"""

	def __init__(
		self,
		directory_url: str,
		account_key: PrivateKeyTypes,
		account_url: Optional[str] = None,
		*,
		self_check: bool = True,
		self_check_delay: float = 1.0,
		timeout: float = 30.0,
		order_poll_interval: float = 2.0,
		order_poll_attempts: int = 30,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.directory_url = directory_url
		self.account_key = account_key
		self.account_url = account_url
		self.self_check = self_check
		self.self_check_delay = self_check_delay
		self.timeout = timeout
		self.order_poll_interval = order_poll_interval
		self.order_poll_attempts = order_poll_attempts
		self._transport = transport
		self.directory: dict[str, Any] = {}
		self.nonce: Optional[str] = None
		self.http_client: Optional[httpx.AsyncClient] = None

	async def __aenter__(self) -> "HttpAcmeClient":
		self.http_client = httpx.AsyncClient(
			timeout=self.timeout,
			headers={"User-Agent": _USER_AGENT},
			transport=self._transport,
		)
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		if self.http_client:
			await self.http_client.aclose()
			self.http_client = None

	# ── Directory & nonce ─────────────────────────────────────────────────

	def _http(self) -> httpx.AsyncClient:
		if not self.http_client:
			raise RuntimeError("HTTP client not initialized")
		return self.http_client

	async def _endpoint(self, name: str) -> str:
		if not self.directory:
			resp = await self._http().get(self.directory_url)
			if resp.status_code != 200:
				raise AcmeProtocolError(
					"Failed to fetch ACME directory",
					status_code=resp.status_code,
					problem=_problem(resp),
				)
			self.directory = resp.json()
		try:
			return self.directory[name]
		except KeyError:
			raise AcmePreconditionError(f"ACME directory has no {name!r} endpoint") from None

	async def _get_nonce(self) -> str:
		if self.nonce:
			nonce, self.nonce = self.nonce, None
			return nonce

		url = await self._endpoint("newNonce")
		resp = await self._http().head(url)
		if "Replay-Nonce" not in resp.headers:
			# Some CAs only answer GET on newNonce
			resp = await self._http().get(url)
		if "Replay-Nonce" not in resp.headers:
			raise AcmeProtocolError("Failed to obtain ACME nonce", status_code=resp.status_code)
		return resp.headers["Replay-Nonce"]

	# ── Signed requests ───────────────────────────────────────────────────

	async def _post_jws(self, url: str, payload: Optional[dict], accept: Optional[str]) -> httpx.Response:
		nonce = await self._get_nonce()
		protected: dict[str, Any] = {
			"alg": crypto.jws_algorithm(self.account_key),
			"nonce": nonce,
			"url": url,
		}
		if self.account_url:
			protected["kid"] = self.account_url
		else:
			protected["jwk"] = crypto.public_jwk(self.account_key)

		protected_b64 = crypto.b64url(json.dumps(protected).encode("utf-8"))
		payload_b64 = "" if payload is None else crypto.b64url(json.dumps(payload).encode("utf-8"))
		signature = crypto.sign(self.account_key, f"{protected_b64}.{payload_b64}".encode("ascii"))

		headers = {"Content-Type": "application/jose+json"}
		if accept:
			headers["Accept"] = accept
		resp = await self._http().post(
			url,
			json={
				"protected": protected_b64,
				"payload": payload_b64,
				"signature": crypto.b64url(signature),
			},
			headers=headers,
		)

		if "Replay-Nonce" in resp.headers:
			self.nonce = resp.headers["Replay-Nonce"]
		return resp

	async def _signed_request(
		self,
		url: str,
		payload: Optional[dict],
		*,
		accept: Optional[str] = None,
	) -> httpx.Response:
		"""POST a JWS to ``url``; ``payload=None`` sends POST-as-GET."""
		resp = await self._post_jws(url, payload, accept)
		if resp.status_code == 400 and _problem(resp).get("type") == _BAD_NONCE:
			_log.debug("ACME badNonce on %s, retrying with fresh nonce", url)
			resp = await self._post_jws(url, payload, accept)
		return resp

	@staticmethod
	def _check(resp: httpx.Response, action: str, ok: tuple[int, ...] = (200,)) -> None:
		if resp.status_code not in ok:
			raise AcmeProtocolError(
				f"Failed to {action}",
				status_code=resp.status_code,
				problem=_problem(resp),
			)

	# ── Account ───────────────────────────────────────────────────────────

	async def create_account(self, contact_email: str) -> str:
		"""Register a new account (or fetch the existing one for this key)."""
		payload = {
			"termsOfServiceAgreed": True,
			"contact": [f"mailto:{contact_email}"],
		}
		resp = await self._signed_request(await self._endpoint("newAccount"), payload)
		self._check(resp, "register account", ok=(200, 201))

		account_url = resp.headers.get("Location")
		if not account_url:
			raise AcmePreconditionError("No account URL in newAccount response")
		self.account_url = account_url
		return account_url

	# ── Orders & authorizations ───────────────────────────────────────────

	async def create_order(self, domains: list[str]) -> AcmeOrder:
		payload = {"identifiers": [{"type": "dns", "value": d} for d in domains]}
		resp = await self._signed_request(await self._endpoint("newOrder"), payload)
		self._check(resp, "create order", ok=(201,))

		order_url = resp.headers.get("Location")
		if not order_url:
			raise AcmePreconditionError("No order URL in newOrder response")
		return _parse_order(order_url, resp.json())

	async def get_order(self, order: AcmeOrder) -> AcmeOrder:
		resp = await self._signed_request(order.url, None)
		self._check(resp, "fetch order")
		return _parse_order(order.url, resp.json())

	async def get_authorizations(self, order: AcmeOrder) -> list[AcmeAuthorization]:
		authorizations = []
		for auth_url in order.authorizations:
			resp = await self._signed_request(auth_url, None)
			self._check(resp, "get authorization")
			authorizations.append(_parse_authorization(auth_url, resp.json()))
		return authorizations

	# ── Challenges ────────────────────────────────────────────────────────

	async def get_challenge_key_authorization(self, challenge: AcmeChallenge) -> str:
		return crypto.key_authorization(challenge.token, self.account_key)

	async def verify_challenge(self, authz: AcmeAuthorization, challenge: AcmeChallenge) -> None:
		"""Check that our HTTP-01 response is reachable before asking the CA.

		Skipped when ``self_check`` is off (e.g. split-horizon DNS, or the
		public name does not resolve from inside the deployment).
		"""
		if not self.self_check:
			return

		expected = await self.get_challenge_key_authorization(challenge)
		url = f"http://{authz.identifier}/.well-known/acme-challenge/{challenge.token}"
		last_error = "no response"
		for attempt in range(1, _SELF_CHECK_ATTEMPTS + 1):
			try:
				resp = await self._http().get(url, follow_redirects=True, timeout=10.0)
				if resp.status_code != 200:
					last_error = f"HTTP {resp.status_code}"
				elif resp.text.strip() != expected:
					last_error = "unexpected content"
				else:
					_log.debug("HTTP-01 self-check passed for %s", authz.identifier)
					return
			except httpx.HTTPError as exc:
				last_error = str(exc) or type(exc).__name__
			_log.debug("HTTP-01 self-check attempt %d failed for %s: %s", attempt, authz.identifier, last_error)
			if attempt < _SELF_CHECK_ATTEMPTS:
				await asyncio.sleep(self.self_check_delay * attempt)

		raise AcmePreconditionError(
			f"HTTP-01 self-check failed for {authz.identifier} after {_SELF_CHECK_ATTEMPTS} attempts: "
			f"{url} ({last_error})"
		)

	async def complete_challenge(self, challenge: AcmeChallenge) -> None:
		"""Tell the CA the challenge is ready for validation."""
		resp = await self._signed_request(challenge.url, {})
		self._check(resp, "respond to challenge", ok=(200, 202))

	async def get_challenge_details(self, challenge_url: str) -> ChallengeDetails:
		resp = await self._signed_request(challenge_url, None)
		self._check(resp, "poll challenge")
		body = resp.json()
		return ChallengeDetails(status=body.get("status", "unknown"), error=body.get("error"))

	# ── Finalization ──────────────────────────────────────────────────────

	async def create_csr(self, common_name: str) -> tuple[PrivateKeyTypes, str]:
		# Key generation is CPU-bound, keep it off the event loop
		return await asyncio.to_thread(crypto.create_csr, common_name)

	async def finalize_order(self, order: AcmeOrder, csr_pem: str) -> AcmeOrder:
		"""Submit the CSR and wait until the CA has issued the certificate."""
		if not order.finalize:
			raise AcmePreconditionError("Order has no finalize URL")

		resp = await self._signed_request(order.finalize, {"csr": crypto.csr_pem_to_der_b64(csr_pem)})
		self._check(resp, "finalize order", ok=(200, 201))
		current = _parse_order(order.url, resp.json())

		for _ in range(self.order_poll_attempts):
			if current.status == "valid":
				return current
			if current.status in ("invalid", "expired", "revoked"):
				raise AcmeProtocolError(f"Order failed after finalize: {current.status}")
			await asyncio.sleep(self.order_poll_interval)
			current = await self.get_order(current)

		if current.status == "valid":
			return current
		raise AcmeProtocolError(f"Timeout waiting for certificate issuance (status: {current.status})")

	async def get_certificate(self, order: AcmeOrder) -> str:
		if not order.certificate:
			raise AcmePreconditionError("No certificate URL in order")
		resp = await self._signed_request(
			order.certificate,
			None,
			accept="application/pem-certificate-chain",
		)
		self._check(resp, "download certificate")
		return resp.text


def make_client_factory(
	*,
	self_check: bool = True,
	transport: Optional[httpx.AsyncBaseTransport] = None,
):
	"""Return an ``AcmeClientFactory`` producing ``HttpAcmeClient`` sessions."""

	def factory(
		directory_url: str,
		account_key: PrivateKeyTypes,
		account_url: Optional[str] = None,
	) -> HttpAcmeClient:
		return HttpAcmeClient(
			directory_url,
			account_key,
			account_url,
			self_check=self_check,
			transport=transport,
		)

	return factory
