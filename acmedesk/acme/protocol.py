#!/usr/bin/env python3
#
# acmedesk/acme/protocol.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME protocol capability used by the issuance orchestrator.

The orchestrator only talks to this interface; ``HttpAcmeClient`` is the
production implementation and tests plug in scripted fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

CHALLENGE_TYPE_HTTP01 = "http-01"


@dataclass
class AcmeChallenge:
	"""One challenge offered inside an authorization."""
	type: str
	url: str
	token: str
	status: str = "pending"


@dataclass
class AcmeAuthorization:
	"""Proof obligation for one identifier of an order."""
	url: str
	identifier: str
	status: str
	challenges: list[AcmeChallenge] = field(default_factory=list)

	def find_challenge(self, challenge_type: str) -> Optional[AcmeChallenge]:
		for challenge in self.challenges:
			if challenge.type == challenge_type:
				return challenge
		return None


@dataclass
class AcmeOrder:
	"""CA-side order state as last seen by the client."""
	url: str
	status: str
	identifiers: list[str] = field(default_factory=list)
	authorizations: list[str] = field(default_factory=list)
	finalize: Optional[str] = None
	certificate: Optional[str] = None


@dataclass
class ChallengeDetails:
	"""Polled challenge state; ``error`` is the CA problem document, if any."""
	status: str
	error: Optional[dict[str, Any]] = None

	@property
	def error_detail(self) -> Optional[str]:
		if not self.error:
			return None
		return self.error.get("detail")


class AcmeProtocolClient(Protocol):
	"""Wire-level ACME operations, bound to one account key."""

	async def __aenter__(self) -> "AcmeProtocolClient": ...

	async def __aexit__(self, *exc_info: Any) -> None: ...

	async def create_account(self, contact_email: str) -> str:
		"""Register (or look up) the account for the bound key; returns its URL."""
		...

	async def create_order(self, domains: list[str]) -> AcmeOrder: ...

	async def get_authorizations(self, order: AcmeOrder) -> list[AcmeAuthorization]: ...

	async def get_challenge_key_authorization(self, challenge: AcmeChallenge) -> str: ...

	async def verify_challenge(self, authz: AcmeAuthorization, challenge: AcmeChallenge) -> None: ...

	async def complete_challenge(self, challenge: AcmeChallenge) -> None: ...

	async def get_challenge_details(self, challenge_url: str) -> ChallengeDetails: ...

	async def get_order(self, order: AcmeOrder) -> AcmeOrder: ...

	async def create_csr(self, common_name: str) -> tuple[PrivateKeyTypes, str]: ...

	async def finalize_order(self, order: AcmeOrder, csr_pem: str) -> AcmeOrder: ...

	async def get_certificate(self, order: AcmeOrder) -> str: ...


class AcmeClientFactory(Protocol):
	"""Builds a protocol client bound to an account key (and URL, once known)."""

	def __call__(
		self,
		directory_url: str,
		account_key: PrivateKeyTypes,
		account_url: Optional[str] = None,
	) -> AcmeProtocolClient: ...
