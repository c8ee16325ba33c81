#!/usr/bin/env python3
#
# acmedesk/acme/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME protocol layer: capability interface, HTTP client and crypto helpers."""

from .client import HttpAcmeClient, make_client_factory
from .errors import (
	AcmeIssuanceError,
	AcmePreconditionError,
	AcmeProtocolError,
	ChallengeInvalidError,
	ChallengeTimeoutError,
)
from .protocol import (
	CHALLENGE_TYPE_HTTP01,
	AcmeAuthorization,
	AcmeChallenge,
	AcmeClientFactory,
	AcmeOrder,
	AcmeProtocolClient,
	ChallengeDetails,
)

__all__ = [
	"CHALLENGE_TYPE_HTTP01",
	"AcmeAuthorization",
	"AcmeChallenge",
	"AcmeClientFactory",
	"AcmeIssuanceError",
	"AcmeOrder",
	"AcmePreconditionError",
	"AcmeProtocolClient",
	"AcmeProtocolError",
	"ChallengeDetails",
	"ChallengeInvalidError",
	"ChallengeTimeoutError",
	"HttpAcmeClient",
	"make_client_factory",
]
