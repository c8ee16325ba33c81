#!/usr/bin/env python3
#
# acmedesk/acme/errors.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Exceptions raised while driving an ACME order."""

from __future__ import annotations

from typing import Any, Optional


class AcmeIssuanceError(Exception):
	"""Base class for failures of a single issuance attempt."""


class AcmeProtocolError(AcmeIssuanceError):
	"""The CA rejected a request.

	``problem`` is the RFC 7807 problem document when the CA sent one.
	"""

	def __init__(
		self,
		message: str,
		*,
		status_code: Optional[int] = None,
		problem: Optional[dict[str, Any]] = None,
	) -> None:
		self.status_code = status_code
		self.problem = problem or {}
		detail = self.problem.get("detail")
		problem_type = self.problem.get("type")
		if detail and problem_type:
			message = f"{message}: {detail} ({problem_type})"
		elif detail:
			message = f"{message}: {detail}"
		super().__init__(message)

	@property
	def problem_type(self) -> Optional[str]:
		return self.problem.get("type")


class ChallengeInvalidError(AcmeIssuanceError):
	"""The CA validated the challenge and said no."""

	def __init__(self, fqdn: str, detail: Optional[str]) -> None:
		self.fqdn = fqdn
		self.detail = detail or "Unknown validation error"
		super().__init__(f"Challenge failed for {fqdn}: {self.detail}")


class ChallengeTimeoutError(AcmeIssuanceError):
	"""The CA never reached a verdict within the polling budget."""

	def __init__(self, fqdn: str, attempts: int, last_status: str) -> None:
		self.fqdn = fqdn
		self.attempts = attempts
		self.last_status = last_status
		super().__init__(
			f"Challenge verification timed out for {fqdn} after {attempts} polls "
			f"(last status: {last_status})"
		)


class AcmePreconditionError(AcmeIssuanceError):
	"""The CA answered with a shape this client cannot proceed from."""
