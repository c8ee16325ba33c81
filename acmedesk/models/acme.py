#!/usr/bin/env python3
#
# acmedesk/models/acme.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME account and certificate record models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

CertificateStatus = Literal["issued", "issuance_error"]


class AccountKey(BaseModel):
	"""The singleton ACME account. ``private_key_pem`` is unsealed."""
	model_config = ConfigDict(frozen=True)

	id: str
	contact_email: EmailStr
	private_key_pem: str = Field(repr=False)
	account_url: Optional[str] = None


class CertificateRecord(BaseModel):
	"""One terminal issuance attempt. ``private_key_pem`` is unsealed."""
	model_config = ConfigDict(frozen=True)

	id: str
	domain_id: str
	user_id: str
	common_name: str
	status: CertificateStatus
	certificate_pem: Optional[str] = None
	private_key_pem: Optional[str] = Field(default=None, repr=False)
	chain_pem: Optional[str] = None
	issued_at: datetime
	expires_at: datetime
	acme_order_url: Optional[str] = None
	acme_challenge_type: Optional[str] = None


class IssuanceResult(BaseModel):
	"""Outcome of one orchestrator run, suitable for direct display."""
	success: bool
	message: str
	certificate_id: Optional[str] = None
	error: Optional[str] = None
