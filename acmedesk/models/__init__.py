#!/usr/bin/env python3
#
# acmedesk/models/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Pydantic models for AcmeDesk."""

from .acme import (
	AccountKey,
	CertificateRecord,
	CertificateStatus,
	IssuanceResult,
)

__all__ = [
	"AccountKey",
	"CertificateRecord",
	"CertificateStatus",
	"IssuanceResult",
]
