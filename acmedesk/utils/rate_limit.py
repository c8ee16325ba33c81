#!/usr/bin/env python3
#
# acmedesk/utils/rate_limit.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Rate limiting configuration using slowapi.

The public ACME challenge route is never decorated: CA validation traffic
must always get through.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

RATE_LIMIT_ISSUANCE = "10/minute"  # Each call drives a full ACME order

limiter = Limiter(key_func=get_remote_address)

__all__ = [
	"RATE_LIMIT_ISSUANCE",
	"limiter",
]
