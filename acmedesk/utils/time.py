#!/usr/bin/env python3
#
# acmedesk/utils/time.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Timezone-aware time utilities."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
	"""Return the current UTC time as a timezone-aware datetime."""
	return datetime.now(timezone.utc)


def utc_in(*, seconds: float = 0, days: float = 0) -> datetime:
	"""Return an aware UTC timestamp offset from now."""
	return utcnow() + timedelta(seconds=seconds, days=days)

