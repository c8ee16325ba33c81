#!/usr/bin/env python3
#
# acmedesk/services/challenges.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""HTTP-01 challenge publishing.

Records are read back by the public ``/.well-known/acme-challenge`` route,
possibly from another worker process, so ``publish`` only returns once the
row is committed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..db.sqlite_challenges import (
	delete_challenge,
	get_active_challenge,
	insert_challenge,
)
from ..db.sqlite_runtime import run_db
from ..utils.time import utc_in

_log = logging.getLogger(__name__)


class ChallengePublisher:
	def __init__(self, db_path: Path) -> None:
		self.db_path = db_path

	async def publish(self, token: str, content: str, fqdn: str, ttl: float) -> None:
		expires_at = utc_in(seconds=ttl)
		await run_db(self.db_path, insert_challenge, token, content, fqdn, expires_at)
		_log.info("CHALLENGE_PUBLISHED fqdn=%s token=%s expires_at=%s", fqdn, token, expires_at.isoformat())

	async def lookup(self, token: str) -> Optional[str]:
		"""Return the response content, or None when absent or expired."""
		row = await run_db(self.db_path, get_active_challenge, token)
		return row["content"] if row else None

	async def withdraw(self, token: str) -> bool:
		return await run_db(self.db_path, delete_challenge, token)
