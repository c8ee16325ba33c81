#!/usr/bin/env python3
#
# acmedesk/api/auth.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Bearer token authentication dependency.

Sessions are created by the login service; this module only resolves them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..db.sqlite_auth import get_user_id_by_session_token
from ..db.sqlite_runtime import run_db
from ..utils.deps import get_db_path

_log = logging.getLogger(__name__)
_security = HTTPBearer(auto_error=False)


async def get_current_user_id(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_security),
	db_path: Path = Depends(get_db_path),
) -> str:
	"""FastAPI dependency that enforces authentication."""
	if not credentials or not credentials.credentials:
		raise HTTPException(status_code=401, detail="Not authenticated")

	user_id = await run_db(db_path, get_user_id_by_session_token, credentials.credentials)
	if user_id is None:
		_log.debug("AUTH_REJECTED reason=invalid_or_expired_token")
		raise HTTPException(status_code=401, detail="Invalid or expired token")
	return user_id
