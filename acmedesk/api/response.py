#!/usr/bin/env python3
#
# acmedesk/api/response.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Common API response helpers."""

from __future__ import annotations

from typing import Any


def ok_response(
	*,
	message: str | None = None,
	data: Any = None,
	**extra: Any,
) -> dict[str, Any]:
	"""Build a normalized success response with a stable ``status`` field."""
	payload: dict[str, Any] = {"status": "ok"}
	if message is not None:
		payload["message"] = message
	if data is not None:
		payload["data"] = data
	if extra:
		payload.update(extra)
	return payload


def error_response(error: str, details: Any = None) -> dict[str, Any]:
	"""Build the ``{error, details}`` body returned for failed operations."""
	payload: dict[str, Any] = {"error": error}
	if details is not None:
		payload["details"] = details
	return payload
