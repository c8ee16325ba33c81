#!/usr/bin/env python3
#
# acmedesk/utils/request_id.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Request ID middleware and log correlation."""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIDLogFilter(logging.Filter):
	"""Expose the current request ID as ``%(request_id)s`` in log records."""

	def filter(self, record: logging.LogRecord) -> bool:
		record.request_id = _request_id.get()
		return True


class RequestIDMiddleware(BaseHTTPMiddleware):
	"""Add a unique request ID to each request for tracing/debugging."""

	async def dispatch(self, request: Request, call_next: Callable) -> Response:
		request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
		request.state.request_id = request_id
		token = _request_id.set(request_id)
		try:
			response = await call_next(request)
		finally:
			_request_id.reset(token)
		response.headers["X-Request-ID"] = request_id
		return response
