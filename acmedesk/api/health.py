#!/usr/bin/env python3
#
# acmedesk/api/health.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from .response import ok_response

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
	scheduler = getattr(request.app.state, "scheduler", None)
	return ok_response(
		version=request.app.version,
		jobs=scheduler.get_status() if scheduler else [],
	)
