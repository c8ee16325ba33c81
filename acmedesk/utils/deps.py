#!/usr/bin/env python3
#
# acmedesk/utils/deps.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI dependency helpers."""

from __future__ import annotations

from pathlib import Path

from fastapi import Request


def get_db_path(request: Request) -> Path:
	"""Database path for ``run_db`` calls.

	Routes open short-lived connections per query instead of holding one
	for the request, since issuance requests last for a whole ACME order.
	"""
	return request.app.state.db_path


def get_orchestrator(request: Request):
	"""Get the issuance orchestrator wired at startup."""
	return request.app.state.orchestrator


def get_challenge_publisher(request: Request):
	return request.app.state.orchestrator.challenges
