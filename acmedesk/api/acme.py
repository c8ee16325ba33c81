#!/usr/bin/env python3
#
# acmedesk/api/acme.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""ACME HTTP routes: public challenge responses and certificate issuance."""

import logging
import re
import sqlite3
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from ..db.sqlite_domains import get_domain_for_user
from ..db.sqlite_runtime import run_db
from ..services.challenges import ChallengePublisher
from ..services.issuance import IssuanceOrchestrator
from ..utils.deps import get_challenge_publisher, get_db_path, get_orchestrator
from ..utils.rate_limit import RATE_LIMIT_ISSUANCE, limiter
from .auth import get_current_user_id
from .response import error_response, ok_response

_log = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

# Mounted at the site root, outside /api: no auth, no rate limit
challenge_router = APIRouter(tags=["acme-challenge"])

router = APIRouter(tags=["certificates"])


@challenge_router.get("/.well-known/acme-challenge/{token}", response_class=PlainTextResponse)
async def serve_challenge(
	token: str,
	publisher: ChallengePublisher = Depends(get_challenge_publisher),
) -> PlainTextResponse:
	"""
	Serve an ACME HTTP-01 challenge response.

	The CA fetches ``http://<domain>/.well-known/acme-challenge/<token>``;
	the reverse proxy must forward this path unauthenticated.
	"""
	# Reject malformed tokens before touching storage
	if not _TOKEN_RE.match(token):
		return PlainTextResponse("Not found", status_code=404)

	try:
		content = await publisher.lookup(token)
	except sqlite3.Error:
		_log.exception("CHALLENGE_LOOKUP_FAILED token=%s", token)
		return PlainTextResponse("Internal server error", status_code=500)

	if content is None:
		_log.debug("CHALLENGE_MISS token=%s", token)
		return PlainTextResponse("Not found", status_code=404)
	return PlainTextResponse(content)


@router.post("/domains/{domain_id}/issue-certificate", status_code=201)
@limiter.limit(RATE_LIMIT_ISSUANCE)
async def issue_certificate(
	request: Request,
	domain_id: str,
	user_id: str = Depends(get_current_user_id),
	db_path: Path = Depends(get_db_path),
	orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
	"""
	Issue a certificate for one of the caller's domains.

	Blocks for the whole ACME order (typically tens of seconds). The result
	of every attempt, successful or not, is recorded against the domain.
	"""
	domain = await run_db(db_path, get_domain_for_user, domain_id, user_id)
	if domain is None:
		raise HTTPException(status_code=404, detail="Domain not found")

	result = await orchestrator.issue(domain["fqdn"], user_id, domain_id)
	if not result.success:
		return JSONResponse(status_code=500, content=error_response(result.message, result.error))

	return JSONResponse(
		status_code=201,
		content=ok_response(message=result.message, certificateId=result.certificate_id),
	)
