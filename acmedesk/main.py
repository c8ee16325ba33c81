#!/usr/bin/env python3
#
# acmedesk/main.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""FastAPI application factory and startup lifecycle wiring."""

from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .acme.protocol import AcmeClientFactory
from .api import acme as acme_api
from .api import health as health_api
from .db.sqlite_runtime import checkpoint_wal, close_all_connections, open_db
from .db.sqlite_schema import init_schema
from .services.issuance import build_orchestrator
from .tasks.maintenance import sqlite_maintenance, sweep_expired_challenges
from .utils.config import Config, get_config
from .utils.rate_limit import limiter
from .utils.request_id import RequestIDLogFilter, RequestIDMiddleware
from .utils.scheduler import Scheduler

_log = logging.getLogger(__name__)

__version__ = "0.1.0"

# ANSI color codes for log levels (if TTY)
_LOG_COLORS = {
	"DEBUG": "\033[36m",    # Cyan
	"INFO": "\033[32m",     # Green
	"WARNING": "\033[33m",  # Yellow
	"ERROR": "\033[31m",    # Red
	"CRITICAL": "\033[35m", # Magenta
}
_RESET = "\033[0m"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | [%(request_id)s] %(message)s"


class _ColoredFormatter(logging.Formatter):
	"""Formatter that pads and colors the level name on a TTY."""

	def format(self, record):
		orig_levelname = record.levelname
		color = _LOG_COLORS.get(orig_levelname)
		record.levelname = f"{color}{orig_levelname:<8}{_RESET}" if color else f"{orig_levelname:<8}"
		try:
			return super().format(record)
		finally:
			record.levelname = orig_levelname


def _setup_logging(log_level: str) -> None:
	"""Configure unified logging for the entire application."""
	level = getattr(logging, log_level, logging.INFO)
	formatter: logging.Formatter
	if sys.stdout.isatty():
		formatter = _ColoredFormatter(fmt=_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
	else:
		formatter = logging.Formatter(
			fmt=_LOG_FORMAT.replace("%(levelname)s", "%(levelname)-8s"),
			datefmt="%Y-%m-%d %H:%M:%S",
		)

	# force=True drops handlers installed earlier (e.g. by uvicorn)
	logging.basicConfig(
		level=level,
		handlers=[logging.StreamHandler(sys.stdout)],
		force=True,
	)
	for handler in logging.root.handlers:
		handler.setFormatter(formatter)
		handler.addFilter(RequestIDLogFilter())

	for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
		logger = logging.getLogger(name)
		logger.handlers.clear()
		logger.setLevel(level)
		logger.propagate = True

	# Quiet down noisy third-party libraries
	for name in ("httpcore", "httpx", "aiosqlite"):
		logging.getLogger(name).setLevel(logging.WARNING)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	"""Application lifespan manager."""
	cfg: Config = app.state.cfg

	# ─── BOOTSTRAP ───────────────────────────────────────────
	with open_db(cfg.db_path) as conn:
		init_schema(conn)

	scheduler = Scheduler()

	async def _sweep_challenges() -> None:
		await sweep_expired_challenges(cfg.db_path)

	async def _maintain_sqlite() -> None:
		await sqlite_maintenance(cfg.db_path)

	scheduler.add(
		"challenge-sweep",
		interval_seconds=3600,  # 1 hour
		func=_sweep_challenges,
		run_on_start=True,
		initial_delay=30.0,
		timeout=30.0,
	)
	scheduler.add(
		"sqlite-maintenance",
		interval_seconds=21600,  # 6 hours
		func=_maintain_sqlite,
		run_on_start=True,
		initial_delay=60.0,  # Let app fully start first
		timeout=60.0,
	)
	await scheduler.start()
	app.state.scheduler = scheduler

	_log.info(
		"AcmeDesk started (directory=%s, self_check=%s, pid=%d)",
		cfg.acme_directory_url,
		cfg.acme_self_check,
		os.getpid(),
	)

	yield

	# ─── SHUTDOWN ────────────────────────────────────────────
	await scheduler.stop_graceful(timeout=5.0)

	closed_connections = close_all_connections()
	checkpoint = checkpoint_wal(cfg.db_path, mode="TRUNCATE")
	_log.info(
		"SQLITE_SHUTDOWN connections_closed=%d checkpoint_mode=%s busy=%s log_frames=%s checkpointed_frames=%s",
		closed_connections,
		checkpoint.get("mode"),
		checkpoint.get("busy"),
		checkpoint.get("log_frames"),
		checkpoint.get("checkpointed_frames"),
	)
	_log.info("AcmeDesk shutdown complete")


def create_app(
	cfg: Optional[Config] = None,
	*,
	client_factory: Optional[AcmeClientFactory] = None,
) -> FastAPI:
	"""Application factory for AcmeDesk.

	``client_factory`` replaces the HTTP ACME client (tests pass a scripted fake).
	"""
	cfg = cfg or get_config()
	_setup_logging(cfg.log_level)

	app = FastAPI(
		title="AcmeDesk",
		description="ACME certificate issuance service",
		version=__version__,
		lifespan=_lifespan,
		docs_url="/api/docs",
		redoc_url="/api/redoc",
	)

	app.state.cfg = cfg
	app.state.db_path = cfg.db_path
	app.state.orchestrator = build_orchestrator(cfg, client_factory)

	# ─── MIDDLEWARE ──────────────────────────────────────────
	app.add_middleware(RequestIDMiddleware)

	app.state.limiter = limiter
	app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

	# ─── ROUTES ──────────────────────────────────────────────
	app.include_router(acme_api.challenge_router)
	app.include_router(acme_api.router, prefix="/api")
	app.include_router(health_api.router, prefix="/api")

	return app
