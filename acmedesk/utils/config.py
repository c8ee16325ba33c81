#!/usr/bin/env python3
#
# acmedesk/utils/config.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Configuration loading and app-level defaults."""

from __future__ import annotations

import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

from pydantic import EmailStr, TypeAdapter, ValidationError

_log = logging.getLogger(__name__)


class ConfigValidationError(Exception):
	"""Raised when critical configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# ACME directory presets
# ---------------------------------------------------------------------------
ACME_DIRECTORY_PROD = "https://acme-v02.api.letsencrypt.org/directory"
ACME_DIRECTORY_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class Config:
	"""Resolved runtime configuration derived from env and defaults."""
	base_dir: Path
	data_dir: Path
	db_path: Path
	acme_directory_url: str = ACME_DIRECTORY_STAGING
	acme_contact_email: str = ""
	acme_self_check: bool = True
	challenge_ttl_seconds: int = 300
	poll_interval_seconds: float = 3.0
	poll_max_attempts: int = 20
	cert_validity_days: int = 90
	encrypt_key_material: bool = True
	log_level: str = "INFO"
	secret_key: str = ""


def _parse_value(raw: str) -> str:
	"""Extract value, respecting quotes and stripping inline comments."""
	raw = raw.strip()
	if raw and raw[0] in ('"', "'"):
		quote = raw[0]
		end = raw.find(quote, 1)
		if end != -1:
			return raw[1:end]
	if " #" in raw:
		raw = raw.split(" #", 1)[0]
	return raw.strip()


def load_dotenv(dotenv_path: Path | None = None) -> None:
	"""Load simple KEY=VALUE pairs from settings.env.

	Behavior:
	- Ignores blank lines and comments (# ...)
	- Handles `export KEY=VALUE` syntax
	- Does not override already-set environment variables
	"""
	project_root = Path(__file__).resolve().parents[2]
	dotenv_path = dotenv_path or (project_root / "settings.env")
	if not dotenv_path.exists():
		return
	for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
		line = raw_line.strip()
		if not line or line.startswith("#") or "=" not in line:
			continue
		key, value = line.split("=", 1)
		key = key.strip()
		if key.startswith("export "):
			key = key[7:].strip()
		if not key:
			continue
		os.environ.setdefault(key, _parse_value(value))


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float, *, minimum: float, cast=int):
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	try:
		value = cast(raw.strip())
	except ValueError as exc:
		raise ConfigValidationError(f"{name} must be a number, got {raw!r}") from exc
	if value < minimum:
		raise ConfigValidationError(f"{name} must be >= {minimum}, got {value}")
	return value


def _validate_contact_email(value: str) -> str:
	"""Apply the same email rules as the stored account model."""
	try:
		return str(_EMAIL_ADAPTER.validate_python(value))
	except ValidationError as exc:
		raise ConfigValidationError(f"ACME_CONTACT_EMAIL is not a valid address: {value!r}") from exc


def _running_under_pytest() -> bool:
	return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ


def load_config() -> Config:
	"""Load configuration from environment variables (optionally via settings.env)."""
	load_dotenv()
	project_root = Path(__file__).resolve().parents[2]

	data_dir = Path(os.getenv("ACMEDESK_DATA_DIR", str(project_root / "data"))).resolve()
	db_path = (data_dir / "acmedesk.db").resolve()

	try:
		if data_dir.exists() and not data_dir.is_dir():
			raise ConfigValidationError(f"Path exists but is not a directory: {data_dir}")
		data_dir.mkdir(parents=True, exist_ok=True)
	except OSError as exc:
		raise ConfigValidationError(f"Cannot create data directory: {exc}") from exc

	allowed_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
	log_level = os.getenv("LOG_LEVEL", "INFO").upper()
	if log_level not in allowed_levels:
		log_level = "INFO"

	# Explicit directory URL wins over the staging/production switch
	directory_url = os.getenv("ACME_DIRECTORY_URL", "").strip()
	if not directory_url:
		directory_url = ACME_DIRECTORY_STAGING if _env_bool("ACME_STAGING", True) else ACME_DIRECTORY_PROD
	if not directory_url.startswith(("https://", "http://")):
		raise ConfigValidationError(f"ACME_DIRECTORY_URL is not an http(s) URL: {directory_url!r}")

	contact_email = os.getenv("ACME_CONTACT_EMAIL", "").strip()
	secret_key = os.getenv("ACMEDESK_SECRET_KEY", "")
	if not _running_under_pytest():
		if not contact_email:
			raise ConfigValidationError(
				"ACME_CONTACT_EMAIL is not set. "
				"The CA requires a contact address for account registration."
			)
		if not secret_key:
			raise ConfigValidationError(
				"ACMEDESK_SECRET_KEY is not set. "
				"Refusing to start without a secret key. "
				"Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
			)
	else:
		contact_email = contact_email or "acme-test@example.com"
		secret_key = secret_key or "test-only-secret-do-not-use-in-production"
		_log.debug("Using test-only ACME contact and secret key")
	contact_email = _validate_contact_email(contact_email)

	return Config(
		base_dir=project_root,
		data_dir=data_dir,
		db_path=db_path,
		acme_directory_url=directory_url,
		acme_contact_email=contact_email,
		acme_self_check=_env_bool("ACME_HTTP01_SELF_CHECK", True),
		challenge_ttl_seconds=_env_number("ACME_CHALLENGE_TTL", 300, minimum=30),
		poll_interval_seconds=_env_number("ACME_POLL_INTERVAL", 3.0, minimum=0.5, cast=float),
		poll_max_attempts=_env_number("ACME_POLL_ATTEMPTS", 20, minimum=1),
		cert_validity_days=_env_number("ACME_CERT_VALIDITY_DAYS", 90, minimum=1),
		encrypt_key_material=_env_bool("ACMEDESK_ENCRYPT_KEYS", True),
		log_level=log_level,
		secret_key=secret_key,
	)


# Global config singleton with thread-safe lazy initialization
_config: Config | None = None
_config_lock = threading.Lock()


def get_config() -> Config:
	"""Get the global config singleton (thread-safe)."""
	global _config
	if _config is None:
		with _config_lock:
			if _config is None:  # Double-checked locking
				_config = load_config()
	return _config


def reset_config() -> None:
	"""Reset the cached config. Intended for tests only."""
	global _config
	with _config_lock:
		_config = None
