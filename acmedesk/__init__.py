#!/usr/bin/env python3
#
# acmedesk/__init__.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""AcmeDesk - automated ACME (Let's Encrypt) certificate issuance."""

from .main import create_app

__all__ = ["create_app"]
