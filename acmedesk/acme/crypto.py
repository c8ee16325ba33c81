#!/usr/bin/env python3
#
# acmedesk/acme/crypto.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

"""Key, JWK, CSR and certificate helpers for the ACME client."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from datetime import datetime
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

_log = logging.getLogger(__name__)

_PEM_CERT_BEGIN = "-----BEGIN CERTIFICATE-----"
_PEM_CERT_END = "-----END CERTIFICATE-----"


def b64url(data: bytes) -> str:
	"""Base64url encode without padding."""
	return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def generate_account_key() -> ec.EllipticCurvePrivateKey:
	"""Generate a fresh P-256 ACME account key."""
	return ec.generate_private_key(ec.SECP256R1())


def generate_certificate_key() -> rsa.RSAPrivateKey:
	"""Generate a fresh RSA-2048 certificate key."""
	return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def private_key_to_pem(key: PrivateKeyTypes) -> str:
	"""Serialize a private key as unencrypted PKCS#8 PEM."""
	return key.private_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PrivateFormat.PKCS8,
		encryption_algorithm=serialization.NoEncryption(),
	).decode("ascii")


def load_private_key(pem: str) -> PrivateKeyTypes:
	"""Load a PEM private key (EC or RSA)."""
	key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
	if not isinstance(key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
		raise ValueError(f"Unsupported account key type: {type(key).__name__}")
	return key


# ---------------------------------------------------------------------------
# JWK / JWS
# ---------------------------------------------------------------------------

def _int_to_b64(value: int, length: Optional[int] = None) -> str:
	length = length or (value.bit_length() + 7) // 8
	return b64url(value.to_bytes(length, "big"))


def public_jwk(key: PrivateKeyTypes) -> dict:
	"""Return the public JWK of an account key."""
	if isinstance(key, ec.EllipticCurvePrivateKey):
		numbers = key.public_key().public_numbers()
		# P-256 coordinates are 32 bytes each
		return {
			"kty": "EC",
			"crv": "P-256",
			"x": _int_to_b64(numbers.x, 32),
			"y": _int_to_b64(numbers.y, 32),
		}
	if isinstance(key, rsa.RSAPrivateKey):
		numbers = key.public_key().public_numbers()
		return {"kty": "RSA", "e": _int_to_b64(numbers.e), "n": _int_to_b64(numbers.n)}
	raise ValueError(f"Unsupported key type: {type(key).__name__}")


def jws_algorithm(key: PrivateKeyTypes) -> str:
	return "ES256" if isinstance(key, ec.EllipticCurvePrivateKey) else "RS256"


def jwk_thumbprint(jwk: dict) -> str:
	"""Calculate JWK thumbprint (RFC 7638)."""
	if "kty" not in jwk:
		raise ValueError("Missing kty in JWK")

	if jwk["kty"] == "EC":
		canonical = {"crv": jwk["crv"], "kty": "EC", "x": jwk["x"], "y": jwk["y"]}
	elif jwk["kty"] == "RSA":
		canonical = {"e": jwk["e"], "kty": "RSA", "n": jwk["n"]}
	else:
		raise ValueError(f"Unsupported key type: {jwk['kty']}")

	canonical_json = json.dumps(canonical, separators=(",", ":"), sort_keys=True)
	return b64url(hashlib.sha256(canonical_json.encode("utf-8")).digest())


def key_authorization(token: str, key: PrivateKeyTypes) -> str:
	"""HTTP-01 response body: ``<token>.<account key thumbprint>``."""
	return f"{token}.{jwk_thumbprint(public_jwk(key))}"


def sign(key: PrivateKeyTypes, signing_input: bytes) -> bytes:
	"""Produce a raw JWS signature for the key's algorithm."""
	if isinstance(key, ec.EllipticCurvePrivateKey):
		sig_der = key.sign(signing_input, ec.ECDSA(hashes.SHA256()))
		r, s = decode_dss_signature(sig_der)
		# ES256 signature is r || s, each 32 bytes
		return r.to_bytes(32, "big") + s.to_bytes(32, "big")
	if isinstance(key, rsa.RSAPrivateKey):
		return key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())
	raise ValueError(f"Unsupported key type: {type(key).__name__}")


# ---------------------------------------------------------------------------
# CSR / certificates
# ---------------------------------------------------------------------------

def create_csr(common_name: str) -> tuple[rsa.RSAPrivateKey, str]:
	"""Generate a certificate key and a PEM CSR for ``common_name``.

	The name goes into the subject CN and the SAN extension (required by
	Let's Encrypt).
	"""
	key = generate_certificate_key()
	csr = (
		x509.CertificateSigningRequestBuilder()
		.subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
		.add_extension(
			x509.SubjectAlternativeName([x509.DNSName(common_name)]),
			critical=False,
		)
		.sign(key, hashes.SHA256())
	)
	return key, csr.public_bytes(serialization.Encoding.PEM).decode("ascii")


def csr_pem_to_der_b64(csr_pem: str) -> str:
	"""Convert a PEM CSR to the base64url DER form ACME finalize expects."""
	csr = x509.load_pem_x509_csr(csr_pem.encode("ascii"))
	return b64url(csr.public_bytes(serialization.Encoding.DER))


def split_pem_chain(pem: str) -> tuple[str, Optional[str]]:
	"""Split a PEM bundle into (leaf, intermediates or None)."""
	blocks: list[str] = []
	rest = pem
	while _PEM_CERT_BEGIN in rest:
		start = rest.find(_PEM_CERT_BEGIN)
		end = rest.find(_PEM_CERT_END, start)
		if end == -1:
			break
		end += len(_PEM_CERT_END)
		blocks.append(rest[start:end])
		rest = rest[end:]

	if not blocks:
		return pem, None
	chain = "\n".join(blocks[1:]) + "\n" if len(blocks) > 1 else None
	return blocks[0] + "\n", chain


def certificate_validity(pem: str) -> Optional[tuple[datetime, datetime]]:
	"""Return (not_before, not_after) of the leaf certificate, or None if unparseable."""
	leaf, _ = split_pem_chain(pem)
	try:
		cert = x509.load_pem_x509_certificate(leaf.encode("ascii"))
	except (ValueError, UnicodeEncodeError) as exc:
		_log.debug("Certificate validity not parseable: %s", exc)
		return None
	return cert.not_valid_before_utc, cert.not_valid_after_utc
