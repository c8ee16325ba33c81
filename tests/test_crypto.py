#!/usr/bin/env python3
#
# tests/test_crypto.py
# Copyright (C) 2025-2026 Gill-Bates http://github.com/Gill-Bates
#

from __future__ import annotations

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from acmedesk.acme import crypto


def test_account_key_pem_roundtrip_keeps_thumbprint():
	key = crypto.generate_account_key()
	loaded = crypto.load_private_key(crypto.private_key_to_pem(key))

	assert crypto.jwk_thumbprint(crypto.public_jwk(loaded)) == crypto.jwk_thumbprint(crypto.public_jwk(key))


def test_ec_jwk_has_fixed_width_coordinates():
	jwk = crypto.public_jwk(crypto.generate_account_key())

	assert jwk["kty"] == "EC"
	assert jwk["crv"] == "P-256"
	# 32 bytes -> 43 base64url characters without padding
	assert len(jwk["x"]) == len(jwk["y"]) == 43


def test_thumbprint_ignores_member_order_and_extras():
	jwk = crypto.public_jwk(crypto.generate_account_key())
	shuffled = {"y": jwk["y"], "x": jwk["x"], "kty": "EC", "crv": "P-256", "kid": "ignored"}

	assert crypto.jwk_thumbprint(shuffled) == crypto.jwk_thumbprint(jwk)


def test_key_authorization_format():
	key = crypto.generate_account_key()
	thumbprint = crypto.jwk_thumbprint(crypto.public_jwk(key))

	assert crypto.key_authorization("tok", key) == f"tok.{thumbprint}"


def test_csr_carries_common_name_and_san():
	key, csr_pem = crypto.create_csr("example.com")
	csr = x509.load_pem_x509_csr(csr_pem.encode("ascii"))

	assert isinstance(key, rsa.RSAPrivateKey)
	assert key.key_size == 2048
	assert csr.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)[0].value == "example.com"
	san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
	assert san.get_values_for_type(x509.DNSName) == ["example.com"]
	assert csr.is_signature_valid


def test_split_pem_chain(leaf_pem, intermediate_pem):
	leaf, chain = crypto.split_pem_chain(leaf_pem + intermediate_pem)

	assert leaf == leaf_pem
	assert chain == intermediate_pem


def test_split_single_certificate_has_no_chain(leaf_pem):
	assert crypto.split_pem_chain(leaf_pem) == (leaf_pem, None)


def test_certificate_validity(leaf_pem):
	not_before, not_after = crypto.certificate_validity(leaf_pem)

	assert not_before.tzinfo is not None
	assert (not_after - not_before).days == 90


def test_certificate_validity_of_garbage_is_none():
	assert crypto.certificate_validity("not a certificate") is None
