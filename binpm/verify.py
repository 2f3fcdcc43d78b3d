# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import logging
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from binpm.errors import IntegrityError
from binpm.trust import TrustStore

logger = logging.getLogger(__name__)


def _verify_with_key(key: object, sig: bytes, data: bytes) -> None:
	"""
	Check a detached raw signature.

	Supported anchors: Ed25519, RSA (PKCS#1 v1.5, SHA-256), ECDSA (SHA-256).
	Raises `InvalidSignature` on mismatch.
	"""
	if isinstance(key, Ed25519PublicKey):
		key.verify(sig, data)
	elif isinstance(key, rsa.RSAPublicKey):
		key.verify(sig, data, padding.PKCS1v15(), hashes.SHA256())
	elif isinstance(key, ec.EllipticCurvePublicKey):
		key.verify(sig, data, ec.ECDSA(hashes.SHA256()))
	else:
		raise IntegrityError(f"unsupported trust anchor key type {type(key).__name__}")


class Verifier:
	def __init__(self, trust_store: TrustStore) -> None:
		self._trust = trust_store

	def ensure_trust_anchor(self) -> None:
		self._trust.ensure()

	def verify(self, archive: Path, signature: Path) -> None:
		# Pins are checked first; a bad anchor never gets as far as a signature check.
		key = self._trust.public_key()
		try:
			data = archive.read_bytes()
			sig = signature.read_bytes()
		except OSError as err:
			raise IntegrityError(f"cannot read {archive.name} or its signature: {err}") from err
		try:
			_verify_with_key(key, sig, data)
		except InvalidSignature as err:
			raise IntegrityError(f"signature verification failed for {archive.name}") from err
		logger.debug(f"{archive.name}: signature ok")
