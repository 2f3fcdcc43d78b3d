# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Pinned trust anchor.

The trust anchor is the PEM public key every archive signature is verified
against. It is downloaded once into the install root and, on every use, its
bytes are re-hashed with two independent 160-bit digests that must match the
configured pins. A mismatch means the key was tampered with or the mirror was
substituted; it is a hard stop and is never retried.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from binpm.errors import ConfigurationError, TrustAnchorError

if TYPE_CHECKING:
	from binpm.fetch import Fetcher

logger = logging.getLogger(__name__)

PIN_ALGORITHMS = ("sha1", "ripemd160")


@dataclass(frozen=True)
class PinnedDigest:
	algorithm: str
	hexdigest: str


def digest_hex(algorithm: str, data: bytes) -> str:
	try:
		h = hashlib.new(algorithm)
	except ValueError as err:
		raise ConfigurationError(f"digest algorithm '{algorithm}' is not available in this Python build") from err
	h.update(data)
	return h.hexdigest()


def check_pins(data: bytes, pins: tuple[PinnedDigest, ...]) -> None:
	if len(pins) != 2 or len({p.algorithm for p in pins}) != 2:
		raise ConfigurationError("trust anchor needs exactly two pinned digests from distinct algorithms")
	for pin in pins:
		got = digest_hex(pin.algorithm, data)
		if not hmac.compare_digest(got, pin.hexdigest.strip().lower()):
			raise TrustAnchorError(
				f"trust anchor {pin.algorithm} digest mismatch: expected {pin.hexdigest}, got {got} "
				"(the key or the mirror may have been substituted)"
			)


class TrustStore:
	def __init__(self, path: Path, url: str, pins: tuple[PinnedDigest, ...], fetcher: "Fetcher") -> None:
		self.path = path
		self.url = url
		self.pins = pins
		self._fetcher = fetcher

	def ensure(self) -> bytes:
		"""
		Return the anchor bytes after checking them against both pins.

		The anchor is downloaded only when it is missing locally; the digests are
		recomputed on every call regardless.
		"""
		if not self.pins:
			raise ConfigurationError("no trust anchor pins configured")
		if not self.path.exists():
			logger.info(f"fetching trust anchor from {self.url}")
			self._fetcher.fetch_to_file(self.url, self.path, resumable=False)
		data = self.path.read_bytes()
		check_pins(data, self.pins)
		return data

	def public_key(self):
		data = self.ensure()
		try:
			return load_pem_public_key(data)
		except (ValueError, UnsupportedAlgorithm) as err:
			raise TrustAnchorError(f"trust anchor {self.path} is not a PEM public key") from err
