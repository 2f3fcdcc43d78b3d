# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Error taxonomy for binpm.

Every error carries the process exit code the CLI reports for it. Errors are
raised where they are detected and propagate unchanged through the recursive
installer; only upgrade-tolerant mode catches `NotFoundError`.
"""

from __future__ import annotations


class BinpmError(Exception):
	exit_code = 1


class ConfigurationError(BinpmError):
	"""Missing or invalid settings, detected before any mutation."""


class StateError(BinpmError):
	"""Lock contention, or a missing ledger with no aside copy."""


class FetchError(BinpmError):
	def __init__(self, message: str, status: int | None = None) -> None:
		super().__init__(message)
		self.status = status


class ExtractionError(BinpmError):
	"""Corrupt archive or a merge that still fails after pruning dangling links."""


class ManifestError(ExtractionError):
	pass


class TrustAnchorError(BinpmError):
	exit_code = 2


class IntegrityError(BinpmError):
	exit_code = 2


class NotFoundError(BinpmError):
	"""No archive for the current platform tag."""

	exit_code = 3


class NoPackageError(NotFoundError):
	"""The mirror has no listing (or an empty one) for the package name."""
