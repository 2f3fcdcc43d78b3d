# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Package installer.

Per package name:

1. skip if the ledger already has it
2. resolve an archive URL; on failure strip the last `-component` of the
   name and try again (`foo-1.0_0` → `foo`)
3. fetch archive + detached signature into the cache (resumable)
4. verify the signature against the pinned trust anchor
5. extract into scratch, normalize the payload, merge it into the prefix
6. read `@pkgdep` entries from `+CONTENTS`, clear scratch
7. install each dependency the same way
8. record the name in the ledger

Recursion is an explicit stack so deep dependency chains don't grow the call
stack. A name is committed only after all of its dependencies are; a name
that is already on the stack (a dependency cycle) is not entered twice.

Suffix stripping is a naming heuristic, nothing more: it collapses an
over-specific `name-version` down to a base package name and knows nothing
about versions.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote

from binpm.archive import MANIFEST_FILES, PAYLOAD_DIR, extract, merge_payload, normalize_payload, read_dependencies
from binpm.config import Settings
from binpm.errors import FetchError, IntegrityError, NotFoundError
from binpm.fetch import Fetcher
from binpm.ledger import Ledger
from binpm.mirror import SIGNATURE_SUFFIX, MirrorClient
from binpm.trust import TrustStore
from binpm.verify import Verifier

logger = logging.getLogger(__name__)


def strip_suffix(name: str) -> str | None:
	"""Drop the last dash-delimited component, or None when there is none left."""
	head, sep, _ = name.rpartition("-")
	if not sep or not head:
		return None
	return head


@dataclass
class _Frame:
	name: str
	# Dependencies still to visit; None until this package's payload is merged.
	pending: list[str] | None = None


@dataclass
class Installer:
	settings: Settings
	mirror: MirrorClient
	fetcher: Fetcher
	verifier: Verifier
	ledger: Ledger
	tolerant: bool = False
	current: str | None = None
	skipped: list[str] = field(default_factory=list)

	@classmethod
	def from_settings(cls, settings: Settings, fetcher: Fetcher, tolerant: bool = False) -> "Installer":
		trust = TrustStore(settings.trust_anchor_path, settings.trust_anchor_url, settings.trust_anchor_pins, fetcher)
		return cls(
			settings=settings,
			mirror=MirrorClient(settings.mirror_url, settings.platform_tag, fetcher),
			fetcher=fetcher,
			verifier=Verifier(trust),
			ledger=Ledger(settings.ledger_path),
			tolerant=tolerant,
		)

	def install(self, name: str) -> bool:
		"""
		Install `name` and its dependency closure.

		Returns True if at least one package was newly recorded.
		"""
		stack = [_Frame(name)]
		in_progress: set[str] = set()
		recorded = False

		while stack:
			frame = stack[-1]
			if frame.pending is None:
				self.current = frame.name
				if self.ledger.is_installed(frame.name) or frame.name in in_progress or frame.name in self.skipped:
					stack.pop()
					continue
				resolved = self._resolve(frame.name)
				if resolved is None:
					stack.pop()
					continue
				frame.name, url = resolved
				if url is None or frame.name in in_progress:
					stack.pop()
					continue
				in_progress.add(frame.name)
				deps = self._install_payload(frame.name, url)
				if deps:
					logger.info(f"{frame.name}: depends on {', '.join(deps)}")
				frame.pending = list(reversed(deps))
				continue

			if frame.pending:
				stack.append(_Frame(frame.pending.pop()))
				continue

			if not self.ledger.is_installed(frame.name):
				self.ledger.record(frame.name)
				recorded = True
				logger.info(f"installed {frame.name}")
			in_progress.discard(frame.name)
			stack.pop()

		return recorded

	def _resolve(self, name: str) -> tuple[str, str | None] | None:
		"""
		Find an archive URL for `name`, shortening the name on failure.

		Returns (resolved_name, url); url is None when a shortened name turns out
		to be installed already. Returns None for a soft skip in tolerant mode.
		"""
		current = name
		while True:
			try:
				url = self.mirror.resolve(current)
			except NotFoundError as err:
				shorter = strip_suffix(current)
				if shorter is None:
					if self.tolerant:
						logger.warning(f"skipping {name}: {err}")
						self.skipped.append(name)
						return None
					raise NotFoundError(
						f"package '{name}' not found for {self.mirror.platform_tag} ({err}); "
						f"if it is provided some other way, register it with 'binpm fake-install {name}'"
					) from err
				logger.info(f"{current}: {err}; retrying as '{shorter}'")
				current = shorter
				self.current = current
				if self.ledger.is_installed(current):
					return current, None
				continue
			if current != name:
				logger.info(f"{name}: resolved as {current}")
			return current, url

	def _download(self, url: str) -> tuple[Path, Path]:
		filename = unquote(url.rsplit("/", 1)[-1])
		archive = self.settings.cache_dir / filename
		signature = self.settings.cache_dir / (filename + SIGNATURE_SUFFIX)
		self.fetcher.fetch_to_file(url, archive)
		try:
			self.fetcher.fetch_to_file(url + SIGNATURE_SUFFIX, signature)
		except FetchError as err:
			if err.status == 404:
				raise IntegrityError(f"{filename} has no signature on the mirror; refusing to install it") from err
			raise
		return archive, signature

	def _install_payload(self, name: str, url: str) -> list[str]:
		archive, signature = self._download(url)
		try:
			self.verifier.verify(archive, signature)
		except IntegrityError:
			# A bad cached copy would otherwise fail the same way on every run.
			archive.unlink(missing_ok=True)
			signature.unlink(missing_ok=True)
			raise

		scratch = self.settings.scratch_dir / name
		if scratch.exists():
			shutil.rmtree(scratch)
		try:
			extract(archive, scratch)
			payload = scratch / PAYLOAD_DIR
			if payload.is_dir():
				normalize_payload(payload, static_only=self.settings.static_only)
				merge_payload(payload, self.settings.prefix)
			else:
				merge_payload(scratch, self.settings.prefix)
			return read_dependencies(scratch)
		finally:
			shutil.rmtree(scratch, ignore_errors=True)

	def install_all(self, names: list[str]) -> bool:
		any_installed = False
		for name in names:
			if self.ledger.is_installed(name):
				logger.warning(f"{name} is already installed")
				continue
			if self.install(name):
				any_installed = True
				# Stray manifest files go after every successful name.
				self.cleanup_prefix()
		return any_installed

	def fake_install(self, names: list[str]) -> None:
		"""Register names in the ledger without downloading anything."""
		for name in names:
			if self.ledger.is_installed(name):
				logger.warning(f"{name} is already installed")
				continue
			self.ledger.record(name)
			logger.info(f"registered {name} without installing it")

	def cleanup_prefix(self) -> None:
		for fname in MANIFEST_FILES:
			p = self.settings.prefix / fname
			try:
				p.unlink(missing_ok=True)
			except OSError as err:
				logger.warning(f"could not remove {p}: {err}")
