# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Install ledger.

A flat text file with one installed package name per line. It is append-only
during normal operation; a name appears at most once (callers check
`is_installed` before `record`). A missing ledger means nothing is installed.

The upgrade flow moves the whole file aside (`<ledger>.old`) and rebuilds it
from scratch; `restore` puts the aside copy back after an interrupted upgrade.
"""

from __future__ import annotations

import logging
from pathlib import Path

from binpm.errors import ConfigurationError, StateError

logger = logging.getLogger(__name__)


class Ledger:
	def __init__(self, path: Path) -> None:
		self.path = path

	@property
	def aside_path(self) -> Path:
		return self.path.with_name(self.path.name + ".old")

	def exists(self) -> bool:
		return self.path.exists()

	def names(self) -> list[str]:
		if not self.path.exists():
			return []
		out: list[str] = []
		for line in self.path.read_text(encoding="utf-8").splitlines():
			name = line.strip()
			if name and name not in out:
				out.append(name)
		return out

	def is_installed(self, name: str) -> bool:
		return name in self.names()

	def record(self, name: str) -> None:
		if not name or any(c.isspace() for c in name):
			raise ConfigurationError(f"invalid package name {name!r}: names cannot be empty or contain whitespace")
		self.path.parent.mkdir(parents=True, exist_ok=True)
		with open(self.path, "a", encoding="utf-8") as f:
			f.write(name + "\n")
		logger.debug(f"ledger: recorded {name}")

	def has_snapshot(self) -> bool:
		return self.aside_path.exists()

	def snapshot_and_clear(self) -> list[str]:
		"""
		Move the ledger aside and return the names it held.

		If an aside copy is already there, a previous upgrade died while rebuilding
		the ledger: the aside copy is the authoritative set and the partial ledger
		is folded into it.
		"""
		if not self.path.exists():
			raise StateError(f"install database {self.path} is missing")
		names = self.names()
		if self.aside_path.exists():
			previous = Ledger(self.aside_path).names()
			names = previous + [n for n in names if n not in previous]
			self.aside_path.write_text("".join(n + "\n" for n in names), encoding="utf-8")
			self.path.unlink()
			return names
		self.path.replace(self.aside_path)
		return names

	def restore(self) -> None:
		if self.path.exists():
			return
		if not self.aside_path.exists():
			raise StateError(f"install database {self.path} is missing and there is no backup to restore")
		logger.warning(f"restoring {self.path} from {self.aside_path} (interrupted upgrade)")
		self.aside_path.replace(self.path)

	def drop_snapshot(self) -> None:
		self.aside_path.unlink(missing_ok=True)
