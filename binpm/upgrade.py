# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Upgrade: reinstall everything from scratch.

The ledger is moved aside, the install prefix is wiped, and every previously
installed name is installed again in tolerant mode, so a package that has
vanished from the mirror is skipped instead of aborting the whole run. This
is best effort: there is no rollback beyond the aside copy of the ledger.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from binpm.errors import StateError
from binpm.installer import Installer
from binpm.ledger import Ledger

logger = logging.getLogger(__name__)


def clear_prefix(prefix: Path) -> None:
	if prefix.is_symlink() or prefix.is_file():
		raise StateError(f"install prefix {prefix} is not a directory")
	if prefix.exists():
		shutil.rmtree(prefix)
	prefix.mkdir(parents=True)


def upgrade(installer: Installer, ledger: Ledger) -> list[str]:
	"""Returns the names that could not be reinstalled."""
	if not ledger.exists():
		if not ledger.has_snapshot():
			raise StateError(f"install database {ledger.path} is missing and there is no backup to restore")
		ledger.restore()

	names = ledger.snapshot_and_clear()
	logger.info(f"upgrading {len(names)} package(s)")
	clear_prefix(installer.settings.prefix)

	installer.tolerant = True
	installer.skipped.clear()
	for name in names:
		if ledger.is_installed(name):
			continue
		installer.install(name)
	installer.cleanup_prefix()

	# Even an upgrade that reinstalled nothing leaves a (possibly empty) ledger.
	if not ledger.exists():
		ledger.path.touch()
	ledger.drop_snapshot()
	for name in installer.skipped:
		logger.warning(f"{name} was not reinstalled")
	return list(installer.skipped)
