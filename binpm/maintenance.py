# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from binpm.archive import is_shared_library

logger = logging.getLogger(__name__)


def clear_cache(cache_dir: Path) -> int:
	"""Delete downloaded archives, signatures, partial downloads and the search index."""
	if not cache_dir.exists():
		return 0
	count = 0
	for p in sorted(cache_dir.iterdir()):
		if p.is_dir() and not p.is_symlink():
			shutil.rmtree(p)
		else:
			p.unlink()
		count += 1
	logger.info(f"removed {count} cache entries from {cache_dir}")
	return count


def remove_dylibs(prefix: Path) -> list[Path]:
	removed: list[Path] = []
	if not prefix.exists():
		return removed
	for dirpath, dirnames, filenames in os.walk(prefix):
		here = Path(dirpath)
		for name in [*filenames, *(n for n in dirnames if (here / n).is_symlink())]:
			if is_shared_library(name):
				(here / name).unlink()
				removed.append(here / name)
	logger.info(f"removed {len(removed)} shared libraries from {prefix}")
	return removed


def compiler_flags(prefix: Path) -> str:
	return f"-I{prefix / 'include'}"


def linker_flags(prefix: Path) -> str:
	return f"-L{prefix / 'lib'}"
