# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Archive codec and payload handling.

A binary archive is a compressed tar with this layout:

	+CONTENTS         per-file manifest; `@pkgdep <name>` lines declare dependencies
	+COMMENT, +DESC   other top-level metadata files
	payload/...       the tree that is merged into the install prefix

Archives without a `payload/` directory are merged whole, which is how
metadata files end up at the top of the prefix; the installer removes those
afterwards.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
import tarfile
import zlib
from pathlib import Path

from binpm.errors import ExtractionError, ManifestError

logger = logging.getLogger(__name__)

PAYLOAD_DIR = "payload"
CONTENTS_FILE = "+CONTENTS"
MANIFEST_FILES = ("+CONTENTS", "+COMMENT", "+DESC", "+BUILD_INFO", "+SIZE_PKG", "+SIZE_ALL")
DEPENDENCY_MARKER = "@pkgdep"
REVISION_DELIM = "_"

_SHARED_LIB_RE = re.compile(r"(\.dylib|\.so(\.\d+)*)$")


def is_shared_library(name: str) -> bool:
	return _SHARED_LIB_RE.search(name) is not None


def extract(archive: Path, dest: Path) -> None:
	dest.mkdir(parents=True, exist_ok=True)
	try:
		with tarfile.open(archive, "r:*") as tf:
			tf.extractall(dest, filter="tar")
	except (tarfile.TarError, EOFError, zlib.error, OSError) as err:
		raise ExtractionError(f"cannot extract {archive.name}: {err}") from err


def normalize_payload(tree: Path, static_only: bool = False) -> None:
	"""
	Fix up permissions before the payload reaches the shared prefix.

	- directories: world bits cleared
	- files: world-write cleared
	- shared libraries: deleted when `static_only`, otherwise made executable
	"""
	for dirpath, dirnames, filenames in os.walk(tree):
		d = Path(dirpath)
		os.chmod(d, stat.S_IMODE(d.stat().st_mode) & ~0o007)
		for name in [*filenames, *(n for n in dirnames if (d / n).is_symlink())]:
			p = d / name
			shared = is_shared_library(name)
			if shared and static_only:
				p.unlink()
				continue
			if p.is_symlink():
				continue
			mode = stat.S_IMODE(p.lstat().st_mode)
			if shared:
				mode |= 0o111
			os.chmod(p, mode & ~0o002)


def _clear_target(target: Path) -> None:
	if target.is_symlink() or target.is_file():
		target.unlink()
	elif target.exists():
		raise IsADirectoryError(f"{target} is a directory in the install prefix")


def merge_tree(src: Path, dst: Path) -> None:
	"""
	Copy `src` over `dst`, keeping symlinks as symlinks.

	Existing files and links in `dst` are replaced; existing directories are
	merged into.
	"""
	dst.mkdir(parents=True, exist_ok=True)
	for dirpath, dirnames, filenames in os.walk(src):
		here = Path(dirpath)
		target_dir = dst / here.relative_to(src)
		target_dir.mkdir(parents=True, exist_ok=True)
		for name in [*dirnames, *filenames]:
			s = here / name
			t = target_dir / name
			if s.is_symlink():
				_clear_target(t)
				os.symlink(os.readlink(s), t)
			elif s.is_dir():
				# A leftover dangling link where a directory has to go.
				if t.is_symlink() and not t.exists():
					t.unlink()
				continue
			else:
				_clear_target(t)
				shutil.copy2(s, t)


def prune_dangling_links(tree: Path) -> int:
	if tree.is_symlink():
		if tree.exists():
			return 0
		tree.unlink()
		return 1
	if not tree.is_dir():
		return 0
	count = 0
	for p in sorted(tree.rglob("*")):
		if p.is_symlink() and not p.exists():
			p.unlink()
			count += 1
	return count


def merge_payload(src: Path, dst: Path) -> None:
	try:
		merge_tree(src, dst)
		return
	except OSError as err:
		# Dangling links in the payload and in the parts of the prefix it lands on.
		pruned = prune_dangling_links(src)
		for child in sorted(src.iterdir()):
			pruned += prune_dangling_links(dst / child.name)
		logger.warning(f"merge into {dst} failed ({err}); removed {pruned} dangling link(s), retrying once")
	try:
		merge_tree(src, dst)
	except OSError as err:
		raise ExtractionError(f"cannot merge payload into {dst}: {err}") from err


def trim_revision(entry: str) -> str:
	"""
	`foo-1.2_3` → `foo-1.2`. An underscore not followed by digits is part of the
	name and is left alone.
	"""
	head, sep, tail = entry.rpartition(REVISION_DELIM)
	if not sep:
		return entry
	if not head or not tail or head.endswith("-"):
		raise ManifestError(f"malformed dependency entry '{entry}'")
	if tail.isdigit():
		return head
	return entry


def parse_manifest(text: str) -> list[str]:
	deps: list[str] = []
	for lineno, raw in enumerate(text.splitlines(), start=1):
		fields = raw.split()
		if not fields or fields[0] != DEPENDENCY_MARKER:
			continue
		if len(fields) != 2:
			raise ManifestError(
				f"{CONTENTS_FILE} line {lineno}: expected exactly one name after {DEPENDENCY_MARKER}, got {len(fields) - 1}"
			)
		entry = fields[1]
		if entry.startswith("-"):
			raise ManifestError(f"{CONTENTS_FILE} line {lineno}: malformed dependency entry '{entry}'")
		dep = trim_revision(entry)
		if dep not in deps:
			deps.append(dep)
	return deps


def read_dependencies(tree: Path) -> list[str]:
	contents = tree / CONTENTS_FILE
	if not contents.exists():
		logger.debug(f"no {CONTENTS_FILE} in {tree}; assuming no dependencies")
		return []
	return parse_manifest(contents.read_text(encoding="utf-8", errors="replace"))
