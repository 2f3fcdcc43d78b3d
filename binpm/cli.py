# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from binpm.config import Settings, load_settings
from binpm.errors import BinpmError
from binpm.fetch import Fetcher
from binpm.installer import Installer
from binpm.maintenance import clear_cache, compiler_flags, linker_flags, remove_dylibs
from binpm.search import SearchIndex
from binpm.session import Session
from binpm.upgrade import upgrade

logger = logging.getLogger("binpm")


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="binpm", description="Install signed binary packages into a private prefix")
	p.add_argument("-v", "--verbose", action="count", default=0, help="More output (-v info, -vv debug)")
	p.add_argument("--config", type=Path, default=None, help="Config file (default: <root>/config.json if present)")
	p.add_argument(
		"--static",
		action="store_true",
		help="Drop shared libraries from installed payloads (static linking only)",
	)
	p.add_argument("--cflags", action="store_true", help="Print compiler flags for the install prefix and exit")
	p.add_argument("--ldflags", action="store_true", help="Print linker flags for the install prefix and exit")
	sub = p.add_subparsers(dest="cmd")

	install = sub.add_parser("install", help="Install packages and their dependencies")
	install.add_argument("names", nargs="+", help="Package names")

	fake = sub.add_parser("fake-install", help="Record packages as installed without downloading them")
	fake.add_argument("names", nargs="+", help="Package names")

	search = sub.add_parser("search", help="Search the cached list of mirror packages (case-insensitive substring)")
	search.add_argument("names", nargs="+", help="Search terms")

	sub.add_parser("upgrade", help="Wipe the prefix and reinstall every installed package")
	sub.add_parser("update-cache", help="Rebuild the search index from the mirror")
	sub.add_parser("clear-cache", help="Delete downloaded archives and the search index")
	sub.add_parser("remove-dylibs", help="Delete shared libraries from the install prefix")
	return p


def _configure_logging(verbose: int) -> None:
	level = logging.WARNING
	if verbose == 1:
		level = logging.INFO
	elif verbose >= 2:
		level = logging.DEBUG
	logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _run(args: argparse.Namespace, settings: Settings, installer: Installer, fetcher: Fetcher) -> int:
	if args.cmd == "search":
		index = SearchIndex(settings.search_index_path, settings.mirror_url, fetcher)
		for term in args.names:
			for name in index.search(term):
				print(name)
		return 0

	with Session(settings.lock_dir):
		if args.cmd == "install":
			installer.install_all(list(args.names))
			return 0

		if args.cmd == "fake-install":
			installer.fake_install(list(args.names))
			return 0

		if args.cmd == "upgrade":
			skipped = upgrade(installer, installer.ledger)
			if skipped:
				print(f"not reinstalled (no longer on the mirror): {', '.join(skipped)}")
			return 0

		if args.cmd == "update-cache":
			names = SearchIndex(settings.search_index_path, settings.mirror_url, fetcher).rebuild()
			print(f"{len(names)} packages indexed")
			return 0

		if args.cmd == "clear-cache":
			clear_cache(settings.cache_dir)
			return 0

		if args.cmd == "remove-dylibs":
			for path in remove_dylibs(settings.prefix):
				print(f"removed {path}")
			return 0

	raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
	p = _build_parser()
	args = p.parse_args(argv)
	_configure_logging(args.verbose)

	try:
		settings = load_settings(args.config, static_only=bool(args.static))
	except BinpmError as err:
		print(f"binpm: error: {err}", file=sys.stderr)
		return err.exit_code

	if args.cflags or args.ldflags:
		flags = []
		if args.cflags:
			flags.append(compiler_flags(settings.prefix))
		if args.ldflags:
			flags.append(linker_flags(settings.prefix))
		print(" ".join(flags))
		if args.cmd is None:
			return 0
	if args.cmd is None:
		p.error("a command is required")

	with Fetcher(timeout=settings.timeout, ca_bundle=settings.ca_bundle) as fetcher:
		installer = Installer.from_settings(settings, fetcher)
		try:
			return _run(args, settings, installer, fetcher)
		except BinpmError as err:
			print(f"binpm: error: {err}", file=sys.stderr)
			if installer.current is not None:
				print(f"binpm: last package processed: {installer.current}", file=sys.stderr)
			if args.verbose < 2:
				print("binpm: re-run with -vv for details", file=sys.stderr)
			logger.debug("failure detail", exc_info=True)
			return err.exit_code
