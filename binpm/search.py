# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Search index cache.

A sorted, deduplicated list of every package name on the mirror, one per
line, built from the mirror's root listing. It is a plain cache: nothing else
depends on it, and an existing index is never refreshed implicitly, however
old it is (`binpm update-cache` does that).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from binpm.mirror import parse_listing

if TYPE_CHECKING:
	from binpm.fetch import Fetcher

logger = logging.getLogger(__name__)


class SearchIndex:
	def __init__(self, path: Path, mirror_url: str, fetcher: "Fetcher") -> None:
		self.path = path
		self.mirror_url = mirror_url.rstrip("/")
		self._fetcher = fetcher

	def rebuild(self) -> list[str]:
		body = self._fetcher.fetch(self.mirror_url + "/")
		names = sorted({n for n in (href.rstrip("/") for href in parse_listing(body.decode("utf-8", errors="replace"))) if n})
		self.path.parent.mkdir(parents=True, exist_ok=True)
		tmp = self.path.with_name(self.path.name + ".tmp")
		tmp.write_text("".join(n + "\n" for n in names), encoding="utf-8")
		tmp.replace(self.path)
		logger.info(f"search index rebuilt with {len(names)} names")
		return names

	def load(self) -> list[str] | None:
		if not self.path.exists():
			return None
		return [line for line in self.path.read_text(encoding="utf-8").splitlines() if line]

	def search(self, term: str) -> list[str]:
		names = self.load()
		if names is None:
			names = self.rebuild()
		needle = term.lower()
		return [n for n in names if needle in n.lower()]
