# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Mirror index client.

A mirror is a plain autoindex tree: `<mirror>/<name>/` lists every archive
built for `name`, one file per platform and revision:

	foo-1.2_0.pv9.tgz
	foo-1.2_0.pv9.tgz.sig
	foo-1.2_1.pv9.tgz
	foo-1.2_1.pv12.tgz

Listings are requested sorted by last-modified time, ascending, and the
*last* archive carrying our platform tag wins. That is an approximation of
"newest version", not a version comparison: if the mirror's modification
times disagree with version order, the wrong build is picked.

Results are never cached; every `resolve` re-reads the listing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

from binpm.errors import FetchError, NoPackageError, NotFoundError

if TYPE_CHECKING:
	from binpm.fetch import Fetcher

logger = logging.getLogger(__name__)

ARCHIVE_EXT = ".tgz"
SIGNATURE_SUFFIX = ".sig"
# Apache/nginx-fancyindex query: sort by modification time, ascending.
LISTING_ORDER = "?C=M;O=A"


class _LinkCollector(HTMLParser):
	def __init__(self) -> None:
		super().__init__()
		self.hrefs: list[str] = []

	def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
		if tag != "a":
			return
		for key, val in attrs:
			if key == "href" and val:
				self.hrefs.append(val)


def parse_listing(html: str) -> list[str]:
	"""
	Return the hyperlink targets of an index page, in page order.

	Sort links (`?C=...`), fragments, parent links and absolute links are not
	entries of the directory and are dropped.
	"""
	p = _LinkCollector()
	p.feed(html)
	p.close()
	out: list[str] = []
	for href in p.hrefs:
		if href.startswith(("?", "#", "/", "..")) or "://" in href or href.startswith("mailto:"):
			continue
		out.append(unquote(href))
	return out


@dataclass(frozen=True)
class Candidate:
	filename: str
	platform_tag: str


def candidate_from_filename(filename: str) -> Candidate | None:
	if not filename.endswith(ARCHIVE_EXT):
		return None
	stem = filename[: -len(ARCHIVE_EXT)]
	base, sep, tag = stem.rpartition(".")
	if not sep or not base or not tag:
		return None
	return Candidate(filename=filename, platform_tag=tag)


class MirrorClient:
	def __init__(self, mirror_url: str, platform_tag: str, fetcher: "Fetcher") -> None:
		self.mirror_url = mirror_url.rstrip("/")
		self.platform_tag = platform_tag
		self._fetcher = fetcher

	def package_url(self, name: str) -> str:
		return f"{self.mirror_url}/{quote(name)}/"

	def list_candidates(self, name: str) -> list[Candidate]:
		url = self.package_url(name) + LISTING_ORDER
		try:
			body = self._fetcher.fetch(url)
		except FetchError as err:
			if err.status == 404:
				raise NoPackageError(f"no package named '{name}' on the mirror") from err
			raise
		out: list[Candidate] = []
		for href in parse_listing(body.decode("utf-8", errors="replace")):
			cand = candidate_from_filename(href.rsplit("/", 1)[-1])
			if cand is not None:
				out.append(cand)
		return out

	def resolve(self, name: str) -> str:
		candidates = self.list_candidates(name)
		if not candidates:
			raise NoPackageError(f"no archives listed for '{name}' on the mirror")
		matching = [c for c in candidates if c.platform_tag == self.platform_tag]
		if not matching:
			tags = ", ".join(sorted({c.platform_tag for c in candidates}))
			raise NotFoundError(f"no {self.platform_tag} build of '{name}' (mirror has: {tags})")
		chosen = matching[-1]
		logger.debug(f"{name}: picked {chosen.filename} of {len(matching)} {self.platform_tag} build(s)")
		return self.package_url(name) + quote(chosen.filename)
