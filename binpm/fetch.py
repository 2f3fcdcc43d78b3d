# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
HTTP collaborator.

Two operations: `fetch` for small listings held in memory, and
`fetch_to_file` for archives and signatures. Downloads land in
`<dest>.part` first and are renamed onto `dest` once complete, so a complete
cache file is never half-written. An interrupted download is resumed with a
byte-range request on the next run.
"""

from __future__ import annotations

import logging
import ssl
from pathlib import Path

import httpx

from binpm.errors import FetchError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def part_path(dest: Path) -> Path:
	return dest.with_name(dest.name + ".part")


class Fetcher:
	def __init__(
		self,
		timeout: float = 60.0,
		ca_bundle: Path | None = None,
		transport: httpx.BaseTransport | None = None,
	) -> None:
		verify: ssl.SSLContext | bool = True
		if ca_bundle is not None:
			verify = ssl.create_default_context(cafile=str(ca_bundle))
		self._client = httpx.Client(
			follow_redirects=True,
			timeout=timeout,
			verify=verify,
			transport=transport,
		)

	def close(self) -> None:
		self._client.close()

	def __enter__(self) -> "Fetcher":
		return self

	def __exit__(self, *exc_info: object) -> None:
		self.close()

	def fetch(self, url: str) -> bytes:
		logger.debug(f"GET {url}")
		try:
			resp = self._client.get(url)
		except httpx.HTTPError as err:
			raise FetchError(f"request to {url} failed: {err}") from err
		if resp.is_error:
			raise FetchError(f"GET {url} returned HTTP {resp.status_code}", status=resp.status_code)
		return resp.content

	def fetch_to_file(self, url: str, dest: Path, resumable: bool = True) -> Path:
		"""
		Download `url` to `dest`.

		A complete `dest` is reused as-is (the cache is keyed by filename). With
		`resumable`, an existing `<dest>.part` is continued from its current size:
		206 appends, 200 means the server ignored the range and we start over,
		416 means the partial file already holds the whole body.
		"""
		if dest.exists():
			logger.debug(f"using cached {dest}")
			return dest
		dest.parent.mkdir(parents=True, exist_ok=True)
		part = part_path(dest)

		offset = 0
		if resumable and part.exists():
			offset = part.stat().st_size
		headers = {"Range": f"bytes={offset}-"} if offset else {}
		if offset:
			logger.info(f"resuming {dest.name} at byte {offset}")
		else:
			logger.info(f"downloading {url}")

		try:
			with self._client.stream("GET", url, headers=headers) as resp:
				if resp.status_code == 416 and offset:
					logger.debug(f"{dest.name}: partial download already complete")
				else:
					if resp.is_error:
						raise FetchError(f"GET {url} returned HTTP {resp.status_code}", status=resp.status_code)
					mode = "ab" if offset and resp.status_code == 206 else "wb"
					with open(part, mode) as f:
						for chunk in resp.iter_bytes(CHUNK_SIZE):
							f.write(chunk)
		except httpx.HTTPError as err:
			raise FetchError(f"download of {url} failed: {err}") from err

		part.replace(dest)
		return dest
