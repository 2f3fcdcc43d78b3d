# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Shared fixtures: an in-memory mirror served through `httpx.MockTransport`,
a signing key, and helpers to build and publish archives.
"""

from __future__ import annotations

import hashlib
import io
import tarfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from binpm.config import Settings
from binpm.fetch import Fetcher
from binpm.installer import Installer
from binpm.trust import PIN_ALGORITHMS, PinnedDigest, digest_hex

MIRROR = "https://mirror.test/pkgs"
ANCHOR_URL = f"{MIRROR}/trust-anchor.pem"

# Some OpenSSL builds ship without RIPEMD-160; the pin mechanism only needs two
# distinct algorithms.
TEST_PIN_ALGORITHMS = PIN_ALGORITHMS if "ripemd160" in hashlib.algorithms_available else ("sha1", "sha256")


def pins_for(data: bytes) -> tuple[PinnedDigest, ...]:
	return tuple(PinnedDigest(algorithm=a, hexdigest=digest_hex(a, data)) for a in TEST_PIN_ALGORITHMS)


def listing_html(hrefs: list[str]) -> bytes:
	rows = "".join(f'<a href="{h}">{h}</a>\n' for h in hrefs)
	return (
		"<html><body><h1>Index</h1>\n"
		'<a href="?C=N;O=D">Name</a> <a href="?C=M;O=A">Last modified</a>\n'
		'<a href="/pkgs/">Parent Directory</a>\n'
		f"{rows}</body></html>\n"
	).encode("utf-8")


def build_archive(
	files: dict[str, bytes],
	deps: list[str] | None = None,
	links: dict[str, str] | None = None,
	payload: bool = True,
) -> bytes:
	"""Build a gzipped tar with `+CONTENTS`, `+COMMENT` and a payload tree."""
	buf = io.BytesIO()
	root = "payload/" if payload else ""
	contents = "@name pkg\n" + "".join(f"@pkgdep {d}\n" for d in (deps or [])) + "".join(f"{p}\n" for p in files)
	with tarfile.open(fileobj=buf, mode="w:gz") as tf:
		meta = {"+CONTENTS": contents.encode("utf-8"), "+COMMENT": b"test package\n"}
		for name, data in [*meta.items(), *((root + p, d) for p, d in files.items())]:
			info = tarfile.TarInfo(name)
			info.size = len(data)
			info.mode = 0o664
			tf.addfile(info, io.BytesIO(data))
		for name, target in (links or {}).items():
			info = tarfile.TarInfo(root + name)
			info.type = tarfile.SYMTYPE
			info.linkname = target
			tf.addfile(info)
	return buf.getvalue()


class FakeMirror:
	def __init__(self, base: str = MIRROR) -> None:
		self.base = base
		self.base_path = httpx.URL(base).path.rstrip("/")
		self.files: dict[str, bytes] = {}
		self.listings: dict[str, list[str]] = {}
		self.root_entries: list[str] | None = None
		self.requests: list[httpx.Request] = []

	def add(self, name: str, filename: str, data: bytes, sig: bytes | None) -> None:
		listing = self.listings.setdefault(name, [])
		listing.append(filename)
		self.files[f"{name}/{filename}"] = data
		if sig is not None:
			listing.append(filename + ".sig")
			self.files[f"{name}/{filename}.sig"] = sig

	def paths_requested(self) -> list[str]:
		return [unquote(r.url.path)[len(self.base_path) + 1 :] for r in self.requests]

	def handler(self, request: httpx.Request) -> httpx.Response:
		self.requests.append(request)
		path = unquote(request.url.path)
		if not path.startswith(self.base_path):
			return httpx.Response(404)
		rel = path[len(self.base_path) :].lstrip("/")
		if rel == "":
			entries = self.root_entries if self.root_entries is not None else [n + "/" for n in self.listings]
			return httpx.Response(200, content=listing_html(entries))
		if rel.endswith("/"):
			name = rel[:-1]
			if name not in self.listings:
				return httpx.Response(404)
			return httpx.Response(200, content=listing_html(self.listings[name]))
		data = self.files.get(rel)
		if data is None:
			return httpx.Response(404)
		rng = request.headers.get("Range")
		if rng and rng.startswith("bytes="):
			start = int(rng[len("bytes=") :].rstrip("-"))
			if start >= len(data):
				return httpx.Response(416)
			return httpx.Response(206, content=data[start:])
		return httpx.Response(200, content=data)

	def transport(self) -> httpx.MockTransport:
		return httpx.MockTransport(self.handler)


@dataclass
class Env:
	settings: Settings
	mirror: FakeMirror
	key: Ed25519PrivateKey
	anchor: bytes
	fetcher: Fetcher

	def installer(self, tolerant: bool = False) -> Installer:
		return Installer.from_settings(self.settings, self.fetcher, tolerant=tolerant)

	def publish(
		self,
		name: str,
		version: str = "1.0_0",
		tag: str = "pv9",
		files: dict[str, bytes] | None = None,
		deps: list[str] | None = None,
		links: dict[str, str] | None = None,
		payload: bool = True,
		signed: bool = True,
		bad_signature: bool = False,
	) -> str:
		filename = f"{name}-{version}.{tag}.tgz"
		data = build_archive(files if files is not None else {f"bin/{name}": name.encode("utf-8")}, deps, links, payload)
		sig: bytes | None = None
		if signed:
			sig = self.key.sign(data)
			if bad_signature:
				sig = Ed25519PrivateKey.generate().sign(data)
		self.mirror.add(name, filename, data, sig)
		return filename


@pytest.fixture
def signing_key() -> Ed25519PrivateKey:
	return Ed25519PrivateKey.generate()


@pytest.fixture
def env(tmp_path: Path, signing_key: Ed25519PrivateKey):
	anchor = signing_key.public_key().public_bytes(
		encoding=serialization.Encoding.PEM,
		format=serialization.PublicFormat.SubjectPublicKeyInfo,
	)
	mirror = FakeMirror()
	mirror.files["trust-anchor.pem"] = anchor
	settings = Settings(
		root=tmp_path / "root",
		mirror_url=MIRROR,
		deployment_target="10.9",
		trust_anchor_url=ANCHOR_URL,
		trust_anchor_pins=pins_for(anchor),
	)
	fetcher = Fetcher(transport=mirror.transport())
	yield Env(settings=settings, mirror=mirror, key=signing_key, anchor=anchor, fetcher=fetcher)
	fetcher.close()
