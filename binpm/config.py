# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
binpm settings (config file v0 + environment).

The config file is optional. When present it is a small versioned JSON object:

	{
		"format": "binpm-config",
		"version": 0,
		"root": "/opt/binpm",
		"mirror": "https://mirror.example.org/packages",
		"target": "10.9",
		"trust_anchor": {"url": "...", "sha1": "<hex>", "ripemd160": "<hex>"},
		"ca_bundle": "/etc/ssl/cert.pem",
		"timeout": 60
	}

Environment variables override the file: `BINPM_ROOT`, `BINPM_MIRROR`,
`BINPM_TARGET` (falls back to `MACOSX_DEPLOYMENT_TARGET`),
`BINPM_TRUST_ANCHOR_URL`, `BINPM_CA_BUNDLE`.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from binpm.errors import ConfigurationError
from binpm.targets import platform_tag
from binpm.trust import PIN_ALGORITHMS, PinnedDigest

TRUST_ANCHOR_NAME = "trust-anchor.pem"


@dataclass(frozen=True)
class Settings:
	root: Path
	mirror_url: str
	deployment_target: str
	trust_anchor_url: str
	trust_anchor_pins: tuple[PinnedDigest, ...] = ()
	ca_bundle: Path | None = None
	static_only: bool = False
	timeout: float = 60.0

	@property
	def platform_tag(self) -> str:
		return platform_tag(self.deployment_target)

	@property
	def trust_anchor_path(self) -> Path:
		return self.root / TRUST_ANCHOR_NAME

	@property
	def ledger_path(self) -> Path:
		return self.root / "installed"

	@property
	def cache_dir(self) -> Path:
		return self.root / "cache"

	@property
	def search_index_path(self) -> Path:
		return self.cache_dir / "search-index"

	@property
	def prefix(self) -> Path:
		return self.root / "prefix"

	@property
	def scratch_dir(self) -> Path:
		return self.root / "scratch"

	@property
	def lock_dir(self) -> Path:
		return self.root / "lock"


def default_root() -> Path:
	return Path.home() / ".binpm"


def _load_config_file(path: Path) -> dict[str, Any]:
	try:
		obj = json.loads(path.read_text(encoding="utf-8"))
	except (OSError, ValueError) as err:
		raise ConfigurationError(f"cannot read config file {path}: {err}") from err
	if not isinstance(obj, dict):
		raise ConfigurationError("config file must be a JSON object")
	if obj.get("format") != "binpm-config" or obj.get("version") != 0:
		raise ConfigurationError("unsupported config format/version")
	return obj


def _opt_str(obj: Mapping[str, Any], key: str) -> str | None:
	val = obj.get(key)
	if val is None:
		return None
	if not isinstance(val, str) or not val:
		raise ConfigurationError(f"config '{key}' must be a non-empty string")
	return val


def _load_pins(raw: Any) -> tuple[PinnedDigest, ...]:
	if raw is None:
		return ()
	if not isinstance(raw, dict):
		raise ConfigurationError("config 'trust_anchor' must be an object")
	pins: list[PinnedDigest] = []
	for algo in PIN_ALGORITHMS:
		val = raw.get(algo)
		if val is None:
			continue
		if not isinstance(val, str) or not val:
			raise ConfigurationError(f"trust_anchor '{algo}' must be a hex string")
		pins.append(PinnedDigest(algorithm=algo, hexdigest=val.lower()))
	return tuple(pins)


def load_settings(
	config_path: Path | None = None,
	environ: Mapping[str, str] | None = None,
	*,
	static_only: bool = False,
) -> Settings:
	env = os.environ if environ is None else environ

	root_env = env.get("BINPM_ROOT")
	root = Path(root_env).expanduser() if root_env else default_root()

	if config_path is None and (root / "config.json").exists():
		config_path = root / "config.json"
	obj = _load_config_file(config_path) if config_path is not None else {}

	if not root_env and _opt_str(obj, "root"):
		root = Path(obj["root"]).expanduser()

	mirror = env.get("BINPM_MIRROR") or _opt_str(obj, "mirror")
	if not mirror:
		raise ConfigurationError("no mirror configured (set BINPM_MIRROR or 'mirror' in the config file)")
	mirror = mirror.rstrip("/")

	target = env.get("BINPM_TARGET") or env.get("MACOSX_DEPLOYMENT_TARGET") or _opt_str(obj, "target")
	if not target:
		raise ConfigurationError("no deployment target configured (set BINPM_TARGET or MACOSX_DEPLOYMENT_TARGET)")
	# Fail early on unsupported targets, before any lock is taken.
	platform_tag(target)

	anchor_raw = obj.get("trust_anchor")
	pins = _load_pins(anchor_raw)
	anchor_url = env.get("BINPM_TRUST_ANCHOR_URL")
	if not anchor_url and isinstance(anchor_raw, dict):
		anchor_url = _opt_str(anchor_raw, "url")
	if not anchor_url:
		anchor_url = f"{mirror}/{TRUST_ANCHOR_NAME}"

	ca_raw = env.get("BINPM_CA_BUNDLE") or _opt_str(obj, "ca_bundle")
	ca_bundle = Path(ca_raw).expanduser() if ca_raw else None
	if ca_bundle is not None and not ca_bundle.exists():
		raise ConfigurationError(f"CA bundle not found: {ca_bundle}")

	timeout = obj.get("timeout", 60.0)
	if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
		raise ConfigurationError("config 'timeout' must be a positive number")

	return Settings(
		root=root,
		mirror_url=mirror,
		deployment_target=target,
		trust_anchor_url=anchor_url,
		trust_anchor_pins=pins,
		ca_bundle=ca_bundle,
		static_only=static_only,
		timeout=float(timeout),
	)
